"""ARQ worker entrypoint."""

from arq import cron
from arq.connections import RedisSettings

from app.core.config import get_settings
from app.workers.provision import provision_store
from app.workers.reconcile import reconcile_stores


def _redis_settings() -> RedisSettings:
    """Parse REDIS_URL into ARQ RedisSettings."""
    return RedisSettings.from_dsn(get_settings().redis_url)


def reconcile_schedule(interval_seconds: int) -> dict[str, set[int]]:
    """Translate a sweep interval into ARQ cron fields.

    Only periods that tile a minute or an hour evenly can be expressed;
    anything else raises ValueError instead of drifting to another cadence.
    """
    if 0 < interval_seconds < 60 and 60 % interval_seconds == 0:
        return {"second": set(range(0, 60, interval_seconds))}
    minutes, rest = divmod(interval_seconds, 60)
    if rest == 0 and 0 < minutes <= 60 and 60 % minutes == 0:
        return {"minute": set(range(0, 60, minutes)), "second": {0}}
    raise ValueError(f"Cannot schedule a reconcile sweep every {interval_seconds}s")


async def startup(ctx: dict) -> None:
    """Called when the worker starts."""
    from app.core.database import async_session_factory, init_db
    from app.core.logging import configure_logging
    from app.services.cluster import ClusterGateway
    from app.workers.provision import Provisioner
    from app.workers.reconcile import Reconciler

    settings = get_settings()
    configure_logging(settings.log_level)
    await init_db()

    gateway = ClusterGateway(settings)
    ctx["provisioner"] = Provisioner(gateway, async_session_factory, settings)
    ctx["reconciler"] = Reconciler(gateway, async_session_factory, settings)


async def shutdown(ctx: dict) -> None:
    """Called when the worker shuts down."""
    from app.core.database import dispose_db

    await dispose_db()


_settings = get_settings()


class WorkerSettings:
    """ARQ worker configuration."""
    functions = [provision_store]
    cron_jobs = [
        cron(
            reconcile_stores,
            run_at_startup=True,
            **reconcile_schedule(_settings.reconcile_interval_seconds),
        ),
    ]
    on_startup = startup
    on_shutdown = shutdown
    redis_settings = _redis_settings()
    # Must exceed the slot ceiling: surplus jobs are rejected as busy, not queued
    max_jobs = max(10, _settings.max_concurrent_provisions + 2)
    job_timeout = int(_settings.provision_timeout_seconds) + 120


if __name__ == "__main__":
    from arq import run_worker
    run_worker(WorkerSettings)  # type: ignore[arg-type]
