"""Per-engine chart values, store URLs and credential reuse."""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from typing import TYPE_CHECKING

from app.core.errors import ClusterError, ClusterNotFound
from app.models.store import StoreEngine

if TYPE_CHECKING:
    from app.services.cluster import ClusterGateway

logger = logging.getLogger(__name__)

# Secret created by every engine chart inside the store namespace
CREDENTIALS_SECRET = "store-secret"

# --set keys per engine: (db password, root password, admin password)
_VALUE_KEYS: dict[str, tuple[str, str, str]] = {
    StoreEngine.WOOCOMMERCE: (
        "mysql.auth.password",
        "mysql.auth.rootPassword",
        "wordpress.adminPassword",
    ),
    StoreEngine.MEDUSA: (
        "postgresql.auth.password",
        "postgresql.auth.postgresPassword",
        "medusa.adminPassword",
    ),
}


@dataclass(frozen=True)
class StoreCredentials:
    db_password: str
    root_password: str
    admin_password: str


def store_host(store_id: str, domain_suffix: str) -> str:
    return f"store-{store_id}.{domain_suffix}"


def store_url(store_id: str, domain_suffix: str) -> str:
    return f"http://{store_host(store_id, domain_suffix)}"


def _generate() -> str:
    return secrets.token_hex(16)


async def resolve_credentials(gateway: ClusterGateway, store_id: str) -> StoreCredentials:
    """Reuse credentials from an existing store secret, generate the rest.

    Re-provisioning after a partial failure must not rotate passwords the
    database volume was already initialised with.
    """
    try:
        existing = await gateway.read_secret(store_id, CREDENTIALS_SECRET)
    except ClusterNotFound:
        existing = {}
    except ClusterError as exc:
        logger.warning("Could not read credentials for store %s: %s", store_id, exc)
        existing = {}
    if existing:
        logger.info("Reusing existing credentials for store %s", store_id)
    return StoreCredentials(
        db_password=existing.get("db-password") or _generate(),
        root_password=existing.get("root-password") or _generate(),
        admin_password=existing.get("admin-password") or _generate(),
    )


def chart_values(
    engine: str,
    store_id: str,
    domain_suffix: str,
    credentials: StoreCredentials,
) -> dict[str, str]:
    db_key, root_key, admin_key = _VALUE_KEYS[engine]
    return {
        "ingress.host": store_host(store_id, domain_suffix),
        db_key: credentials.db_password,
        root_key: credentials.root_password,
        admin_key: credentials.admin_password,
    }
