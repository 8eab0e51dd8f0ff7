"""Tests for ARQ worker configuration."""

import pytest
from pydantic import ValidationError

from app.core.config import Settings
from app.workers.main import WorkerSettings, reconcile_schedule
from app.workers.provision import provision_store


def test_default_interval_runs_every_minute():
    assert reconcile_schedule(60) == {"minute": set(range(60)), "second": {0}}


def test_sub_minute_interval():
    assert reconcile_schedule(15) == {"second": {0, 15, 30, 45}}


def test_multi_minute_interval():
    assert reconcile_schedule(300) == {"minute": {0, 5, 10, 15, 20, 25, 30, 35, 40, 45, 50, 55}, "second": {0}}


def test_hourly_interval():
    assert reconcile_schedule(3600) == {"minute": {0}, "second": {0}}


@pytest.mark.parametrize("interval", [0, 45, 90, 7200, 330])
def test_uneven_intervals_cannot_be_scheduled(interval):
    with pytest.raises(ValueError):
        reconcile_schedule(interval)


@pytest.mark.parametrize("interval", [45, 90, 7200, -60])
def test_settings_reject_uneven_reconcile_interval(interval):
    with pytest.raises(ValidationError, match="reconcile_interval_seconds"):
        Settings(_env_file=None, reconcile_interval_seconds=interval)


@pytest.mark.parametrize("interval", [1, 20, 30, 60, 120, 900, 3600])
def test_settings_accept_even_reconcile_interval(interval):
    assert Settings(_env_file=None, reconcile_interval_seconds=interval).reconcile_interval_seconds == interval


def test_worker_accepts_more_jobs_than_slots():
    assert provision_store in WorkerSettings.functions
    assert WorkerSettings.max_jobs > 2
    assert WorkerSettings.job_timeout > 900
