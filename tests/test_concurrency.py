"""Tests for provisioning slots and timeout racing."""

import asyncio

import pytest

from app.core.concurrency import ProvisionSlots, run_with_timeout
from app.core.errors import ClusterTimeout, ProvisioningBusy


@pytest.mark.asyncio
async def test_claims_up_to_the_limit_then_rejects():
    slots = ProvisionSlots(2)

    async with slots.claim():
        async with slots.claim():
            assert slots.in_use == 2
            with pytest.raises(ProvisioningBusy) as exc_info:
                async with slots.claim():
                    pass
            assert "capacity" in str(exc_info.value)
        assert slots.in_use == 1
    assert slots.in_use == 0


@pytest.mark.asyncio
async def test_slot_released_when_body_raises():
    slots = ProvisionSlots(1)

    with pytest.raises(RuntimeError):
        async with slots.claim():
            raise RuntimeError("boom")

    assert slots.in_use == 0
    async with slots.claim():
        assert slots.in_use == 1


def test_limit_must_be_positive():
    with pytest.raises(ValueError):
        ProvisionSlots(0)


@pytest.mark.asyncio
async def test_run_with_timeout_returns_result():
    async def _quick():
        return 42

    assert await run_with_timeout(_quick(), 1, "too slow") == 42


@pytest.mark.asyncio
async def test_run_with_timeout_raises_cluster_timeout():
    with pytest.raises(ClusterTimeout, match="too slow"):
        await run_with_timeout(asyncio.sleep(5), 0.05, "too slow")
