"""Tests for the per-binding reconcile gate."""

import asyncio

import pytest

from msi_acrpull.utils import ReconcileGate


@pytest.mark.asyncio
async def test_same_binding_is_serialized():
    gate = ReconcileGate()
    active = 0
    max_active = 0

    async def reconcile():
        nonlocal active, max_active
        async with gate.hold("ns", "b1"):
            active += 1
            max_active = max(max_active, active)
            await asyncio.sleep(0.01)
            active -= 1

    await asyncio.gather(*(reconcile() for _ in range(5)))

    assert max_active == 1
    assert len(gate) == 0


@pytest.mark.asyncio
async def test_different_bindings_run_in_parallel():
    gate = ReconcileGate()
    both_inside = asyncio.Event()
    inside = 0

    async def reconcile(name: str):
        nonlocal inside
        async with gate.hold("ns", name):
            inside += 1
            if inside == 2:
                both_inside.set()
            await asyncio.wait_for(both_inside.wait(), timeout=1)

    await asyncio.gather(reconcile("b1"), reconcile("b2"))

    assert both_inside.is_set()


@pytest.mark.asyncio
async def test_is_busy_while_held():
    gate = ReconcileGate()

    async with gate.hold("ns", "b1"):
        assert gate.is_busy("ns", "b1")
        assert not gate.is_busy("ns", "b2")
        assert not gate.is_busy("other", "b1")

    assert not gate.is_busy("ns", "b1")


@pytest.mark.asyncio
async def test_entry_released_after_error():
    gate = ReconcileGate()

    with pytest.raises(RuntimeError):
        async with gate.hold("ns", "b1"):
            raise RuntimeError("boom")

    assert len(gate) == 0


@pytest.mark.asyncio
async def test_cancelled_waiter_releases_entry():
    gate = ReconcileGate()
    release = asyncio.Event()

    async def holder():
        async with gate.hold("ns", "b1"):
            await release.wait()

    async def waiter():
        async with gate.hold("ns", "b1"):
            pass

    holding = asyncio.create_task(holder())
    await asyncio.sleep(0)
    waiting = asyncio.create_task(waiter())
    await asyncio.sleep(0)

    waiting.cancel()
    with pytest.raises(asyncio.CancelledError):
        await waiting

    release.set()
    await holding

    assert len(gate) == 0
