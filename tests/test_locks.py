"""Per-call-center and per-lead critical section tests."""

import asyncio

import pytest

from lead_dispatch.core.locks import CallCenterLocks, LeadLocks


class TestCallCenterLocks:

    @pytest.mark.asyncio
    async def test_same_call_center_is_serialized(self):
        locks = CallCenterLocks()
        trace = []

        async def worker(name):
            async with locks.hold(1):
                trace.append(f"{name}-in")
                await asyncio.sleep(0.01)
                trace.append(f"{name}-out")

        await asyncio.gather(worker("a"), worker("b"))

        assert trace == ["a-in", "a-out", "b-in", "b-out"]

    @pytest.mark.asyncio
    async def test_other_call_centers_do_not_wait(self):
        locks = CallCenterLocks()
        released = asyncio.Event()

        async def holder():
            async with locks.hold(1):
                await released.wait()

        async def other():
            async with locks.hold(2):
                released.set()

        # Would deadlock if call center 2 waited on call center 1
        await asyncio.wait_for(asyncio.gather(holder(), other()), timeout=1)

    @pytest.mark.asyncio
    async def test_is_held(self):
        locks = CallCenterLocks()

        assert not locks.is_held(3)
        async with locks.hold(3):
            assert locks.is_held(3)
            assert not locks.is_held(4)
        assert not locks.is_held(3)

    def test_one_lock_per_call_center(self):
        locks = CallCenterLocks()

        assert locks.lock_for(1) is locks.lock_for(1)
        assert locks.lock_for(1) is not locks.lock_for(2)


class TestLeadLocks:

    @pytest.mark.asyncio
    async def test_same_lead_is_serialized(self):
        locks = LeadLocks()
        trace = []

        async def worker(name):
            async with locks.hold(7):
                trace.append(f"{name}-in")
                await asyncio.sleep(0.01)
                trace.append(f"{name}-out")

        await asyncio.gather(worker("a"), worker("b"))

        assert trace == ["a-in", "a-out", "b-in", "b-out"]

    def test_independent_of_call_center_locks(self):
        lead_locks = LeadLocks()
        call_center_locks = CallCenterLocks()

        assert lead_locks.lock_for(1) is not call_center_locks.lock_for(1)
