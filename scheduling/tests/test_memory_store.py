"""Tests for the in-process store's unit of work."""

import asyncio

import pytest

from scheduling.db.memory import MemoryStore
from scheduling.tests.factories import OWNER, at, make_booking


class TestMemoryUnitOfWork:
    @pytest.mark.asyncio
    async def test_commit_on_clean_exit(self):
        store = MemoryStore()
        async with store.unit_of_work(OWNER) as uow:
            await uow.insert_booking(make_booking("b1", at(2, 9), at(2, 10)))
            # Visible inside the unit before commit
            assert await uow.get_booking("b1") is not None
            assert store.bookings == {}
        assert "b1" in store.bookings

    @pytest.mark.asyncio
    async def test_exception_discards_writes(self):
        store = MemoryStore()
        with pytest.raises(RuntimeError):
            async with store.unit_of_work(OWNER) as uow:
                await uow.insert_booking(make_booking("b1", at(2, 9), at(2, 10)))
                raise RuntimeError("boom")
        assert store.bookings == {}

    @pytest.mark.asyncio
    async def test_insert_if_no_conflict(self):
        store = MemoryStore()
        async with store.unit_of_work(OWNER) as uow:
            assert await uow.insert_booking_if_no_conflict(make_booking("b1", at(2, 9), at(2, 10))) == []
            conflicts = await uow.insert_booking_if_no_conflict(make_booking("b2", at(2, 9, 30), at(2, 10, 30)))
        assert conflicts == ["b1"]
        assert list(store.bookings) == ["b1"]

    @pytest.mark.asyncio
    async def test_units_for_same_owner_are_serialized(self):
        store = MemoryStore()
        order = []

        async def unit(name):
            async with store.unit_of_work(OWNER):
                order.append(f"{name}-start")
                await asyncio.sleep(0)
                order.append(f"{name}-end")

        await asyncio.gather(unit("a"), unit("b"))
        assert order == ["a-start", "a-end", "b-start", "b-end"]

    @pytest.mark.asyncio
    async def test_owners_do_not_block_each_other(self):
        store = MemoryStore()
        order = []

        async def unit(owner):
            async with store.unit_of_work(owner):
                order.append(f"{owner}-start")
                await asyncio.sleep(0)
                order.append(f"{owner}-end")

        await asyncio.gather(unit("x"), unit("y"))
        assert order == ["x-start", "y-start", "x-end", "y-end"]

    @pytest.mark.asyncio
    async def test_default_timezone(self):
        store = MemoryStore()
        async with store.unit_of_work() as uow:
            assert await uow.get_owner_timezone(OWNER) == "UTC"
