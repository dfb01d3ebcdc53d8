"""Unit tests for id generation and keyed locks."""

import asyncio

import pytest

from core.ids import TimeOrderedIdGenerator
from core.locks import KeyedLock


class TestTimeOrderedIds:
    def test_ids_are_version_7(self) -> None:
        generate = TimeOrderedIdGenerator(clock_ms=lambda: 1_700_000_000_000)

        assert generate().version == 7

    def test_same_millisecond_ids_increase(self) -> None:
        generate = TimeOrderedIdGenerator(clock_ms=lambda: 1_700_000_000_000)

        ids = [generate() for _ in range(5000)]

        assert ids == sorted(ids)
        assert len(set(ids)) == len(ids)

    def test_clock_going_backwards_keeps_order(self) -> None:
        ticks = iter([2_000, 1_000, 1_500, 3_000])
        generate = TimeOrderedIdGenerator(clock_ms=lambda: next(ticks))

        ids = [generate() for _ in range(4)]

        assert ids == sorted(ids)

    def test_ids_sort_by_time(self) -> None:
        ticks = iter([5_000, 9_000])
        generate = TimeOrderedIdGenerator(clock_ms=lambda: next(ticks))

        first, second = generate(), generate()

        assert first.int >> 80 == 5_000
        assert second.int >> 80 == 9_000
        assert first < second


class TestKeyedLock:
    @pytest.mark.asyncio
    async def test_same_key_is_serialized(self) -> None:
        locks = KeyedLock()
        order: list[str] = []

        async def worker(name: str) -> None:
            async with locks.hold("stamp:a"):
                order.append(f"{name}-in")
                await asyncio.sleep(0)
                order.append(f"{name}-out")

        await asyncio.gather(worker("first"), worker("second"))

        assert order == ["first-in", "first-out", "second-in", "second-out"]

    @pytest.mark.asyncio
    async def test_different_keys_run_together(self) -> None:
        locks = KeyedLock()
        order: list[str] = []

        async def worker(key: str) -> None:
            async with locks.hold(key):
                order.append(f"{key}-in")
                await asyncio.sleep(0)
                order.append(f"{key}-out")

        await asyncio.gather(worker("a"), worker("b"))

        assert order == ["a-in", "b-in", "a-out", "b-out"]

    @pytest.mark.asyncio
    async def test_idle_keys_are_forgotten(self) -> None:
        locks = KeyedLock()

        async with locks.hold("stamp:a", "fp:b", None):
            assert len(locks) == 2

        assert len(locks) == 0

    @pytest.mark.asyncio
    async def test_cancelled_waiter_releases_its_claim(self) -> None:
        locks = KeyedLock()
        entered = asyncio.Event()
        release = asyncio.Event()

        async def holder() -> None:
            async with locks.hold("k"):
                entered.set()
                await release.wait()

        async def waiter() -> None:
            async with locks.hold("k"):
                pass

        holding = asyncio.create_task(holder())
        await entered.wait()
        waiting = asyncio.create_task(waiter())
        await asyncio.sleep(0)
        waiting.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiting

        release.set()
        await holding

        assert len(locks) == 0

    @pytest.mark.asyncio
    async def test_overlapping_key_sets_do_not_deadlock(self) -> None:
        locks = KeyedLock()

        async def worker(*keys: str) -> None:
            async with locks.hold(*keys):
                await asyncio.sleep(0)

        await asyncio.wait_for(
            asyncio.gather(worker("a", "b"), worker("b", "a"), worker("b")),
            timeout=1,
        )
