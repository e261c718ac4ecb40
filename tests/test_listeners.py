from __future__ import annotations

import asyncio

from codesession.session import ListenerSet


def test_concurrent_spawn_starts_exactly_one_task() -> None:
    listeners = ListenerSet()
    started: list[str] = []

    async def body() -> None:
        started.append("x")
        await asyncio.Event().wait()

    async def scenario():
        results = await asyncio.gather(*(listeners.spawn_if_absent("t1", body) for _ in range(25)))
        await asyncio.sleep(0)
        await listeners.shutdown()
        return results

    results = asyncio.run(scenario())

    assert sum(results) == 1
    assert started == ["x"]
    assert len(listeners) == 0


def test_remove_only_drops_own_entry() -> None:
    listeners = ListenerSet()

    async def scenario():
        gate = asyncio.Event()

        async def body() -> None:
            await gate.wait()

        await listeners.spawn_if_absent("t1", body)
        other = asyncio.ensure_future(asyncio.sleep(0))
        await listeners.remove("t1", other)
        still_running = listeners.is_running("t1")
        gate.set()
        await listeners.shutdown()
        await other
        return still_running

    assert asyncio.run(scenario()) is True


def test_stop_cancels_and_waits() -> None:
    listeners = ListenerSet()
    cancelled: list[bool] = []

    async def body() -> None:
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            cancelled.append(True)
            raise

    async def scenario():
        await listeners.spawn_if_absent("t1", body)
        await asyncio.sleep(0)
        stopped = await listeners.stop("t1")
        again = await listeners.stop("t1")
        return stopped, again

    stopped, again = asyncio.run(scenario())

    assert stopped is True
    assert again is False
    assert cancelled == [True]


def test_shutdown_waits_for_every_task() -> None:
    listeners = ListenerSet()
    finished: list[str] = []

    def make(name: str):
        async def body() -> None:
            try:
                await asyncio.Event().wait()
            finally:
                await asyncio.sleep(0)
                finished.append(name)

        return body

    async def scenario():
        for name in ("a", "b", "c"):
            await listeners.spawn_if_absent(name, make(name))
        await asyncio.sleep(0)
        await listeners.shutdown()

    asyncio.run(scenario())

    assert sorted(finished) == ["a", "b", "c"]
    assert listeners.active_threads() == []


def test_refused_spawn_rearms_running_listener() -> None:
    listeners = ListenerSet()

    async def scenario():
        gate = asyncio.Event()

        async def body() -> None:
            await gate.wait()

        await listeners.spawn_if_absent("t1", body)
        task = next(iter(listeners._tasks))
        refused = await listeners.spawn_if_absent("t1", body)
        first_release = await listeners.release("t1", task)
        still_registered = listeners.is_running("t1")
        second_release = await listeners.release("t1", task)
        gate.set()
        await listeners.shutdown()
        return refused, first_release, still_registered, second_release

    refused, first_release, still_registered, second_release = asyncio.run(scenario())

    assert refused is False
    assert first_release is False
    assert still_registered is True
    assert second_release is True
    assert listeners.is_running("t1") is False
