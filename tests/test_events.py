import pytest

from callbot.services.events import EventEmitter


@pytest.mark.asyncio
async def test_emit_calls_sync_and_async_listeners_in_order() -> None:
    emitter = EventEmitter()
    calls: list[str] = []

    def first(value: int) -> None:
        calls.append(f"sync:{value}")

    async def second(value: int) -> None:
        calls.append(f"async:{value}")

    emitter.on("tick", first)
    emitter.on("tick", second)

    delivered = await emitter.emit("tick", 1)

    assert delivered is True
    assert calls == ["sync:1", "async:1"]


@pytest.mark.asyncio
async def test_emit_without_listeners_reports_false() -> None:
    emitter = EventEmitter()

    assert await emitter.emit("missing") is False


@pytest.mark.asyncio
async def test_failing_listener_does_not_block_others() -> None:
    emitter = EventEmitter()
    received: list[str] = []

    async def broken(_: str) -> None:
        raise RuntimeError("boom")

    emitter.on("msg", broken)
    emitter.on("msg", received.append)

    await emitter.emit("msg", "hello")

    assert received == ["hello"]


@pytest.mark.asyncio
async def test_off_and_remove_all_listeners() -> None:
    emitter = EventEmitter()
    received: list[str] = []
    emitter.on("a", received.append)
    emitter.on("b", received.append)

    emitter.off("a", received.append)
    assert emitter.listener_count("a") == 0
    await emitter.emit("a", "dropped")

    emitter.remove_all_listeners()
    assert emitter.listener_count("b") == 0
    await emitter.emit("b", "dropped")

    assert received == []
