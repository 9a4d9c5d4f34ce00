import asyncio

import pytest

from realtime_calendar_agent.transport.events import Dispatcher


def test_on_registers_handlers():
    async def main():
        dispatcher = Dispatcher()
        called: list[str] = []

        @dispatcher.on("decorated")
        async def decorated(ev):
            called.append(ev["msg"])

        async def direct(ev):
            called.append(ev["msg"])

        dispatcher.on("direct", direct)

        await dispatcher.dispatch({"type": "decorated", "msg": "a"})
        await dispatcher.dispatch({"type": "direct", "msg": "b"})
        await dispatcher.dispatch({"type": "unhandled", "msg": "c"})

        assert called == ["a", "b"]
        assert dispatcher.event_types == {"decorated", "direct"}

    asyncio.run(main())


def test_one_handler_per_event_type():
    async def handler(ev):
        return None

    dispatcher = Dispatcher()
    dispatcher.on_many(["a", "b"], handler)
    with pytest.raises(ValueError):
        dispatcher.on("a", handler)
    dispatcher.clear()
    assert dispatcher.event_types == frozenset()
