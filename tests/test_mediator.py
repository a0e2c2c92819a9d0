"""Tests for mnemo Mediator -- request registry, behavior onion, fan-out."""
import asyncio

import pytest

from mnemo import messages as m
from mnemo.errors import DuplicateRegistrationError, HandlerNotFoundError, NotFoundError
from mnemo.mediator import Mediator


class _Recorder:
    def __init__(self, name, log):
        self.name = name
        self.log = log

    async def handle(self, request, next):
        self.log.append(f"{self.name}:in")
        result = await next()
        self.log.append(f"{self.name}:out")
        return result


class _ShortCircuit:
    async def handle(self, request, next):
        return "short-circuited"


class _EchoHandler:
    async def handle(self, request):
        return request.query.upper()


class TestSend:
    @pytest.mark.asyncio
    async def test_dispatches_to_handler(self):
        mediator = Mediator()
        mediator.register_handler(m.SearchKnowledge, _EchoHandler())
        assert await mediator.send(m.SearchKnowledge(query="abc")) == "ABC"

    @pytest.mark.asyncio
    async def test_plain_callable_and_string_key(self):
        mediator = Mediator()

        async def handler(req):
            return req.text

        mediator.register_handler("ExtractEntities", handler)
        assert mediator.has_handler(m.ExtractEntities)
        assert await mediator.send(m.ExtractEntities(text="hello")) == "hello"

    @pytest.mark.asyncio
    async def test_missing_handler(self):
        with pytest.raises(HandlerNotFoundError) as exc:
            await Mediator().send(m.SearchKnowledge(query="x"))
        assert isinstance(exc.value, NotFoundError)
        assert exc.value.request_type == "SearchKnowledge"

    def test_duplicate_registration(self):
        mediator = Mediator()
        mediator.register_handler(m.SearchKnowledge, _EchoHandler())
        with pytest.raises(DuplicateRegistrationError):
            mediator.register_handler("SearchKnowledge", _EchoHandler())

    @pytest.mark.asyncio
    async def test_behavior_onion_order(self):
        log = []
        mediator = Mediator()
        for name in ("first", "second", "third"):
            mediator.add_behavior(_Recorder(name, log))

        async def handler(req):
            log.append("handler")
            return "done"

        mediator.register_handler(m.SearchKnowledge, handler)
        assert await mediator.send(m.SearchKnowledge(query="q")) == "done"
        assert log == [
            "first:in", "second:in", "third:in",
            "handler",
            "third:out", "second:out", "first:out",
        ]

    @pytest.mark.asyncio
    async def test_short_circuit_skips_inner(self):
        log = []
        mediator = Mediator()
        mediator.add_behavior(_Recorder("outer", log))
        mediator.add_behavior(_ShortCircuit())
        mediator.add_behavior(_Recorder("inner", log))

        async def handler(req):
            log.append("handler")

        mediator.register_handler(m.SearchKnowledge, handler)
        assert await mediator.send(m.SearchKnowledge(query="q")) == "short-circuited"
        assert log == ["outer:in", "outer:out"]

    @pytest.mark.asyncio
    async def test_handler_error_propagates_unchanged(self):
        boom = KeyError("boom")
        mediator = Mediator()
        mediator.add_behavior(_Recorder("outer", []))

        async def handler(req):
            raise boom

        mediator.register_handler(m.SearchKnowledge, handler)
        with pytest.raises(KeyError) as exc:
            await mediator.send(m.SearchKnowledge(query="q"))
        assert exc.value is boom

    def test_request_types(self):
        mediator = Mediator()
        mediator.register_handler(m.StoreEntity, _EchoHandler())
        mediator.register_handler(m.ForgetEntity, _EchoHandler())
        assert mediator.request_types == ["ForgetEntity", "StoreEntity"]


class TestPublish:
    @pytest.mark.asyncio
    async def test_no_handlers_is_noop(self):
        await Mediator().publish(m.ContentIndexed(chunk_id="c", source_uri="u"))

    @pytest.mark.asyncio
    async def test_all_handlers_receive(self):
        seen = []
        mediator = Mediator()

        async def a(event):
            seen.append(("a", event.chunk_id))

        async def b(event):
            seen.append(("b", event.chunk_id))

        mediator.register_notification_handler(m.ContentIndexed, a)
        mediator.register_notification_handler("ContentIndexed", b)
        await mediator.publish(m.ContentIndexed(chunk_id="c1", source_uri="u"))
        assert sorted(seen) == [("a", "c1"), ("b", "c1")]

    @pytest.mark.asyncio
    async def test_one_failure_propagates_as_is_and_others_complete(self):
        seen = []
        boom = RuntimeError("handler exploded")
        mediator = Mediator()

        async def failing(event):
            raise boom

        async def working(event):
            await asyncio.sleep(0)
            seen.append(event.entity_id)

        mediator.register_notification_handler(m.EntityDiscovered, failing)
        mediator.register_notification_handler(m.EntityDiscovered, working)

        with pytest.raises(RuntimeError) as exc:
            await mediator.publish(m.EntityDiscovered(entity_id="e1", name="A", type="person"))
        assert exc.value is boom
        assert seen == ["e1"]

    @pytest.mark.asyncio
    async def test_multiple_failures_aggregate(self):
        mediator = Mediator()
        errors = [ValueError("one"), KeyError("two")]

        for err in errors:
            async def failing(event, err=err):
                raise err
            mediator.register_notification_handler(m.EntityDiscovered, failing)

        with pytest.raises(ExceptionGroup) as exc:
            await mediator.publish(m.EntityDiscovered(entity_id="e1", name="A", type="person"))
        assert list(exc.value.exceptions) == errors

    @pytest.mark.asyncio
    async def test_handlers_run_concurrently(self):
        mediator = Mediator()
        ready = asyncio.Event()

        async def waiter(event):
            await asyncio.wait_for(ready.wait(), timeout=1.0)

        async def setter(event):
            ready.set()

        mediator.register_notification_handler(m.ContentIndexed, waiter)
        mediator.register_notification_handler(m.ContentIndexed, setter)
        await mediator.publish(m.ContentIndexed(chunk_id="c", source_uri="u"))
        assert ready.is_set()

    @pytest.mark.asyncio
    async def test_hook_notifications_keyed_by_name(self):
        seen = []
        mediator = Mediator()

        async def handler(event):
            seen.append(event.payload)

        mediator.register_notification_handler("hook:session_start", handler)
        await mediator.publish(m.HookNotification(hook_name="session_start", payload={"x": 1}))
        await mediator.publish(m.HookNotification(hook_name="session_end", payload={"x": 2}))
        assert seen == [{"x": 1}]
