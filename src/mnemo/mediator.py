"""
mnemo Mediator -- request/notification bus with an ordered behavior pipeline.

- Requests: exactly one handler per request type. send() wraps it in the
  behaviors, first-registered outermost, so entry runs in registration
  order and exit in reverse.
- Notifications: any number of handlers per type. publish() runs them
  concurrently and waits for all; one failure is re-raised as-is, several
  are raised together as an ExceptionGroup. No handlers is a no-op.

Registries belong to the Mediator instance; there is no module-level state.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Union

from mnemo.errors import DuplicateRegistrationError, HandlerNotFoundError

logger = logging.getLogger("mnemo.mediator")

Next = Callable[[], Awaitable[Any]]


def _type_key(value: Any, attr: str) -> str:
    """Accept a discriminant string, a message class, or a message instance."""
    if isinstance(value, str):
        return value
    key = getattr(value, attr, None)
    if not isinstance(key, str) or not key:
        raise TypeError(f"{value!r} has no {attr}")
    return key


def _as_callable(handler: Any) -> Callable[[Any], Awaitable[Any]]:
    handle = getattr(handler, "handle", None)
    if handle is not None and callable(handle):
        return handle
    if callable(handler):
        return handler
    raise TypeError(f"Handler must be callable or define handle(): {handler!r}")


class Mediator:
    def __init__(self):
        self._request_handlers: Dict[str, Callable[[Any], Awaitable[Any]]] = {}
        self._notification_handlers: Dict[str, List[Callable[[Any], Awaitable[None]]]] = {}
        self._behaviors: List[Any] = []

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register_handler(self, request_type: Union[str, type], handler: Any) -> None:
        key = _type_key(request_type, "request_type")
        if key in self._request_handlers:
            raise DuplicateRegistrationError(key)
        self._request_handlers[key] = _as_callable(handler)

    def register_notification_handler(self, notification_type: Union[str, type], handler: Any) -> None:
        key = _type_key(notification_type, "notification_type")
        self._notification_handlers.setdefault(key, []).append(_as_callable(handler))

    def add_behavior(self, behavior: Any) -> None:
        """Append a behavior. Earlier behaviors wrap later ones."""
        self._behaviors.append(behavior)

    def has_handler(self, request_type: Union[str, type]) -> bool:
        return _type_key(request_type, "request_type") in self._request_handlers

    @property
    def request_types(self) -> List[str]:
        return sorted(self._request_handlers)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def send(self, request: Any) -> Any:
        key = _type_key(request, "request_type")
        handler = self._request_handlers.get(key)
        if handler is None:
            raise HandlerNotFoundError(key)

        async def invoke() -> Any:
            return await handler(request)

        pipeline: Next = invoke
        for behavior in reversed(self._behaviors):
            pipeline = self._wrap(behavior, request, pipeline)
        return await pipeline()

    @staticmethod
    def _wrap(behavior: Any, request: Any, inner: Next) -> Next:
        async def step() -> Any:
            return await behavior.handle(request, inner)

        return step

    async def publish(self, notification: Any) -> None:
        key = _type_key(notification, "notification_type")
        handlers = list(self._notification_handlers.get(key, ()))
        if not handlers:
            return

        results = await asyncio.gather(
            *(h(notification) for h in handlers), return_exceptions=True
        )
        errors = [r for r in results if isinstance(r, BaseException)]
        if not errors:
            return
        for err in errors:
            logger.warning("Notification handler for %s failed: %s", key, err)
        if len(errors) == 1:
            raise errors[0]
        # BaseExceptionGroup narrows itself to ExceptionGroup when every error is an Exception
        raise BaseExceptionGroup(f"{len(errors)} notification handlers failed for {key}", errors)
