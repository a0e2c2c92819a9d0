"""
mnemo Hook Bridge -- external hook events in, ``hook:<name>`` notifications out.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional

from mnemo.messages import HookNotification

logger = logging.getLogger("mnemo.hooks")


@dataclass
class HookEvent:
    name: str
    payload: Dict[str, Any] = field(default_factory=dict)
    timestamp: Optional[str] = None


class HookBridge:
    def __init__(self, mediator):
        self.mediator = mediator

    async def on_hook(self, event: HookEvent) -> None:
        """Publish the event 1:1 as a HookNotification typed ``hook:<name>``."""
        if not event.name:
            raise ValueError("hook event requires a name")
        notification = HookNotification(
            hook_name=event.name,
            payload=dict(event.payload or {}),
            timestamp=event.timestamp or datetime.now(timezone.utc).isoformat(),
        )
        logger.debug("hook %s -> %s", event.name, notification.notification_type)
        await self.mediator.publish(notification)

    def on_hook_type(self, hook_name: str, handler: Callable[[Dict[str, Any]], Awaitable[None]]) -> None:
        """Subscribe ``handler(payload)`` to one hook name (exact match)."""

        async def forward(notification: HookNotification) -> None:
            await handler(notification.payload)

        self.mediator.register_notification_handler(f"hook:{hook_name}", forward)
