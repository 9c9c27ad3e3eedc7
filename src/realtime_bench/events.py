"""Change handler type and delivery helper shared by the backends."""

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Any

logger = logging.getLogger("realtime-bench")

ChangeHandler = Callable[[dict[str, Any]], Awaitable[None] | None]


async def deliver(handler: ChangeHandler, event: dict[str, Any], topic: str = "") -> None:
    """Invoke a sync or async handler; failures are logged, never raised."""
    try:
        result = handler(event)
        if inspect.isawaitable(result):
            await result
    except Exception:
        logger.exception("Change handler failed for topic '%s'", topic)
