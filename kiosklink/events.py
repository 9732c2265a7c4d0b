"""Observer registries for reconnect and proximity notifications."""
from __future__ import annotations

import inspect
import logging
from typing import Any, Awaitable, Callable, List, Union

logger = logging.getLogger(__name__)

Callback = Callable[[], Union[None, Awaitable[Any]]]


class CallbackRegistry:
    """Ordered set of subscribers fired together on one event.

    Subscribers run on the firing task, one after another; a coroutine result
    is awaited before the next subscriber runs. A subscriber that raises is
    logged and skipped.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._callbacks: List[Callback] = []

    def subscribe(self, callback: Callback) -> Callable[[], None]:
        if not callable(callback):
            raise TypeError(f"{self.name} callback must be callable")
        self._callbacks.append(callback)

        def _unsubscribe() -> None:
            try:
                self._callbacks.remove(callback)
            except ValueError:
                pass

        return _unsubscribe

    async def fire(self) -> int:
        """Invoke every subscriber; return how many completed without error."""
        completed = 0
        for callback in list(self._callbacks):
            try:
                outcome = callback()
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception:
                logger.exception("%s callback %r raised", self.name, callback)
                continue
            completed += 1
        return completed

    def __len__(self) -> int:
        return len(self._callbacks)


__all__ = ["Callback", "CallbackRegistry"]
