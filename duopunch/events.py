import asyncio
import logging
from typing import Any, Callable, Dict, List, Set

logger = logging.getLogger(__name__)

EventCallback = Callable[[Dict[str, Any]], Any]


class EventBus:
    """Minimal in-process event bus, injected into whoever wants to report."""

    def __init__(self):
        self._subscribers: Dict[str, List[EventCallback]] = {}
        self._pending: Set["asyncio.Task[Any]"] = set()

    def subscribe(self, event_name: str, callback: EventCallback) -> None:
        self._subscribers.setdefault(event_name, []).append(callback)

    def unsubscribe(self, event_name: str, callback: EventCallback) -> None:
        if event_name in self._subscribers:
            self._subscribers[event_name] = [
                cb for cb in self._subscribers[event_name] if cb != callback
            ]

    def emit(self, event_name: str, payload: Dict[str, Any]) -> None:
        """Deliver payload to subscribers; coroutine results run on the current loop."""
        for cb in list(self._subscribers.get(event_name, [])):
            try:
                result = cb(payload)
            except Exception:
                # keep other listeners alive
                logger.exception("Event subscriber failed for %s", event_name)
                continue
            if asyncio.iscoroutine(result):
                self._schedule(event_name, result)

    def _schedule(self, event_name: str, coro: Any) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            logger.debug("No running loop, dropping async subscriber for %s", event_name)
            return
        task = loop.create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        """Wait for scheduled async subscribers."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
