from __future__ import annotations

import asyncio
import logging
from threading import Lock
from typing import Awaitable, Callable

from backend.review_invites.services.contracts import AttemptFn

logger = logging.getLogger("review_invites.scheduler")


class AsyncioRetryScheduler:
    """
    Runs deferred retry attempts as tasks on the running event loop.

    At most one attempt is pending per conversation. Pending retries live only in
    this process; shutdown() drops them and the records stay in `retrying`.
    """

    def __init__(self, *, sleep: Callable[[float], Awaitable[None]] = asyncio.sleep) -> None:
        self._sleep = sleep
        self._lock = Lock()
        self._pending: dict[str, tuple[asyncio.Task, int]] = {}

    def schedule(self, conversation_id: str, delay_ms: int, attempt_fn: AttemptFn) -> None:
        loop = asyncio.get_running_loop()
        task = loop.create_task(
            self._run_later(conversation_id, delay_ms, attempt_fn),
            name=f"retry:{conversation_id}",
        )
        with self._lock:
            previous = self._pending.get(conversation_id)
            self._pending[conversation_id] = (task, delay_ms)
        if previous and not previous[0].done():
            logger.warning("retry_replaced conversation_id=%s", conversation_id)
            previous[0].cancel()
        logger.info("retry_scheduled conversation_id=%s delay_ms=%s", conversation_id, delay_ms)

    async def _run_later(self, conversation_id: str, delay_ms: int, attempt_fn: AttemptFn) -> None:
        await self._sleep(delay_ms / 1000.0)
        with self._lock:
            entry = self._pending.get(conversation_id)
            if entry and entry[0] is asyncio.current_task():
                del self._pending[conversation_id]
        try:
            await attempt_fn()
        except Exception:
            logger.exception("retry_attempt_crashed conversation_id=%s", conversation_id)

    def pending(self) -> dict[str, int]:
        with self._lock:
            return {
                conversation_id: delay_ms
                for conversation_id, (task, delay_ms) in self._pending.items()
                if not task.done()
            }

    def cancel(self, conversation_id: str) -> bool:
        with self._lock:
            entry = self._pending.pop(conversation_id, None)
        if not entry or entry[0].done():
            return False
        entry[0].cancel()
        return True

    def shutdown(self) -> int:
        with self._lock:
            entries = list(self._pending.items())
            self._pending.clear()
        dropped = 0
        for conversation_id, (task, _) in entries:
            if task.done():
                continue
            task.cancel()
            dropped += 1
            logger.warning("retry_dropped_on_shutdown conversation_id=%s", conversation_id)
        return dropped
