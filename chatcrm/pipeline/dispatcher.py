"""Per-conversation ordered execution.

Webhooks are acknowledged before processing completes. Work for the same
``(tenant, channel, sender)`` key is queued FIFO and drained by a single job
at a time, so a quantity reply is never processed before the product message
that preceded it. Different keys run in parallel on a bounded thread pool.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from collections.abc import Callable, Hashable
from concurrent.futures import Future, ThreadPoolExecutor, wait

logger = logging.getLogger(__name__)


class _InlineSlot:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.users = 0


class ConversationDispatcher:
    def __init__(self, max_workers: int = 8, *, inline: bool = False) -> None:
        self.inline = inline
        self.executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="conversation"
        )
        self._lock = threading.Lock()
        self._queues: dict[Hashable, deque[Callable[[], object]]] = {}
        self._inline_slots: dict[Hashable, _InlineSlot] = {}
        self._futures: set[Future] = set()

    def submit(self, key: Hashable, job: Callable[[], object]) -> None:
        """Queue ``job`` behind earlier work for ``key``."""

        if self.inline:
            self._run_inline(key, job)
            return

        with self._lock:
            queue = self._queues.get(key)
            if queue is not None:
                queue.append(job)
                return
            self._queues[key] = deque([job])
            future = self.executor.submit(self._drain, key)
            self._futures.add(future)
        future.add_done_callback(self._forget)

    def _run_inline(self, key: Hashable, job: Callable[[], object]) -> None:
        # Slots live only while a caller holds or waits on them.
        with self._lock:
            slot = self._inline_slots.get(key)
            if slot is None:
                slot = self._inline_slots[key] = _InlineSlot()
            slot.users += 1
        try:
            with slot.lock:
                self._run(key, job)
        finally:
            with self._lock:
                slot.users -= 1
                if not slot.users:
                    del self._inline_slots[key]

    def _forget(self, future: Future) -> None:
        with self._lock:
            self._futures.discard(future)

    def _drain(self, key: Hashable) -> None:
        while True:
            with self._lock:
                queue = self._queues[key]
                if not queue:
                    del self._queues[key]
                    return
                job = queue[0]
            self._run(key, job)
            with self._lock:
                self._queues[key].popleft()

    def _run(self, key: Hashable, job: Callable[[], object]) -> None:
        try:
            job()
        except Exception:
            logger.exception("Conversation job failed for key %s", key)

    def pending(self) -> int:
        with self._lock:
            return sum(len(queue) for queue in self._queues.values())

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until every queued job has run. Returns ``False`` on timeout."""

        while True:
            with self._lock:
                futures = set(self._futures)
            if not futures:
                return True
            done, not_done = wait(futures, timeout=timeout)
            if not_done:
                return False

    def shutdown(self, wait_for_jobs: bool = True) -> None:
        self.executor.shutdown(wait=wait_for_jobs)


__all__ = ["ConversationDispatcher"]
