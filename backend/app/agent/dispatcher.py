"""
Per-session dispatcher.

Messages for the same session key are processed one at a time, in arrival
order. Different sessions run in parallel on a shared thread pool. Each
key has a FIFO queue; only one worker drains a key's queue at a time.
"""
import logging
import threading
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Deque, Dict, Hashable

logger = logging.getLogger(__name__)


class SessionDispatcher:
    def __init__(self, max_workers: int = 8):
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="turn")
        self._lock = threading.Lock()
        self._queues: Dict[Hashable, Deque] = {}
        self._closed = False

    def submit(self, key: Hashable, fn: Callable, *args, **kwargs) -> Future:
        """
        Queue fn for key. The returned future resolves when fn has run.

        Raises RuntimeError once the dispatcher is shut down.
        """
        future: Future = Future()
        with self._lock:
            if self._closed:
                raise RuntimeError("dispatcher is shut down")
            queue = self._queues.get(key)
            start_worker = queue is None
            if start_worker:
                queue = deque()
                self._queues[key] = queue
            queue.append((future, fn, args, kwargs))
        if start_worker:
            try:
                self._executor.submit(self._drain, key)
            except RuntimeError:
                # No worker will ever drain this key; fail what was queued.
                with self._lock:
                    orphaned = self._queues.pop(key, deque())
                for queued, *_ in orphaned:
                    if queued is not future and queued.set_running_or_notify_cancel():
                        queued.set_exception(RuntimeError("dispatcher is shut down"))
                raise
        return future

    def pending(self, key: Hashable) -> int:
        with self._lock:
            queue = self._queues.get(key)
            return len(queue) if queue else 0

    def _drain(self, key: Hashable) -> None:
        while True:
            with self._lock:
                queue = self._queues[key]
                if not queue:
                    del self._queues[key]
                    return
                future, fn, args, kwargs = queue.popleft()

            if not future.set_running_or_notify_cancel():
                continue
            try:
                future.set_result(fn(*args, **kwargs))
            except Exception as e:
                logger.error(f"[Dispatcher] Work for {key} raised: {e}", exc_info=True)
                future.set_exception(e)

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            self._closed = True
        self._executor.shutdown(wait=wait)
