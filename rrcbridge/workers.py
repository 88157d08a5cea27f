from __future__ import annotations

import logging
import queue
import threading
from typing import Any, Callable

_STOP = object()


class WorkerPool:
    """A queue drained by a fixed set of daemon threads.

    Items are handled in no particular order across workers. Exceptions
    raised by the handler are logged and the worker keeps going.
    """

    def __init__(self, name: str, handler: Callable[[Any], None], workers: int = 4) -> None:
        if workers < 1:
            raise ValueError("workers must be at least 1")
        self.name = name
        self.log = logging.getLogger("rrcbridge.workers")
        self._handler = handler
        self._size = int(workers)
        self._queue: queue.Queue[Any] = queue.Queue()
        self._threads: list[threading.Thread] = []
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        with self._lock:
            return bool(self._threads)

    def start(self) -> None:
        with self._lock:
            if self._threads:
                return
            for i in range(self._size):
                t = threading.Thread(
                    target=self._run, name=f"{self.name}-{i}", daemon=True
                )
                self._threads.append(t)
                t.start()

    def submit(self, item: Any) -> None:
        if item is _STOP:
            raise ValueError("cannot submit the stop marker")
        self._queue.put(item)

    def join(self) -> None:
        """Block until every submitted item has been handled."""
        self._queue.join()

    def stop(self, timeout: float | None = 5.0) -> None:
        with self._lock:
            threads = list(self._threads)
            self._threads.clear()
        for _ in threads:
            self._queue.put(_STOP)
        for t in threads:
            t.join(timeout)

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                self._handler(item)
            except Exception:
                self.log.exception("Worker %s failed to handle %r", self.name, item)
            finally:
                self._queue.task_done()
