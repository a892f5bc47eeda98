# observe/runtime.py
from __future__ import annotations

import queue
import threading
import zlib
from typing import Callable, List, Optional

import config
from farms.service import object_key

Handle = Callable[[str, str, Optional[dict], Optional[dict]], bool]


class KeyedWorkerPool:
    """Runs notifications on a fixed set of threads.

    Notifications are routed by namespace/name, so everything about one object
    (its Service and its Endpoints alike) runs in delivery order on a single
    thread while unrelated objects proceed in parallel.
    """

    def __init__(self, handle: Handle, workers: int = config.WORKERS):
        self.handle = handle
        self._queues: List[queue.Queue] = [queue.Queue() for _ in range(max(1, workers))]
        self._threads: List[threading.Thread] = []

    def start(self) -> None:
        if self._threads:
            return
        for i, q in enumerate(self._queues):
            t = threading.Thread(target=self._work, args=(q,), name=f"worker-{i}", daemon=True)
            t.start()
            self._threads.append(t)

    def shard(self, obj: Optional[dict]) -> int:
        return zlib.crc32(object_key(obj).encode()) % len(self._queues)

    def submit(self, kind: str, event: str, old: Optional[dict], new: Optional[dict]) -> None:
        obj = new if new is not None else old
        self._queues[self.shard(obj)].put((kind, event, old, new))

    def _work(self, q: queue.Queue) -> None:
        while True:
            item = q.get()
            try:
                if item is None:
                    return
                kind, event, old, new = item
                try:
                    self.handle(kind, event, old, new)
                except Exception as e:
                    print(f"[worker] {kind} {event} crashed: {type(e).__name__}: {e}")
            finally:
                q.task_done()

    def join(self) -> None:
        """Block until every submitted notification has been handled."""
        for q in self._queues:
            q.join()

    def stop(self, timeout: float = 5.0) -> None:
        for q in self._queues:
            q.put(None)
        for t in self._threads:
            t.join(timeout=timeout)
        self._threads = []


def run_informers(stop_event: threading.Event, informers) -> List[threading.Thread]:
    """Start one background thread per informer."""
    threads = []
    for inf in informers:
        t = threading.Thread(target=inf.run, args=(stop_event,), name=f"informer-{inf.kind}", daemon=True)
        t.start()
        threads.append(t)
    return threads
