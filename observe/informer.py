# observe/informer.py
from __future__ import annotations

import threading
import time
from typing import Callable, Dict, Optional

from kubernetes import watch
from kubernetes.client import ApiClient
from kubernetes.client.rest import ApiException

import config
from farms.service import object_key

Emit = Callable[[str, str, Optional[dict], Optional[dict]], None]

GONE = 410


def _resource_version(obj: dict) -> Optional[str]:
    return ((obj or {}).get("metadata", {}) or {}).get("resourceVersion")


class Informer:
    """List, then watch, one resource kind across all namespaces.

    Keeps the last object seen per namespace/name so MODIFIED and DELETED can be
    delivered as (old, new) pairs. After a 410 Gone the kind is listed again and
    objects that vanished in the gap are reported as DELETED.
    """

    def __init__(self, kind: str, list_func, emit: Emit, timeout_seconds: int = config.WATCH_TIMEOUT):
        self.kind = kind
        self.list_func = list_func
        self.emit = emit
        self.timeout_seconds = timeout_seconds
        self.resource_version: Optional[str] = None
        self._store: Dict[str, dict] = {}
        self._serializer = ApiClient()

    def relist(self) -> None:
        res = self.list_func()
        items = [self._serializer.sanitize_for_serialization(i) for i in res.items]
        fresh = {object_key(i): i for i in items}

        for key, old in list(self._store.items()):
            if key not in fresh:
                del self._store[key]
                self.emit(self.kind, "DELETED", old, None)
        for key, obj in fresh.items():
            old = self._store.get(key)
            self._store[key] = obj
            if old is None:
                self.emit(self.kind, "ADDED", None, obj)
            elif _resource_version(old) != _resource_version(obj):
                self.emit(self.kind, "MODIFIED", old, obj)

        self.resource_version = res.metadata.resource_version
        print(f"[informer] {self.kind}: listed {len(fresh)} object(s)")

    def observe(self, event_type: str, obj: dict) -> None:
        key = object_key(obj)
        old = self._store.get(key)
        if event_type == "DELETED":
            self._store.pop(key, None)
            self.emit(self.kind, "DELETED", old or obj, None)
        elif event_type in ("ADDED", "MODIFIED"):
            self._store[key] = obj
            self.emit(self.kind, "ADDED" if old is None else "MODIFIED", old, obj)
        rv = _resource_version(obj)
        if rv:
            self.resource_version = rv

    def run(self, stop_event: threading.Event) -> None:
        backoff = 1.0
        while not stop_event.is_set():
            try:
                if self.resource_version is None:
                    self.relist()
                w = watch.Watch()
                for event in w.stream(
                    self.list_func,
                    resource_version=self.resource_version,
                    timeout_seconds=self.timeout_seconds,
                ):
                    if stop_event.is_set():
                        w.stop()
                        break
                    raw = event.get("raw_object") or {}
                    if event["type"] == "BOOKMARK":
                        self.resource_version = _resource_version(raw) or self.resource_version
                        continue
                    if event["type"] == "ERROR":
                        if raw.get("code") == GONE:
                            self.resource_version = None
                            break
                        print(f"[informer] {self.kind}: watch error {raw.get('message')}")
                        continue
                    self.observe(event["type"], raw)
                backoff = 1.0
            except ApiException as e:
                if e.status == GONE:
                    self.resource_version = None
                    continue
                print(f"[informer] {self.kind}: api error {e.status} {e.reason}")
                time.sleep(backoff)
                backoff = min(backoff * 2, 30.0)
            except Exception as e:
                print(f"[informer] {self.kind}: error: {e}")
                time.sleep(backoff)
                backoff = min(backoff * 2, 30.0)

        print(f"[informer] {self.kind}: stopped")
