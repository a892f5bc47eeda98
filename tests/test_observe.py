from __future__ import annotations

import threading
from types import SimpleNamespace

from observe.informer import Informer
from observe.runtime import KeyedWorkerPool


def _obj(name, rv, ns="default", **extra):
    return {"metadata": {"name": name, "namespace": ns, "resourceVersion": rv}, **extra}


class Recorder:
    def __init__(self):
        self.events = []

    def __call__(self, kind, event, old, new):
        self.events.append((kind, event, old, new))


def _lister(*items, rv="100"):
    def list_func(**kwargs):
        return SimpleNamespace(items=list(items), metadata=SimpleNamespace(resource_version=rv))

    return list_func


def test_watch_events_carry_previous_object() -> None:
    rec = Recorder()
    inf = Informer("Service", _lister(), rec)
    v1, v2 = _obj("web", "1"), _obj("web", "2")

    inf.observe("ADDED", v1)
    inf.observe("MODIFIED", v2)
    inf.observe("DELETED", v2)

    assert [(e[1], e[2], e[3]) for e in rec.events] == [
        ("ADDED", None, v1),
        ("MODIFIED", v1, v2),
        ("DELETED", v2, None),
    ]
    assert inf.resource_version == "2"


def test_relist_reports_changes_and_vanished_objects() -> None:
    rec = Recorder()
    web, api = _obj("web", "1"), _obj("api", "1")
    inf = Informer("Endpoints", _lister(web, api, rv="10"), rec)
    inf.relist()
    assert [(e[1], e[3]["metadata"]["name"]) for e in rec.events] == [("ADDED", "web"), ("ADDED", "api")]
    assert inf.resource_version == "10"

    rec.events.clear()
    web2 = _obj("web", "2")
    inf.list_func = _lister(web2, rv="20")
    inf.relist()
    assert [(e[1], (e[3] or e[2])["metadata"]["name"]) for e in rec.events] == [
        ("DELETED", "api"),
        ("MODIFIED", "web"),
    ]


def test_relist_without_changes_is_quiet() -> None:
    rec = Recorder()
    inf = Informer("Service", _lister(_obj("web", "1")), rec)
    inf.relist()
    rec.events.clear()
    inf.relist()
    assert rec.events == []


def test_same_object_routes_to_same_worker() -> None:
    pool = KeyedWorkerPool(lambda *a: True, workers=8)
    svc = _obj("web", "1")
    eps = _obj("web", "7", subsets=[])
    assert pool.shard(svc) == pool.shard(eps)


def test_notifications_for_one_object_stay_ordered() -> None:
    seen = []
    lock = threading.Lock()

    def handle(kind, event, old, new):
        with lock:
            seen.append((new or old)["metadata"]["resourceVersion"])
        return True

    pool = KeyedWorkerPool(handle, workers=4)
    pool.start()
    try:
        for i in range(50):
            pool.submit("Endpoints", "MODIFIED", None, _obj("web", str(i)))
        pool.join()
    finally:
        pool.stop()
    assert seen == [str(i) for i in range(50)]


def test_worker_survives_a_crashing_handler(capsys) -> None:
    handled = []

    def handle(kind, event, old, new):
        if new["metadata"]["name"] == "bad":
            raise RuntimeError("boom")
        handled.append(new["metadata"]["name"])
        return True

    pool = KeyedWorkerPool(handle, workers=1)
    pool.start()
    try:
        pool.submit("Service", "ADDED", None, _obj("bad", "1"))
        pool.submit("Service", "ADDED", None, _obj("good", "1"))
        pool.join()
    finally:
        pool.stop()
    assert handled == ["good"]
    assert "[worker] Service ADDED crashed" in capsys.readouterr().out
