from __future__ import annotations

from types import SimpleNamespace

import pytest

from dsr.aliases import AliasManager
from dsr.netns import CommandFailed, ContainerGone
from handlers import Controller
from nftlb import NftlbClient
from registry import CorrelationRegistry

NFTLB_ANN = "service.kubernetes.io/kube-nftlb-load-balancer-"


def make_service(
    name: str = "web",
    ns: str = "default",
    cluster_ip: str = "10.0.0.5",
    ports=None,
    svc_type: str = "ClusterIP",
    annotations=None,
    labels=None,
    external_ips=None,
    **spec_extra,
) -> dict:
    ports = ports if ports is not None else [{"name": "http", "port": 80, "protocol": "TCP"}]
    spec = {"type": svc_type, "clusterIP": cluster_ip, "ports": ports}
    if external_ips:
        spec["externalIPs"] = external_ips
    spec.update(spec_extra)
    return {
        "metadata": {
            "name": name,
            "namespace": ns,
            "labels": labels or {},
            "annotations": {NFTLB_ANN + k: v for k, v in (annotations or {}).items()},
        },
        "spec": spec,
    }


def make_endpoints(name: str = "web", ns: str = "default", backends=None, ports=None) -> dict:
    """backends: [(pod name, ip)]"""
    backends = backends if backends is not None else [("web-1", "10.1.0.1")]
    ports = ports if ports is not None else [{"name": "http", "port": 8080, "protocol": "TCP"}]
    subsets = []
    if backends:
        subsets.append(
            {
                "addresses": [
                    {"ip": ip, "targetRef": {"kind": "Pod", "name": pod, "namespace": ns}} for pod, ip in backends
                ],
                "ports": ports,
            }
        )
    return {"metadata": {"name": name, "namespace": ns}, "subsets": subsets}


def make_pod(name: str, labels: dict, container_id: str) -> dict:
    return {
        "metadata": {"name": name, "labels": labels},
        "status": {"containerStatuses": [{"containerID": f"containerd://{container_id}"}]},
    }


class FakeSink:
    def __init__(self, fail_on=None):
        self.calls = []
        self.fail_on = fail_on or set()

    def _maybe_fail(self, method, path):
        from errors import SinkRequestFailed

        if method in self.fail_on or path in self.fail_on:
            raise SinkRequestFailed(method, path, 500, "boom")

    def apply(self, farms):
        self._maybe_fail("POST", "")
        self.calls.append(("apply", farms))
        return ""

    def delete_farm(self, farm):
        self._maybe_fail("DELETE", f"/{farm}")
        self.calls.append(("delete_farm", farm))
        return ""

    def delete_backend(self, farm, backend):
        self._maybe_fail("DELETE", f"/{farm}/backends/{backend}")
        self.calls.append(("delete_backend", farm, backend))
        return ""

    def of(self, kind):
        return [c for c in self.calls if c[0] == kind]


class FakePods:
    def __init__(self, pods=None, handles=None):
        self.pods = pods or []
        self.handles = dict(handles or {})
        self.listed = []

    def list_pods(self, namespace, selector):
        self.listed.append((namespace, dict(selector)))
        return list(self.pods)

    def container_handle(self, namespace, pod):
        return self.handles.get(pod)


class FakeExecutor:
    def __init__(self, gone=None, failing=None):
        self.runs = []
        self.gone = set(gone or [])
        self.failing = dict(failing or {})

    def run(self, handle, command):
        if handle in self.gone:
            raise ContainerGone(f"container {handle} not found")
        if handle in self.failing:
            raise CommandFailed(self.failing[handle])
        self.runs.append((handle, command))
        return ""

    def commands(self, action):
        return [(h, c) for h, c in self.runs if c.startswith(f"ip address {action} ")]


class FakeResponse:
    def __init__(self, status_code: int, text: str = ""):
        self.status_code = status_code
        self.text = text

    @property
    def ok(self) -> bool:
        return self.status_code < 400


class FakeSession:
    """Replays queued responses; an Exception instance in the queue is raised."""

    def __init__(self, responses):
        self.responses = list(responses)
        self.requests = []

    def request(self, method, url, data=None, headers=None, timeout=None):
        self.requests.append(SimpleNamespace(method=method, url=url, data=data, headers=headers, timeout=timeout))
        item = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(item, Exception):
            raise item
        return item


@pytest.fixture
def registry() -> CorrelationRegistry:
    return CorrelationRegistry()


@pytest.fixture
def sink() -> FakeSink:
    return FakeSink()


@pytest.fixture
def pods() -> FakePods:
    return FakePods()


@pytest.fixture
def executor() -> FakeExecutor:
    return FakeExecutor()


@pytest.fixture
def aliases(registry, pods, executor) -> AliasManager:
    return AliasManager(registry, pods, executor, label="app")


@pytest.fixture
def controller(registry, sink, aliases) -> Controller:
    return Controller(registry, sink, aliases, ignored={"kube-scheduler"})


def nftlb_client(responses, **kw) -> tuple[NftlbClient, FakeSession]:
    session = FakeSession(responses)
    kw.setdefault("backoff", 0)
    return NftlbClient(url="http://nftlb:5555/", key="s3cret", session=session, **kw), session
