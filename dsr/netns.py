# dsr/netns.py
"""Collaborators for DSR: finding backend pods and running commands in their
network namespace through the container engine."""
from __future__ import annotations

import ipaddress
from typing import List, Optional

import docker
from docker.errors import DockerException, NotFound
from kubernetes.client import ApiClient
from kubernetes.client.rest import ApiException

LOOPBACK = "lo"


class CommandFailed(Exception):
    pass


class ContainerGone(CommandFailed):
    pass


def alias_command(action: str, virtual_addr: str) -> str:
    """`ip address add|del <vip>/32 dev lo` (/128 for IPv6)."""
    try:
        prefix = 128 if ipaddress.ip_address(virtual_addr).version == 6 else 32
    except ValueError:
        prefix = 32
    return f"ip address {action} {virtual_addr}/{prefix} dev {LOOPBACK}"


def handle_from_pod(pod: dict) -> Optional[str]:
    """Container id of the pod's first container, without the runtime scheme."""
    statuses = ((pod or {}).get("status", {}) or {}).get("containerStatuses", []) or []
    if not statuses:
        return None
    container_id = statuses[0].get("containerID") or ""
    if "://" in container_id:
        container_id = container_id.split("://", 1)[1]
    return container_id or None


class PodDirectory:
    """Pod lookups against the Kubernetes API, returned as camelCase dicts."""

    def __init__(self, corev1):
        self.corev1 = corev1
        self._serializer = ApiClient()

    def _to_dict(self, obj) -> dict:
        return self._serializer.sanitize_for_serialization(obj)

    def list_pods(self, namespace: str, selector: dict) -> List[dict]:
        label_selector = ",".join(f"{k}={v}" for k, v in sorted(selector.items()))
        res = self.corev1.list_namespaced_pod(namespace, label_selector=label_selector)
        return [self._to_dict(p) for p in res.items]

    def container_handle(self, namespace: str, pod: str) -> Optional[str]:
        try:
            obj = self.corev1.read_namespaced_pod(pod, namespace)
        except ApiException as e:
            if e.status == 404:
                return None
            raise
        return handle_from_pod(self._to_dict(obj))


class DockerExecutor:
    """Runs shell commands inside a container as root, like `docker exec --privileged`."""

    def __init__(self, client: Optional[docker.DockerClient] = None):
        self._client = client

    def _docker(self) -> docker.DockerClient:
        if self._client is None:
            self._client = docker.from_env()
        return self._client

    def run(self, handle: str, command: str) -> str:
        try:
            container = self._docker().containers.get(handle)
            result = container.exec_run(
                ["/bin/sh", "-c", command],
                privileged=True,
                user="root",
                workdir="/",
            )
        except NotFound as e:
            raise ContainerGone(f"container {handle} not found") from e
        except DockerException as e:
            raise CommandFailed(f"{type(e).__name__}: {e}") from e

        output = (result.output or b"").decode(errors="replace").strip()
        if result.exit_code != 0:
            raise CommandFailed(output or f"exit code {result.exit_code}")
        return output
