# dsr/aliases.py
"""Loopback aliases for direct-server-return farms.

In DSR mode replies leave the backend without passing through nftlb, so every
backend must own the farm's virtual address on its loopback interface. Per farm:

    none --enter--> pending --bootstrap/sync--> active --drop/leave--> none

The registry lock is never held while a command runs: state is snapshotted,
the command executes, and the outcome is committed afterwards.
"""
from __future__ import annotations

from typing import Iterable, Optional

from kubernetes.client.rest import ApiException

import config
from dsr.netns import CommandFailed, ContainerGone, alias_command, handle_from_pod
from errors import AliasOperationFailed
from registry import DSR_ACTIVE, CorrelationRegistry

# ip(8) output when the alias is already in the requested state
_ALREADY_PRESENT = "File exists"
_ALREADY_ABSENT = "Cannot assign requested address"

# The one service type whose aliases survive leaving DSR mode.
RETAIN_ON_LEAVE = "NodePort"


class AliasManager:
    def __init__(self, registry: CorrelationRegistry, pods, executor, label: str = config.DSR_POD_LABEL):
        self.registry = registry
        self.pods = pods
        self.executor = executor
        self.label = label

    # ── transitions ──────────────────────────
    def enter(self, farm: str, virtual_addr: str, service: dict) -> None:
        """Service observed in DSR mode. Bootstraps aliases until the farm is active.

        Targets come from pods sharing the service's label and from the backends
        already declared for the farm, since its endpoints may have been handled
        first.
        """
        snap = self.registry.dsr_enter(farm, virtual_addr)
        if snap.state == DSR_ACTIVE:
            return

        meta = (service or {}).get("metadata", {}) or {}
        namespace = meta.get("namespace") or "default"
        value = (meta.get("labels", {}) or {}).get(self.label)
        if value:
            print(f"[dsr] {farm}: bootstrapping aliases on pods {self.label}={value}")
            for pod in self.pods.list_pods(namespace, {self.label: value}):
                pod_meta = pod.get("metadata", {}) or {}
                if (pod_meta.get("labels", {}) or {}).get(self.label) != value:
                    continue
                name = pod_meta.get("name", "")
                handle = handle_from_pod(pod)
                if not handle or snap.handle(name):
                    continue
                self._add(farm, snap.virtual_addr, namespace, name, handle)

        declared = self.registry.declared_names(farm)
        if declared:
            current = self.registry.dsr_record(farm)
            for name in declared:
                if current is not None and current.handle(name) is None:
                    self._add(farm, snap.virtual_addr, namespace, name)

        if not value and not declared:
            # Nothing to alias yet; endpoints will bring the targets.
            return
        self.registry.dsr_mark_active(farm)

    def sync(self, farm: str, namespace: str, backends: Iterable[str]) -> None:
        """Make the aliased set equal to the farm's current backend set."""
        snap = self.registry.dsr_record(farm)
        if snap is None:
            return
        wanted = list(backends)
        for backend in wanted:
            if snap.handle(backend) is None:
                self._add(farm, snap.virtual_addr, namespace, backend)
        for backend, handle in snap.handles:
            if backend not in wanted:
                self._retract(farm, snap.virtual_addr, backend, handle)
                self.registry.dsr_detach(farm, backend)
        self.registry.dsr_mark_active(farm)

    def leave(self, farm: str, service_type: str) -> None:
        """Service no longer in DSR mode."""
        if not self.registry.is_dsr_farm(farm):
            return
        # TODO: confirm with product whether NodePort services should keep
        # their aliases after leaving DSR; current behavior keeps them.
        if service_type == RETAIN_ON_LEAVE:
            print(f"[dsr] {farm}: left DSR mode, keeping aliases ({service_type})")
            return
        self.drop(farm)

    def drop(self, farm: str) -> None:
        """Retract every alias and forget the farm."""
        snap = self.registry.dsr_record(farm)
        if snap is None:
            return
        for backend, handle in snap.handles:
            self._retract(farm, snap.virtual_addr, backend, handle)
            self.registry.dsr_detach(farm, backend)
        leftover = self.registry.dsr_destroy(farm)
        # Aliases attached after the snapshot was taken
        if leftover is not None:
            for backend, handle in leftover.handles:
                self._retract(farm, leftover.virtual_addr, backend, handle)
        print(f"[dsr] {farm}: DSR record removed")

    # ── I/O ──────────────────────────────────
    def _add(self, farm: str, virtual_addr: str, namespace: str, backend: str, handle: Optional[str] = None) -> None:
        if handle is None:
            try:
                handle = self.pods.container_handle(namespace, backend)
            except ApiException as e:
                raise AliasOperationFailed(farm, backend, "add", f"pod lookup failed: {e.status} {e.reason}") from e
        if not handle:
            raise AliasOperationFailed(farm, backend, "add", f"no running container for {namespace}/{backend}")
        try:
            self.executor.run(handle, alias_command("add", virtual_addr))
        except ContainerGone as e:
            raise AliasOperationFailed(farm, backend, "add", str(e)) from e
        except CommandFailed as e:
            if _ALREADY_PRESENT not in str(e):
                raise AliasOperationFailed(farm, backend, "add", str(e)) from e
        if config.debug():
            print(f"[dsr] {farm}: {virtual_addr} aliased on {backend}")

        if not self.registry.dsr_attach(farm, backend, handle):
            # The farm left DSR while the command was in flight.
            self._retract(farm, virtual_addr, backend, handle)

    def _retract(self, farm: str, virtual_addr: str, backend: str, handle: str) -> None:
        try:
            self.executor.run(handle, alias_command("del", virtual_addr))
        except ContainerGone:
            return
        except CommandFailed as e:
            if _ALREADY_ABSENT not in str(e):
                raise AliasOperationFailed(farm, backend, "del", str(e)) from e
        if config.debug():
            print(f"[dsr] {farm}: {virtual_addr} removed from {backend}")
