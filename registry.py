# registry.py
"""Derived correlation state shared by every notification handler.

Nothing here is persisted: the registry is a cache that a full re-delivery of
services and endpoints rebuilds. Every method takes the lock for its whole
body, so operations keyed by farm name are atomic and the last mutation to
complete wins.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Dict, List, Optional, Tuple

import config
from errors import NamingCollision

DSR_PENDING = "pending"
DSR_ACTIVE = "active"


@dataclass
class DsrRecord:
    virtual_addr: str
    state: str = DSR_PENDING
    handles: Dict[str, str] = field(default_factory=dict)  # backend -> container handle


@dataclass(frozen=True)
class DsrSnapshot:
    farm: str
    virtual_addr: str
    state: str
    handles: Tuple[Tuple[str, str], ...]

    @property
    def backends(self) -> set[str]:
        return {b for b, _ in self.handles}

    def handle(self, backend: str) -> Optional[str]:
        for b, h in self.handles:
            if b == backend:
                return h
        return None


def _snapshot(farm: str, rec: DsrRecord) -> DsrSnapshot:
    return DsrSnapshot(
        farm=farm,
        virtual_addr=rec.virtual_addr,
        state=rec.state,
        handles=tuple(sorted(rec.handles.items())),
    )


class CorrelationRegistry:
    def __init__(self) -> None:
        self._lock = Lock()
        self._owners: Dict[str, str] = {}  # farm -> namespace/name
        self._node_ports: Dict[str, str] = {}  # base farm -> node-port twin
        self._external: Dict[str, List[str]] = {}  # base farm -> external-ip twins
        self._ceilings: Dict[str, int] = {}  # farm -> est-connlimit
        self._dsr: Dict[str, DsrRecord] = {}
        self._backend_counts: Dict[str, int] = {}  # endpoints namespace/name -> count
        self._declared: Dict[str, List[Dict[str, Any]]] = {}  # base farm -> backends last pushed
        self._declared_by: Dict[str, List[str]] = {}  # endpoints namespace/name -> base farms

    # ── ownership ────────────────────────────
    def claim_farms(self, owner: str, farms: List[str]) -> None:
        """Claim all farms for `owner`, or none of them."""
        with self._lock:
            for farm in farms:
                current = self._owners.get(farm)
                if current is not None and current != owner:
                    raise NamingCollision(farm, current, owner)
            for farm in farms:
                self._owners[farm] = owner

    def release_farm(self, owner: str, farm: str) -> None:
        with self._lock:
            if self._owners.get(farm) == owner:
                del self._owners[farm]

    def may_touch(self, owner: str, farm: str) -> bool:
        """True unless `farm` is claimed by some other object."""
        with self._lock:
            return self._owners.get(farm, owner) == owner

    # ── node-port / external twins ───────────
    def set_node_port(self, base: str, twin: str) -> None:
        with self._lock:
            self._node_ports[base] = twin

    def drop_node_port(self, base: str) -> Optional[str]:
        with self._lock:
            return self._node_ports.pop(base, None)

    def set_external_farms(self, base: str, farms: List[str]) -> None:
        with self._lock:
            if farms:
                self._external[base] = list(farms)
            else:
                self._external.pop(base, None)

    def drop_external_farms(self, base: str) -> List[str]:
        with self._lock:
            return self._external.pop(base, [])

    def published_farms(self, base: str) -> List[str]:
        """The base farm followed by every twin its backends are replicated to."""
        with self._lock:
            out = [base]
            twin = self._node_ports.get(base)
            if twin:
                out.append(twin)
            out.extend(self._external.get(base, []))
            return out

    # ── connection ceilings ──────────────────
    def set_ceiling(self, farm: str, max_conns: int) -> None:
        with self._lock:
            self._ceilings[farm] = max_conns

    def ceiling(self, farm: str) -> int:
        with self._lock:
            return self._ceilings.get(farm, 0)

    def drop_ceiling(self, farm: str) -> None:
        with self._lock:
            self._ceilings.pop(farm, None)

    # ── DSR ──────────────────────────────────
    def dsr_enter(self, farm: str, virtual_addr: str) -> DsrSnapshot:
        """Create a pending record if absent; refresh the address otherwise."""
        with self._lock:
            rec = self._dsr.get(farm)
            if rec is None:
                rec = DsrRecord(virtual_addr=virtual_addr)
                self._dsr[farm] = rec
            elif virtual_addr:
                rec.virtual_addr = virtual_addr
            return _snapshot(farm, rec)

    def dsr_record(self, farm: str) -> Optional[DsrSnapshot]:
        with self._lock:
            rec = self._dsr.get(farm)
            return _snapshot(farm, rec) if rec else None

    def is_dsr_farm(self, farm: str) -> bool:
        with self._lock:
            return farm in self._dsr

    def dsr_attach(self, farm: str, backend: str, handle: str) -> bool:
        """Record an applied alias. False if the record vanished meanwhile."""
        with self._lock:
            rec = self._dsr.get(farm)
            if rec is None:
                return False
            rec.handles[backend] = handle
            return True

    def dsr_detach(self, farm: str, backend: str) -> None:
        with self._lock:
            rec = self._dsr.get(farm)
            if rec is not None:
                rec.handles.pop(backend, None)

    def dsr_mark_active(self, farm: str) -> None:
        with self._lock:
            rec = self._dsr.get(farm)
            if rec is not None:
                rec.state = DSR_ACTIVE

    def dsr_destroy(self, farm: str) -> Optional[DsrSnapshot]:
        with self._lock:
            rec = self._dsr.pop(farm, None)
            return _snapshot(farm, rec) if rec else None

    # ── backend counts ───────────────────────
    def set_backend_count(self, obj: str, count: int) -> None:
        with self._lock:
            self._backend_counts[obj] = max(0, count)

    def backend_count(self, obj: str) -> int:
        with self._lock:
            return self._backend_counts.get(obj, 0)

    def decrease_backend_count(self, obj: str) -> int:
        with self._lock:
            n = self._backend_counts.get(obj, 0)
            if n <= 0:
                if config.debug():
                    print(f"[registry] backend count for {obj} already drained")
                return 0
            self._backend_counts[obj] = n - 1
            return n - 1

    def reset_backend_count(self, obj: str) -> None:
        with self._lock:
            self._backend_counts.pop(obj, None)

    # ── declared backends ────────────────────
    def set_declared_backends(self, owner: str, base: str, backends: List[Dict[str, Any]]) -> None:
        """Remember the backends nftlb last accepted for `base` on behalf of `owner`."""
        with self._lock:
            bases = self._declared_by.setdefault(owner, [])
            if backends:
                self._declared[base] = [dict(b) for b in backends]
                if base not in bases:
                    bases.append(base)
            else:
                self._declared.pop(base, None)
                if base in bases:
                    bases.remove(base)
            if not bases:
                del self._declared_by[owner]

    def declared_farms(self, owner: str) -> List[str]:
        """Base farms still holding backends declared for `owner`."""
        with self._lock:
            return [b for b in self._declared_by.get(owner, []) if b in self._declared]

    def declared_backends(self, base: str) -> List[Dict[str, Any]]:
        with self._lock:
            return [dict(b) for b in self._declared.get(base, [])]

    def declared_names(self, base: str) -> List[str]:
        with self._lock:
            return [b["name"] for b in self._declared.get(base, [])]

    def discard_declared_backend(self, base: str, name: str) -> None:
        with self._lock:
            kept = [b for b in self._declared.get(base, []) if b["name"] != name]
            if kept:
                self._declared[base] = kept
            else:
                self._declared.pop(base, None)
