# farms/endpoints.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List

from farms.naming import port_name, service_farm_name
from farms.service import ServicePlan, object_key
from registry import CorrelationRegistry


@dataclass
class EndpointsPlan:
    owner: str  # namespace/name
    name: str
    namespace: str
    farms: List[Dict[str, Any]] = field(default_factory=list)
    backends: List[str] = field(default_factory=list)
    feeds: List[str] = field(default_factory=list)  # base farms, in port order
    dsr_targets: Dict[str, List[str]] = field(default_factory=dict)  # base farm -> backends
    declared: Dict[str, List[Dict[str, Any]]] = field(default_factory=dict)  # base farm -> backends

    @property
    def declared_names(self) -> List[str]:
        out: List[str] = []
        for backends in self.declared.values():
            for b in backends:
                if b["name"] not in out:
                    out.append(b["name"])
        return out


def backend_name(endpoints: dict, address: dict) -> str:
    ref = (address or {}).get("targetRef") or {}
    if ref.get("name"):
        return str(ref["name"])
    return ((endpoints or {}).get("metadata", {}) or {}).get("name", "")


def backend_names(endpoints: dict) -> List[str]:
    """Ready backend identities of an Endpoints object, in delivery order."""
    out: List[str] = []
    for subset in (endpoints or {}).get("subsets", []) or []:
        for addr in subset.get("addresses", []) or []:
            if not addr.get("ip"):
                continue
            name = backend_name(endpoints, addr)
            if name not in out:
                out.append(name)
    return out


def fed_farms(endpoints: dict) -> List[str]:
    """Base farms an Endpoints object feeds, derived from its port names."""
    name = ((endpoints or {}).get("metadata", {}) or {}).get("name", "")
    out: List[str] = []
    for subset in (endpoints or {}).get("subsets", []) or []:
        for port in subset.get("ports", []) or []:
            farm = service_farm_name(name, port_name(port))
            if farm not in out:
                out.append(farm)
    return out


def known_farms(bases: List[str], registry: CorrelationRegistry, owner: str) -> List[str]:
    """Base farms plus every twin the registry publishes for them, skipping
    farms another object owns."""
    out: List[str] = []
    for base in bases:
        if not registry.may_touch(owner, base):
            continue
        for farm in registry.published_farms(base):
            if farm not in out:
                out.append(farm)
    return out


def build_backend(name: str, ip: str, port: Any, max_conns: int) -> Dict[str, Any]:
    return {
        "name": name,
        "ip-addr": ip,
        "state": "up",
        "port": str(port),
        "est-connlimit": str(max_conns),
    }


def synthesize_backends(endpoints: dict, registry: CorrelationRegistry) -> EndpointsPlan:
    """Backends for every subset/address/port, attached to the base farm and its twins."""
    meta = (endpoints or {}).get("metadata", {}) or {}
    plan = EndpointsPlan(
        owner=object_key(endpoints),
        name=meta.get("name", ""),
        namespace=meta.get("namespace") or "default",
        feeds=fed_farms(endpoints),
    )

    by_farm: Dict[str, List[Dict[str, Any]]] = {}
    for subset in (endpoints or {}).get("subsets", []) or []:
        for addr in subset.get("addresses", []) or []:
            ip = addr.get("ip")
            if not ip:
                continue
            name = backend_name(endpoints, addr)
            if name not in plan.backends:
                plan.backends.append(name)
            for port in subset.get("ports", []) or []:
                base = service_farm_name(plan.name, port_name(port))
                if not registry.may_touch(plan.owner, base):
                    # Same-named service in another namespace holds this farm.
                    continue
                backend = build_backend(name, ip, port.get("port", ""), registry.ceiling(base))
                for farm in registry.published_farms(base):
                    entries = by_farm.setdefault(farm, [])
                    # Same name means same nftlb backend; the later address wins.
                    entries[:] = [b for b in entries if b["name"] != name]
                    entries.append(backend)
                if registry.is_dsr_farm(base):
                    targets = plan.dsr_targets.setdefault(base, [])
                    if name not in targets:
                        targets.append(name)

    plan.farms = [{"name": farm, "backends": backends} for farm, backends in by_farm.items()]
    plan.declared = {base: list(by_farm[base]) for base in plan.feeds if base in by_farm}
    return plan


def attach_backends(plan: ServicePlan, registry: CorrelationRegistry) -> List[Dict[str, Any]]:
    """The service's farms, each carrying the backends last declared for its base.

    Endpoints may be handled before the Service that publishes a twin; replaying
    the remembered set here keeps new twins from starting out empty.
    """
    farms = [dict(f) for f in plan.farms]
    by_name = {f["name"]: f for f in farms}
    for base in plan.base_farms:
        declared = registry.declared_backends(base)
        if not declared:
            continue
        limit = str(registry.ceiling(base))
        for name in registry.published_farms(base):
            farm = by_name.get(name)
            if farm is not None:
                farm["backends"] = [{**b, "est-connlimit": limit} for b in declared]
    return farms
