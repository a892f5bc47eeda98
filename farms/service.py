# farms/service.py
from __future__ import annotations

import ipaddress
from dataclasses import dataclass, field
from typing import Any, Dict, List

import config
from farms.naming import external_ip_farm_name, node_port_farm_name, port_name, service_farm_name
from farms.params import FarmParams, interpret_service
from registry import CorrelationRegistry

NODE_PORT_TYPES = {"NodePort", "LoadBalancer"}


@dataclass
class ServicePlan:
    owner: str  # namespace/name
    name: str
    namespace: str
    service_type: str
    params: FarmParams
    virtual_addr: str
    farms: List[Dict[str, Any]] = field(default_factory=list)
    base_farms: List[str] = field(default_factory=list)
    node_ports: Dict[str, str] = field(default_factory=dict)  # base -> twin
    external: Dict[str, List[str]] = field(default_factory=dict)  # base -> twins

    @property
    def farm_names(self) -> List[str]:
        return [f["name"] for f in self.farms]

    @property
    def dsr_farms(self) -> List[str]:
        # Node-port twins have no address of their own to alias.
        if not self.params.dsr or not self.virtual_addr:
            return []
        return list(self.base_farms)


def compact(body: Dict[str, Any]) -> Dict[str, Any]:
    """Drop empty values; nftlb treats a missing key as 'keep the default'."""
    return {k: v for k, v in body.items() if v is not None and v != ""}


def object_key(obj: dict) -> str:
    meta = (obj or {}).get("metadata", {}) or {}
    return f"{meta.get('namespace') or 'default'}/{meta.get('name', '')}"


def _family_of(addr: str, default: str) -> str:
    try:
        return "ipv6" if ipaddress.ip_address(addr).version == 6 else "ipv4"
    except ValueError:
        return default


def build_farm(
    name: str,
    params: FarmParams,
    virtual_addr: str,
    virtual_port: Any,
    protocol: str,
    family: str | None = None,
) -> Dict[str, Any]:
    return compact(
        {
            "name": name,
            "family": family or params.family,
            "virtual-addr": virtual_addr,
            "virtual-ports": str(virtual_port),
            "mode": params.mode,
            "protocol": protocol,
            "scheduler": params.scheduler,
            "sched-param": params.sched_param,
            "helper": params.helper,
            "log": params.log,
            "log-prefix": params.log_prefix,
            "state": "up",
            "intra-connect": "on",
            "persistence": params.persistence,
            "persist-ttl": params.persist_ttl,
            "iface": config.DSR_IFACE if params.dsr else "",
        }
    )


def synthesize_farms(service: dict) -> ServicePlan:
    """Every farm a Service declares: one per port plus its published twins."""
    meta = (service or {}).get("metadata", {}) or {}
    spec = (service or {}).get("spec", {}) or {}
    name = meta.get("name", "")
    params = interpret_service(service)

    virtual_addr = spec.get("clusterIP") or ""
    if virtual_addr == "None":
        virtual_addr = ""

    plan = ServicePlan(
        owner=object_key(service),
        name=name,
        namespace=meta.get("namespace") or "default",
        service_type=spec.get("type") or "ClusterIP",
        params=params,
        virtual_addr=virtual_addr,
    )

    # Headless and ExternalName services have no address for nftlb to serve.
    if not virtual_addr or plan.service_type == "ExternalName":
        return plan

    external_ips = [str(ip) for ip in spec.get("externalIPs", []) or [] if ip]

    for port in spec.get("ports", []) or []:
        protocol = str(port.get("protocol") or "TCP").lower()
        base = service_farm_name(name, port_name(port))
        plan.farms.append(build_farm(base, params, virtual_addr, port.get("port", ""), protocol))
        plan.base_farms.append(base)

        node_port = port.get("nodePort")
        if plan.service_type in NODE_PORT_TYPES and node_port:
            twin = node_port_farm_name(base)
            plan.farms.append(build_farm(twin, params, "", node_port, protocol))
            plan.node_ports[base] = twin

        for ip in external_ips:
            twin = external_ip_farm_name(base, ip)
            plan.farms.append(
                build_farm(twin, params, ip, port.get("port", ""), protocol, family=_family_of(ip, params.family))
            )
            plan.external.setdefault(base, []).append(twin)

    return plan


def record_service(plan: ServicePlan, registry: CorrelationRegistry) -> None:
    """Publish a plan's correlation entries. Raises NamingCollision before any change."""
    registry.claim_farms(plan.owner, plan.farm_names)
    for base in plan.base_farms:
        registry.set_ceiling(base, plan.params.max_conns)
        twin = plan.node_ports.get(base)
        if twin:
            registry.set_node_port(base, twin)
        else:
            registry.drop_node_port(base)
        registry.set_external_farms(base, plan.external.get(base, []))


def forget_farm(owner: str, farm: str, registry: CorrelationRegistry) -> None:
    """Drop every correlation entry rooted at `farm`."""
    registry.drop_ceiling(farm)
    registry.drop_node_port(farm)
    registry.drop_external_farms(farm)
    registry.release_farm(owner, farm)
