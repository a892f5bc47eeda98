# farms/naming.py
"""Farm names are derived from object names only, never from registry state.

  base farm        <service>--<port>            web--http
  node-port twin   <base>--nodePort             web--http--nodePort
  external twin    <base>--<external ip>        web--http--192.0.2.10
"""
from __future__ import annotations

from typing import Optional

SEPARATOR = "--"
DEFAULT_PORT_NAME = "default"
NODE_PORT_SUFFIX = "nodePort"


def port_name(port: dict) -> str:
    """Name used for a service or endpoints port; unnamed ports become 'default'."""
    return (port or {}).get("name") or DEFAULT_PORT_NAME


def service_farm_name(service_name: str, port: str) -> str:
    return f"{service_name}{SEPARATOR}{port or DEFAULT_PORT_NAME}"


def node_port_farm_name(base: str) -> str:
    # Applied to a base farm name this yields the public twin, both when the
    # service farms are built and when endpoint backends are correlated.
    return f"{base}{SEPARATOR}{NODE_PORT_SUFFIX}"


def is_node_port_farm(name: str, base: Optional[str] = None) -> bool:
    """True if `name` is a node-port twin (of `base`, when given)."""
    if base is not None:
        return name == node_port_farm_name(base)
    suffix = SEPARATOR + NODE_PORT_SUFFIX
    return name.endswith(suffix) and len(name) > len(suffix)


def external_ip_farm_name(base: str, ip: str) -> str:
    return f"{base}{SEPARATOR}{ip}"


def backend_path(farm: str, backend: str) -> str:
    return f"{farm}/backends/{backend}"
