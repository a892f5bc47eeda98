#!/usr/bin/env python3
"""tools/render.py

Render the nftlb farms the controller would declare for the current cluster,
as multi-document YAML (one farm per document, backends nested).

Usage examples:
  python3 tools/render.py > /tmp/farms.yaml

  # Only one namespace:
  NAMESPACE=shop python3 tools/render.py | head

Notes:
- This does NOT talk to nftlb and does NOT run any alias commands.
- Services whose farms collide with an already rendered service are reported
  on stderr and skipped, as the controller would.
"""

from __future__ import annotations

import os
import sys
from typing import Any, Dict, List

import yaml

# Allow executing from tools/ without installing as a package
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from kubernetes import client  # noqa: E402
from kubernetes import config as kubeconfig  # noqa: E402

import config  # noqa: E402
from errors import NamingCollision  # noqa: E402
from farms.endpoints import synthesize_backends  # noqa: E402
from farms.service import record_service, synthesize_farms  # noqa: E402
from registry import CorrelationRegistry  # noqa: E402


def _load_kube() -> None:
    try:
        kubeconfig.load_incluster_config()
    except Exception:
        kubeconfig.load_kube_config()


def render(services: List[dict], endpoints: List[dict]) -> List[Dict[str, Any]]:
    """Farms with their backends merged in, in service order."""
    registry = CorrelationRegistry()
    farms: Dict[str, Dict[str, Any]] = {}

    for svc in services:
        if (svc.get("metadata", {}) or {}).get("name") in config.IGNORED_NAMES:
            continue
        plan = synthesize_farms(svc)
        try:
            record_service(plan, registry)
        except NamingCollision as e:
            print(f"[render] skipping {plan.owner}: {e}", file=sys.stderr)
            continue
        for farm in plan.farms:
            farms[farm["name"]] = dict(farm)

    for ep in endpoints:
        if (ep.get("metadata", {}) or {}).get("name") in config.IGNORED_NAMES:
            continue
        for entry in synthesize_backends(ep, registry).farms:
            farm = farms.get(entry["name"])
            if farm is not None:
                farm.setdefault("backends", []).extend(entry["backends"])

    return list(farms.values())


def main() -> int:
    namespace = os.environ.get("NAMESPACE")

    _load_kube()
    corev1 = client.CoreV1Api()
    serializer = client.ApiClient()
    if namespace:
        services = corev1.list_namespaced_service(namespace).items
        endpoints = corev1.list_namespaced_endpoints(namespace).items
    else:
        services = corev1.list_service_for_all_namespaces().items
        endpoints = corev1.list_endpoints_for_all_namespaces().items

    farms = render(
        [serializer.sanitize_for_serialization(s) for s in services],
        [serializer.sanitize_for_serialization(e) for e in endpoints],
    )

    # Multi-doc YAML to stdout
    try:
        for farm in farms:
            yaml.safe_dump(farm, sys.stdout, sort_keys=False)
            sys.stdout.write("---\n")
    except BrokenPipeError:
        # Common when piping to `head`; exit cleanly
        return 0

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
