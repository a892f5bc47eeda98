#!/usr/bin/env python3
"""Plan-only runner: prints which backends an endpoints update would delete.

Usage:
  python3 tools/plan.py before.yaml after.yaml
  python3 tools/plan.py before.yaml /dev/null     # total loss

Both files hold one Endpoints object (YAML or JSON). Farms are derived from
the port names only, so node-port and external-IP twins are not listed.

Notes:
- Does not contact the cluster or nftlb.
"""

from __future__ import annotations

import sys
from pathlib import Path

import yaml

# Ensure project root is on sys.path when running as a script
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from farms.endpoints import backend_names, fed_farms  # noqa: E402
from farms.service import object_key  # noqa: E402
from reconcile import plan_reconcile, print_plan  # noqa: E402


def load_snapshot(path: str) -> dict:
    with open(path, "r", encoding="utf-8") as f:
        # YAML is a superset of JSON
        return yaml.safe_load(f) or {}


def main(argv=None) -> int:
    argv = list(sys.argv[1:] if argv is None else argv)
    if len(argv) != 2:
        print("usage: plan.py <before> <after>", file=sys.stderr)
        return 2

    before, after = load_snapshot(argv[0]), load_snapshot(argv[1])
    plan = plan_reconcile(
        object_key(before or after),
        backend_names(before),
        backend_names(after),
        fed_farms(before),
        fed_farms(after),
    )
    print_plan(plan)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
