# reconcile.py
from __future__ import annotations
from typing import Iterable, List, Tuple

from farms.naming import backend_path

Removal = Tuple[str, str]  # (farm, backend)


class RemovalPlan(dict):
    """Removal summary for one endpoints object; a dict so it prints and dumps as JSON."""



def _unique(items: Iterable[str]) -> List[str]:
    out: List[str] = []
    for item in items:
        if item not in out:
            out.append(item)
    return out


def plan_backend_removals(
    previous: Iterable[str],
    current: Iterable[str],
    previous_farms: Iterable[str],
    current_farms: Iterable[str],
) -> List[Removal]:
    """Backends nftlb must be told to delete; it never infers removal from a declaration.

    - Total loss (nothing left): every previous backend goes, under every farm
      the object fed before, since there is nothing to diff against.
    - Otherwise: backends that disappeared go, under every farm the object
      feeds now (base farm plus node-port and external twins).
    """
    prev = _unique(previous)
    cur = set(current)

    if not cur:
        farms = _unique(previous_farms)
        return [(farm, backend) for backend in prev for farm in farms]

    farms = _unique(current_farms)
    gone = [b for b in prev if b not in cur]
    return [(farm, backend) for backend in gone for farm in farms]


def plan_reconcile(
    owner: str,
    previous: Iterable[str],
    current: Iterable[str],
    previous_farms: Iterable[str],
    current_farms: Iterable[str],
) -> RemovalPlan:
    """Compute what an endpoints update *would* delete, without touching nftlb."""
    previous = list(previous)
    current = list(current)
    removals = plan_backend_removals(previous, current, previous_farms, current_farms)
    cur = set(current)
    return RemovalPlan(
        owner=owner,
        counts={
            "keep": len([b for b in previous if b in cur]),
            "add": len([b for b in current if b not in set(previous)]),
            "delete": len(removals),
        },
        delete=[backend_path(farm, backend) for farm, backend in removals],
    )


def print_plan(plan: RemovalPlan) -> None:
    owner = plan.get("owner")
    counts = plan.get("counts", {})
    print(f"[plan] endpoints={owner} keep={counts.get('keep',0)} add={counts.get('add',0)} delete={counts.get('delete',0)}")
    items = plan.get("delete", []) or []
    if items:
        print("[plan] delete:")
        for path in items:
            print(f"  - {path}")
