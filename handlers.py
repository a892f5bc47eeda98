# handlers.py
from __future__ import annotations

from itertools import groupby
from typing import Callable, Dict, Iterable, List, Optional, Tuple

import config
from dsr.aliases import AliasManager
from errors import ControllerError
from farms.endpoints import (
    EndpointsPlan,
    attach_backends,
    backend_names,
    fed_farms,
    known_farms,
    synthesize_backends,
)
from farms.service import forget_farm, object_key, record_service, synthesize_farms
from nftlb import NftlbClient
from reconcile import plan_backend_removals
from registry import CorrelationRegistry

SERVICE = "Service"
ENDPOINTS = "Endpoints"
NETWORK_POLICY = "NetworkPolicy"

ADDED = "ADDED"
MODIFIED = "MODIFIED"
DELETED = "DELETED"

Handler = Callable[[Optional[dict], Optional[dict]], None]


def _name(obj: Optional[dict]) -> str:
    return ((obj or {}).get("metadata", {}) or {}).get("name", "")


def _merge(*groups: Iterable[str]) -> List[str]:
    out: List[str] = []
    for group in groups:
        for item in group:
            if item not in out:
                out.append(item)
    return out


class Controller:
    """Projects Service and Endpoints notifications onto nftlb."""

    def __init__(
        self,
        registry: CorrelationRegistry,
        sink: NftlbClient,
        aliases: AliasManager,
        ignored: Iterable[str] = config.IGNORED_NAMES,
    ):
        self.registry = registry
        self.sink = sink
        self.aliases = aliases
        self.ignored = frozenset(ignored)
        self._table = self.dispatch_table()

    def dispatch_table(self) -> Dict[Tuple[str, str], Handler]:
        return {
            (SERVICE, ADDED): self.on_service_added,
            (SERVICE, MODIFIED): self.on_service_modified,
            (SERVICE, DELETED): self.on_service_deleted,
            (ENDPOINTS, ADDED): self.on_endpoints_added,
            (ENDPOINTS, MODIFIED): self.on_endpoints_modified,
            (ENDPOINTS, DELETED): self.on_endpoints_deleted,
            (NETWORK_POLICY, ADDED): self.on_network_policy,
            (NETWORK_POLICY, MODIFIED): self.on_network_policy,
            (NETWORK_POLICY, DELETED): self.on_network_policy,
        }

    def handle(self, kind: str, event: str, old: Optional[dict], new: Optional[dict]) -> bool:
        """Run one notification to completion. False if it failed; nothing else is affected."""
        handler = self._table.get((kind, event))
        obj = new if new is not None else old
        if handler is None:
            if config.debug():
                print(f"[controller] no handler for {kind} {event}")
            return True
        if _name(obj) in self.ignored:
            return True

        try:
            handler(old, new)
        except ControllerError as e:
            print(f"[controller] {kind} {event} {object_key(obj)} failed: {e}")
            return False
        except Exception as e:
            print(f"[controller] {kind} {event} {object_key(obj)} failed unexpectedly: {type(e).__name__}: {e}")
            return False
        return True

    # ── Service ──────────────────────────────
    def on_service_added(self, old: Optional[dict], new: Optional[dict]) -> None:
        self._apply_service(None, new)

    def on_service_modified(self, old: Optional[dict], new: Optional[dict]) -> None:
        self._apply_service(old, new)

    def _apply_service(self, old: Optional[dict], new: dict) -> None:
        plan = synthesize_farms(new)
        record_service(plan, self.registry)

        for farm in plan.base_farms:
            if farm in plan.dsr_farms:
                self.aliases.enter(farm, plan.virtual_addr, new)
            else:
                self.aliases.leave(farm, plan.service_type)

        if plan.farms:
            self.sink.apply(attach_backends(plan, self.registry))
            print(f"[controller] declared {len(plan.farms)} farm(s) for service {plan.owner}")

        if old is None:
            return
        current = set(plan.farm_names)
        for farm in synthesize_farms(old).farm_names:
            if farm in current:
                continue
            self.aliases.drop(farm)
            self.sink.delete_farm(farm)
            forget_farm(plan.owner, farm, self.registry)
            print(f"[controller] deleted farm {farm} (no longer declared by {plan.owner})")

    def on_service_deleted(self, old: Optional[dict], new: Optional[dict]) -> None:
        plan = synthesize_farms(old)
        farms = known_farms(plan.base_farms, self.registry, plan.owner)
        farms += [f for f in plan.farm_names if f not in farms and self.registry.may_touch(plan.owner, f)]

        for farm in farms:
            self.sink.delete_farm(farm)
            print(f"[controller] deleted farm {farm}")
        for base in plan.base_farms:
            if base in farms:
                self.aliases.drop(base)
        for farm in farms:
            forget_farm(plan.owner, farm, self.registry)

    # ── Endpoints ────────────────────────────
    def on_endpoints_added(self, old: Optional[dict], new: Optional[dict]) -> None:
        self._apply_endpoints(None, new)

    def on_endpoints_modified(self, old: Optional[dict], new: Optional[dict]) -> None:
        self._apply_endpoints(old, new)

    def _apply_endpoints(self, old: Optional[dict], new: dict) -> None:
        plan = synthesize_backends(new, self.registry)
        feeds = self._feeds(plan.owner, fed_farms(old), plan.feeds)
        # Diff against what nftlb last accepted as well, so an update that
        # failed halfway is repaired by the next one.
        previous = _merge(backend_names(old), self._declared_names(feeds))

        self._sync_aliases(feeds, plan)
        if plan.farms:
            self.sink.apply(plan.farms)
            print(f"[controller] declared {len(plan.backends)} backend(s) for endpoints {plan.owner}")

        if not plan.backends:
            self._drain(plan.owner, feeds)
            return

        # Deletions only after the declaration above, so nothing re-creates them.
        current_farms = known_farms(plan.feeds, self.registry, plan.owner)
        for farm, backend in plan_backend_removals(previous, plan.backends, [], current_farms):
            self.sink.delete_backend(farm, backend)
            print(f"[controller] deleted backend {backend} from farm {farm}")

        for base in feeds:
            self.registry.set_declared_backends(plan.owner, base, plan.declared.get(base, []))
        self.registry.set_backend_count(plan.owner, len(plan.declared_names))

    def on_endpoints_deleted(self, old: Optional[dict], new: Optional[dict]) -> None:
        owner = object_key(old)
        feeds = self._feeds(owner, fed_farms(old))
        namespace = ((old or {}).get("metadata", {}) or {}).get("namespace") or "default"
        self._sync_aliases(feeds, EndpointsPlan(owner=owner, name=_name(old), namespace=namespace))
        self._drain(owner, feeds)

    def _feeds(self, owner: str, *groups: List[str]) -> List[str]:
        """Base farms this object feeds or fed, excluding farms another object owns."""
        out = _merge(*groups, self.registry.declared_farms(owner))
        return [base for base in out if self.registry.may_touch(owner, base)]

    def _declared_names(self, feeds: List[str]) -> List[str]:
        return _merge(*[self.registry.declared_names(base) for base in feeds])

    def _sync_aliases(self, feeds: List[str], plan: EndpointsPlan) -> None:
        for farm in feeds:
            if self.registry.is_dsr_farm(farm):
                self.aliases.sync(farm, plan.namespace, plan.dsr_targets.get(farm, []))

    def _drain(self, owner: str, feeds: List[str]) -> None:
        """Total loss: delete declared backends under every farm while the count says some remain."""
        farms = known_farms(feeds, self.registry, owner)
        removals = plan_backend_removals(self._declared_names(feeds), [], farms, [])
        for backend, group in groupby(removals, key=lambda r: r[1]):
            if self.registry.backend_count(owner) <= 0:
                break
            for farm, _ in group:
                self.sink.delete_backend(farm, backend)
                print(f"[controller] deleted backend {backend} from farm {farm}")
            for base in feeds:
                self.registry.discard_declared_backend(base, backend)
            self.registry.decrease_backend_count(owner)
        self.registry.reset_backend_count(owner)

    # ── NetworkPolicy ────────────────────────
    def on_network_policy(self, old: Optional[dict], new: Optional[dict]) -> None:
        # No farm state derives from network policies yet; keep the stream observable.
        if config.debug():
            obj = new if new is not None else old
            print(f"[controller] network policy {object_key(obj)} observed")
