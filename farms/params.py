# farms/params.py
from __future__ import annotations

import ipaddress
import re
from dataclasses import dataclass

import config

HASH_FIELDS = {"srcip", "dstip", "srcport", "dstport", "srcmac", "dstmac"}
MODES = {"snat", "dnat", "dsr", "stlsdnat", "local"}
HELPERS = {"none", "amanda", "ftp", "h323", "irc", "netbios-ns", "pptp", "sane", "sip", "snmp", "tftp"}
LOG_MODES = {"none", "input", "forward", "output"}
MAX_PERSIST_TTL = 86400

# Trailing run of letters of an annotation key: ".../kube-nftlb-load-balancer-mode" -> "mode"
_KEY_SUFFIX = re.compile(r"[a-z]+$")
_HASH_SCHEDULER = re.compile(r"^hash-?([a-z]+)$")


@dataclass(frozen=True)
class FarmParams:
    mode: str = "snat"
    scheduler: str = "rr"
    sched_param: str = "none"
    helper: str = ""
    log: str = ""
    log_prefix: str = ""
    persistence: str = ""
    persist_ttl: str = ""
    max_conns: int = 0
    family: str = "ipv4"

    @property
    def dsr(self) -> bool:
        return self.mode == "dsr"


def _annotation_fields(service: dict) -> dict[str, str]:
    ann = ((service or {}).get("metadata", {}) or {}).get("annotations", {}) or {}
    out: dict[str, str] = {}
    for key, value in ann.items():
        m = _KEY_SUFFIX.search(str(key).lower())
        if not m:
            continue
        out[m.group(0)] = str(value).strip()
    return out


def _debug_default(field: str, value: str) -> None:
    if config.debug():
        print(f"[params] ignoring {field}={value!r}, using default")


def parse_scheduler(value: str) -> tuple[str, str]:
    v = value.lower()
    if v in {"rr", "symhash"}:
        return v, "none"
    m = _HASH_SCHEDULER.match(v)
    if m and m.group(1) in HASH_FIELDS:
        return "hash", m.group(1)
    _debug_default("scheduler", value)
    return "rr", "none"


def find_family(service: dict) -> str:
    cluster_ip = ((service or {}).get("spec", {}) or {}).get("clusterIP") or ""
    try:
        return "ipv6" if ipaddress.ip_address(cluster_ip).version == 6 else "ipv4"
    except ValueError:
        return "ipv4"


def find_persistence(service: dict, annotated: str | None) -> tuple[str, str]:
    """Annotation wins over sessionAffinity; TTL only comes from sessionAffinityConfig."""
    spec = (service or {}).get("spec", {}) or {}
    persistence = ""
    if annotated:
        if annotated.lower() in HASH_FIELDS:
            persistence = annotated.lower()
        else:
            _debug_default("persistence", annotated)
    if not persistence:
        affinity = spec.get("sessionAffinity")
        if affinity == "ClientIP":
            persistence = "srcip"
        elif affinity == "None":
            persistence = "none"

    ttl = ""
    client_ip = ((spec.get("sessionAffinityConfig") or {}).get("clientIP") or {})
    timeout = client_ip.get("timeoutSeconds")
    if timeout is not None:
        try:
            seconds = int(timeout)
        except (TypeError, ValueError):
            seconds = -1
        if 0 <= seconds <= MAX_PERSIST_TTL:
            ttl = str(seconds)
        else:
            _debug_default("timeoutSeconds", str(timeout))
    return persistence, ttl


def parse_max_conns(value: str | None) -> int:
    if value is None:
        return 0
    try:
        n = int(value)
    except ValueError:
        _debug_default("maxconns", value)
        return 0
    return n if n >= 0 else 0


def interpret_service(service: dict) -> FarmParams:
    """Best-effort translation of a Service into farm parameters. Never raises."""
    fields = _annotation_fields(service)

    mode = fields.get("mode", "snat").lower()
    if mode not in MODES:
        _debug_default("mode", mode)
        mode = "snat"

    scheduler, sched_param = ("rr", "none")
    if "scheduler" in fields:
        scheduler, sched_param = parse_scheduler(fields["scheduler"])

    helper = fields.get("helper", "").lower()
    if helper and helper not in HELPERS:
        _debug_default("helper", helper)
        helper = ""

    log = fields.get("log", "").lower()
    if log and log not in LOG_MODES:
        _debug_default("log", log)
        log = ""

    log_prefix = ""
    if log and log != "none":
        log_prefix = fields.get("logprefix", "")

    persistence, persist_ttl = find_persistence(service, fields.get("persistence"))

    return FarmParams(
        mode=mode,
        scheduler=scheduler,
        sched_param=sched_param,
        helper=helper,
        log=log,
        log_prefix=log_prefix,
        persistence=persistence,
        persist_ttl=persist_ttl,
        max_conns=parse_max_conns(fields.get("maxconns")),
        family=find_family(service),
    )
