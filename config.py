# config.py
from __future__ import annotations

import os


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_list(name: str, default: str) -> list[str]:
    raw = os.environ.get(name, default)
    return [x.strip() for x in raw.split(",") if x.strip()]


# ─────────────────────────────────────────────
# nftlb API
# ─────────────────────────────────────────────
NFTLB_URL = os.environ.get("NFTLB_URL", "http://127.0.0.1:5555").rstrip("/")
NFTLB_KEY = os.environ.get("NFTLB_KEY", "")
NFTLB_TIMEOUT = _env_float("NFTLB_TIMEOUT", 5.0)
NFTLB_RETRIES = max(1, _env_int("NFTLB_RETRIES", 3))
NFTLB_RETRY_BACKOFF = _env_float("NFTLB_RETRY_BACKOFF", 0.5)

# ─────────────────────────────────────────────
# DSR
# ─────────────────────────────────────────────
# Interface nftlb forwards DSR traffic through.
DSR_IFACE = os.environ.get("DSR_IFACE", "cni0")
# Label shared by a service and its pods, used to find DSR targets early.
DSR_POD_LABEL = os.environ.get("DSR_POD_LABEL", "app")

# ─────────────────────────────────────────────
# Controller
# ─────────────────────────────────────────────
# Endpoints of these objects churn on every leader election.
IGNORED_NAMES = frozenset(_env_list("IGNORED_NAMES", "kube-controller-manager,kube-scheduler"))
WORKERS = max(1, _env_int("WORKERS", 4))
WATCH_TIMEOUT = _env_int("WATCH_TIMEOUT", 300)


def debug() -> bool:
    return os.environ.get("CONTROLLER_DEBUG", "0") == "1"
