# errors.py
from __future__ import annotations


class ControllerError(Exception):
    """Base class for failures that abort a single notification."""


class NamingCollision(ControllerError):
    """Two distinct objects resolve to the same farm name."""

    def __init__(self, farm: str, owner: str, claimant: str):
        super().__init__(f"farm {farm} is owned by {owner}, refusing claim from {claimant}")
        self.farm = farm
        self.owner = owner
        self.claimant = claimant


class SinkRequestFailed(ControllerError):
    """nftlb rejected a request or could not be reached."""

    def __init__(self, method: str, path: str, status: int | None, detail: str, payload: str | None = None):
        where = f"{method} {path}"
        code = f"HTTP {status}" if status is not None else "unreachable"
        super().__init__(f"{where} failed ({code}): {detail}")
        self.method = method
        self.path = path
        self.status = status
        self.detail = detail
        self.payload = payload


class AliasOperationFailed(ControllerError):
    """Adding or removing a DSR loopback alias on a backend failed."""

    def __init__(self, farm: str, backend: str, action: str, detail: str):
        super().__init__(f"{action} alias for farm {farm} on backend {backend} failed: {detail}")
        self.farm = farm
        self.backend = backend
        self.action = action
        self.detail = detail
