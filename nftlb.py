# nftlb.py
from __future__ import annotations

import json
import time
from typing import Any, Dict, List, Optional

import requests

import config
from errors import SinkRequestFailed
from farms.naming import backend_path


class NftlbClient:
    """Thin wrapper over the nftlb REST API.

    POST /farms upserts farms and backends by name; DELETE /farms/<farm> and
    DELETE /farms/<farm>/backends/<backend> remove them. nftlb never removes a
    backend because a later declaration omits it.
    """

    def __init__(
        self,
        url: str = config.NFTLB_URL,
        key: str = config.NFTLB_KEY,
        session: Optional[requests.Session] = None,
        retries: int = config.NFTLB_RETRIES,
        backoff: float = config.NFTLB_RETRY_BACKOFF,
        timeout: float = config.NFTLB_TIMEOUT,
    ):
        self.url = url.rstrip("/")
        self.key = key
        self.session = session or requests.Session()
        self.retries = max(1, int(retries))
        self.backoff = backoff
        self.timeout = timeout

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.key:
            headers["Key"] = self.key
        return headers

    def _send(self, method: str, path: str, body: Optional[str] = None, missing_ok: bool = False) -> str:
        url = f"{self.url}/farms{path}"
        status: Optional[int] = None
        detail = ""
        for attempt in range(1, self.retries + 1):
            try:
                resp = self.session.request(method, url, data=body, headers=self._headers(), timeout=self.timeout)
            except requests.RequestException as e:
                status, detail = None, f"{type(e).__name__}: {e}"
            else:
                if resp.status_code == 404 and missing_ok:
                    if config.debug():
                        print(f"[sink] {method} {path}: already absent")
                    return ""
                if resp.ok:
                    if config.debug():
                        print(f"[sink] {method} {path} -> {resp.status_code}")
                    return resp.text
                status, detail = resp.status_code, (resp.text or "").strip()
                # 4xx will not change on retry
                if status < 500:
                    break
            if attempt < self.retries:
                time.sleep(self.backoff * attempt)

        print(f"[sink] {method} {path} failed after {attempt} attempt(s): {detail or status}")
        if body:
            print(f"[sink] payload: {body}")
        raise SinkRequestFailed(method, path or "/", status, detail, payload=body)

    def apply(self, farms: List[Dict[str, Any]]) -> str:
        """Declare farms (and nested backends) in a single request."""
        if not farms:
            return ""
        body = json.dumps({"farms": farms}, sort_keys=True)
        return self._send("POST", "", body=body)

    def delete_farm(self, farm: str) -> str:
        return self._send("DELETE", f"/{farm}", missing_ok=True)

    def delete_backend(self, farm: str, backend: str) -> str:
        return self._send("DELETE", f"/{backend_path(farm, backend)}", missing_ok=True)
