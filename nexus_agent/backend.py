from __future__ import annotations

from typing import Any, Dict, Optional, Tuple

import httpx

from .context import AgentContext
from .errors import BackendError
from .models import AgentInfo


Response = Tuple[int, Dict[str, Any]]


def _auth_headers(token: str) -> Dict[str, str]:
    headers = {"Content-Type": "application/json"}
    if token.strip():
        headers["Authorization"] = f"Bearer {token.strip()}"
    return headers


def _succeeded(body: Dict[str, Any]) -> bool:
    return bool(body.get("success"))


class BackendClient:
    """HTTP calls to the monitoring backend.

    `get`/`post` never raise for transport problems: they log and report
    status 0, so every caller can treat a failed send as "dropped this cycle".
    """

    def __init__(self, ctx: AgentContext, *, transport: Optional[httpx.BaseTransport] = None) -> None:
        s = ctx.settings
        self.log = ctx.logger("backend")
        self.agent_id: Optional[str] = None
        self.client = httpx.Client(
            base_url=s.backend_url.rstrip("/"),
            headers=_auth_headers(s.agent_token),
            timeout=s.http_timeout_seconds,
            transport=transport,
        )

    def close(self) -> None:
        self.client.close()

    def __enter__(self) -> "BackendClient":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    def _decode(self, resp: httpx.Response) -> Dict[str, Any]:
        if not resp.content:
            return {}
        try:
            data = resp.json()
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {"data": data}

    def request(self, method: str, path: str, payload: Any = None) -> Response:
        try:
            resp = self.client.request(method, path, json=payload)
        except httpx.HTTPError as e:
            raise BackendError(f"{method} {path} failed: {e}") from e
        return resp.status_code, self._decode(resp)

    def get(self, path: str) -> Response:
        try:
            return self.request("GET", path)
        except BackendError as e:
            self.log.error("%s", e)
            return 0, {}

    def post(self, path: str, payload: Any) -> Response:
        try:
            return self.request("POST", path, payload)
        except BackendError as e:
            self.log.error("%s", e)
            return 0, {}

    def register_agent(self, info: AgentInfo) -> bool:
        _, body = self.post("/api/agent/register", info.model_dump(by_alias=True, exclude_none=True))
        if _succeeded(body) and body.get("agentId"):
            self.agent_id = str(body["agentId"])
            self.log.info("Agent registered successfully, ID: %s", self.agent_id)
            return True
        self.log.error("Agent registration failed: %s", body.get("error") or "Unknown error")
        return False

    def send_heartbeat(self, agent_name: str) -> bool:
        _, body = self.post("/api/agent/heartbeat", {"agentName": agent_name})
        return _succeeded(body)

    def send_metrics(self, metrics: Dict[str, Any]) -> bool:
        _, body = self.post("/api/agent/metrics", metrics)
        return _succeeded(body)

    def send_logs(self, logs: Any) -> bool:
        if not self.agent_id:
            self.log.debug("Not sending logs: agent is not registered")
            return False
        _, body = self.post("/api/logs/batch", {"agentId": self.agent_id, "logs": logs})
        return _succeeded(body)

    def send_otlp_metrics(self, otlp_metrics: Dict[str, Any]) -> bool:
        _, body = self.post("/api/otlp/v1/metrics", otlp_metrics)
        return _succeeded(body)
