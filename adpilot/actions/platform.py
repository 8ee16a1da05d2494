"""Platform executors — the adapters that actually change things on the ad platform.

Any non-success, including a 200 carrying an error code in its body,
raises PlatformError. The action executor treats every PlatformError as
retryable.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any

import httpx

from adpilot.exceptions import PlatformError

_logger = logging.getLogger(__name__)

ACTIVE = "ACTIVE"
PAUSED = "PAUSED"


class PlatformExecutor(ABC):
    @abstractmethod
    async def set_status(self, entity_id: str, status: str, account_id: str = "") -> dict[str, Any]: ...

    @abstractmethod
    async def set_budget(self, entity_id: str, amount: float, account_id: str = "") -> dict[str, Any]: ...


class DryRunPlatformExecutor(PlatformExecutor):
    """Logs every call and records it; changes nothing."""

    def __init__(self) -> None:
        self.calls: list[dict[str, Any]] = []

    async def set_status(self, entity_id: str, status: str, account_id: str = "") -> dict[str, Any]:
        call = {"op": "set_status", "entity_id": entity_id, "status": status, "account_id": account_id}
        self.calls.append(call)
        _logger.info("[dry-run] set_status %s -> %s", entity_id, status)
        return {"ok": True, "dry_run": True}

    async def set_budget(self, entity_id: str, amount: float, account_id: str = "") -> dict[str, Any]:
        call = {"op": "set_budget", "entity_id": entity_id, "amount": amount, "account_id": account_id}
        self.calls.append(call)
        _logger.info("[dry-run] set_budget %s -> %.2f", entity_id, amount)
        return {"ok": True, "dry_run": True}


class HttpPlatformExecutor(PlatformExecutor):
    """Talks to a platform gateway over HTTP.

    POST {base_url}/entities/{id}/status  {"status": "PAUSED", "account_id": ...}
    POST {base_url}/entities/{id}/budget  {"daily_budget": 120.0, "account_id": ...}

    A JSON body with a non-zero "code" or an "error" key counts as failure.
    """

    def __init__(self, base_url: str, token: str = "", timeout: float = 30.0) -> None:
        self._base_url = base_url.rstrip("/")
        self._token = token
        self._timeout = timeout

    async def set_status(self, entity_id: str, status: str, account_id: str = "") -> dict[str, Any]:
        return await self._post(
            f"/entities/{entity_id}/status", {"status": status, "account_id": account_id}
        )

    async def set_budget(self, entity_id: str, amount: float, account_id: str = "") -> dict[str, Any]:
        return await self._post(
            f"/entities/{entity_id}/budget", {"daily_budget": round(amount, 2), "account_id": account_id}
        )

    async def _post(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        headers = {"Authorization": f"Bearer {self._token}"} if self._token else {}
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(f"{self._base_url}{path}", json=body, headers=headers)
                resp.raise_for_status()
                data = resp.json() if resp.content else {}
        except httpx.HTTPError as e:
            raise PlatformError(f"{path}: {e}") from e
        except ValueError as e:
            raise PlatformError(f"{path}: invalid JSON response") from e

        if isinstance(data, dict):
            code = data.get("code", 0)
            if data.get("error") or (code not in (0, None, "0")):
                message = data.get("message") or data.get("error") or f"code {code}"
                raise PlatformError(f"{path}: {message}")
        return data if isinstance(data, dict) else {"result": data}
