"""Async client for the load-test REST API."""
import asyncio
import logging
from typing import Any, Dict, List, Optional

import httpx

from errors import ApiError

logger = logging.getLogger(__name__)

FINISHED = ("completed", "failed")


class LoadTestClient:
    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 10.0,
    ):
        self._http = httpx.AsyncClient(base_url=base_url, transport=transport, timeout=timeout)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        await self.aclose()

    async def aclose(self):
        await self._http.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        try:
            resp = await self._http.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            raise ApiError(f"{method} {path} failed: {exc}") from exc

        if resp.status_code >= 400:
            try:
                message = resp.json().get("error", resp.reason_phrase)
            except ValueError:
                message = resp.text or resp.reason_phrase
            raise ApiError(message, status_code=resp.status_code)

        if resp.status_code == 204:
            return None
        return resp.json()

    # configurations

    async def list_configurations(self) -> List[Dict[str, Any]]:
        return await self._request("GET", "/api/test-configurations")

    async def get_configuration(self, config_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/api/test-configurations/{config_id}")

    async def create_configuration(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("POST", "/api/test-configurations", json=payload)

    async def update_configuration(self, config_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("PUT", f"/api/test-configurations/{config_id}", json=changes)

    async def delete_configuration(self, config_id: str) -> None:
        await self._request("DELETE", f"/api/test-configurations/{config_id}")

    async def list_configuration_runs(self, config_id: str) -> List[Dict[str, Any]]:
        return await self._request("GET", f"/api/test-configurations/{config_id}/runs")

    async def trigger_run(self, config_id: str) -> Dict[str, Any]:
        return await self._request("POST", f"/api/test-configurations/{config_id}/trigger")

    # runs

    async def list_runs(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        params = {"limit": limit} if limit is not None else None
        return await self._request("GET", "/api/test-runs", params=params)

    async def get_run(self, run_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/api/test-runs/{run_id}")

    async def create_run(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("POST", "/api/test-runs", json=payload)

    async def update_run(self, run_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("PATCH", f"/api/test-runs/{run_id}", json=changes)

    async def wait_for_run(self, run_id: str, poll_interval: float = 0.5, timeout: float = 60.0) -> Dict[str, Any]:
        """Poll a run until it completes or fails."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            run = await self.get_run(run_id)
            if run["status"] in FINISHED:
                return run
            if loop.time() >= deadline:
                raise ApiError(f"run {run_id} still {run['status']} after {timeout}s")
            await asyncio.sleep(poll_interval)

    async def submit(self, submission: Dict[str, Any], poll_interval: float = 0.5) -> Dict[str, Any]:
        """Save a configuration, trigger a run for it and wait for the outcome.

        Returns the finished run; a failed run raises ``ApiError``.
        """
        config = await self.create_configuration(submission)
        run = await self.trigger_run(config["id"])
        logger.info("triggered run %s for configuration %s", run["id"], config["id"])

        run = await self.wait_for_run(run["id"], poll_interval=poll_interval)
        if run["status"] == "failed":
            raise ApiError(f"run {run['id']} failed")
        return run
