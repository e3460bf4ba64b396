"""HTTP client used by the CLI to drive a running daemon."""

from __future__ import annotations

import httpx
import structlog

from launch_control.api.models import CommandResponse

log = structlog.get_logger()


class APIError(Exception):
    """Raised when the daemon rejects a request or cannot be reached."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class LaunchControlClient:
    """Logs in with a username/password and calls the control API.

    Mutating calls (start/stop/restart) re-authenticate first, since the
    daemon requires a fresh ``X-Reauth-Token`` for them.
    """

    def __init__(
        self,
        base_url: str,
        username: str,
        password: str,
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._username = username
        self._password = password
        self._token: str | None = None
        self._client = httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=transport)

    async def __aenter__(self) -> LaunchControlClient:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, headers: dict | None = None, **kwargs) -> dict | list:
        try:
            response = await self._client.request(method, path, headers=headers, **kwargs)
        except httpx.HTTPError as e:
            raise APIError(f"Cannot reach daemon: {e}") from e
        if response.is_error:
            try:
                detail = response.json().get("detail", response.text)
            except ValueError:
                detail = response.text
            raise APIError(str(detail), status_code=response.status_code)
        return response.json()

    async def _auth_headers(self) -> dict[str, str]:
        if self._token is None:
            data = await self._request(
                "POST", "/api/auth/login", json={"username": self._username, "password": self._password}
            )
            self._token = data["token"]
            log.debug("logged in", username=self._username)
        return {"Authorization": f"Bearer {self._token}"}

    async def _reauth_headers(self) -> dict[str, str]:
        headers = await self._auth_headers()
        data = await self._request(
            "POST", "/api/auth/reauth", headers=headers, json={"password": self._password}
        )
        return {**headers, "X-Reauth-Token": data["reauthToken"]}

    async def list_workloads(self) -> list[dict]:
        data = await self._request("GET", "/api/workloads", headers=await self._auth_headers())
        return data["workloads"]

    async def get_status(self, workload_id: str) -> str:
        data = await self._request(
            "GET", f"/api/workloads/{workload_id}/status", headers=await self._auth_headers()
        )
        return data["status"]

    async def get_logs(self, workload_id: str, lines: int | None = None) -> list[str]:
        params = {"lines": lines} if lines else None
        data = await self._request(
            "GET", f"/api/workloads/{workload_id}/logs", headers=await self._auth_headers(), params=params
        )
        return data["lines"]

    async def start(self, workload_id: str) -> CommandResponse:
        data = await self._request(
            "POST", f"/api/workloads/{workload_id}/start", headers=await self._reauth_headers()
        )
        return CommandResponse(**data)

    async def stop(self, workload_id: str, force: bool = False) -> CommandResponse:
        data = await self._request(
            "POST",
            f"/api/workloads/{workload_id}/stop",
            headers=await self._reauth_headers(),
            params={"force": "1" if force else "0"},
        )
        return CommandResponse(**data)

    async def restart(self, workload_id: str) -> CommandResponse:
        data = await self._request(
            "POST", f"/api/workloads/{workload_id}/restart", headers=await self._reauth_headers()
        )
        return CommandResponse(**data)
