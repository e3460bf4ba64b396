"""Tests for the CLI's HTTP client against a fake daemon."""

import json

import httpx
import pytest

from launch_control.api.client import APIError, LaunchControlClient


class FakeDaemon:
    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path == "/api/auth/login":
            body = json.loads(request.content)
            if body["password"] != "pw":
                return httpx.Response(401, json={"detail": "Invalid credentials"})
            return httpx.Response(200, json={"token": "session", "user": {"username": "alice", "role": "admin"}})
        if path == "/api/auth/reauth":
            return httpx.Response(200, json={"reauthToken": "fresh", "expiresInSec": 600})
        if request.headers.get("Authorization") != "Bearer session":
            return httpx.Response(401, json={"detail": "Unauthorized"})
        if path == "/api/workloads":
            return httpx.Response(200, json={"workloads": [{"id": "web", "status": "running"}]})
        if path == "/api/workloads/web/status":
            return httpx.Response(200, json={"id": "web", "status": "running"})
        if path == "/api/workloads/ghost/status":
            return httpx.Response(404, json={"detail": "Unknown workload: ghost"})
        if path.endswith("/stop"):
            return httpx.Response(200, json={"success": True, "message": "Stopped 'web'", "status": "stopped"})
        return httpx.Response(500, text="unexpected")


@pytest.fixture
def daemon() -> FakeDaemon:
    return FakeDaemon()


class TestLaunchControlClient:
    async def test_logs_in_once(self, daemon: FakeDaemon):
        async with LaunchControlClient("http://lc", "alice", "pw", transport=httpx.MockTransport(daemon)) as client:
            assert await client.list_workloads() == [{"id": "web", "status": "running"}]
            assert await client.get_status("web") == "running"
        logins = [r for r in daemon.requests if r.url.path == "/api/auth/login"]
        assert len(logins) == 1

    async def test_mutation_sends_reauth_header(self, daemon: FakeDaemon):
        async with LaunchControlClient("http://lc", "alice", "pw", transport=httpx.MockTransport(daemon)) as client:
            response = await client.stop("web", force=True)
        assert response.status == "stopped"
        stop = daemon.requests[-1]
        assert stop.headers["X-Reauth-Token"] == "fresh"
        assert stop.url.params["force"] == "1"

    async def test_error_detail_surfaces(self, daemon: FakeDaemon):
        async with LaunchControlClient("http://lc", "alice", "pw", transport=httpx.MockTransport(daemon)) as client:
            with pytest.raises(APIError, match="Unknown workload: ghost") as exc_info:
                await client.get_status("ghost")
        assert exc_info.value.status_code == 404

    async def test_bad_credentials(self, daemon: FakeDaemon):
        async with LaunchControlClient("http://lc", "alice", "wrong", transport=httpx.MockTransport(daemon)) as client:
            with pytest.raises(APIError, match="Invalid credentials"):
                await client.list_workloads()

    async def test_non_json_error(self, daemon: FakeDaemon):
        async with LaunchControlClient("http://lc", "alice", "pw", transport=httpx.MockTransport(daemon)) as client:
            with pytest.raises(APIError, match="unexpected"):
                await client.get_logs("web")
