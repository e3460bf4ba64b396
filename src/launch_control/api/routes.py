"""HTTP API routes for the lifecycle control surface."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from launch_control import __version__
from launch_control.api.auth import (
    ALL_ROLES,
    Principal,
    current_principal,
    require_operator_reauth,
    require_roles,
)
from launch_control.api.models import (
    CommandResponse,
    HealthResponse,
    LoginRequest,
    LoginResponse,
    LogsResponse,
    OperationInfo,
    ReauthRequest,
    ReauthResponse,
    StatusResponse,
    SystemInfo,
    UserInfo,
)
from launch_control.engine.tools import system_info

if TYPE_CHECKING:
    from launch_control.engine.supervisor import LifecycleSupervisor

router = APIRouter(prefix="/api")

any_role = require_roles(*ALL_ROLES)


def _get_supervisor(request: Request) -> LifecycleSupervisor:
    return request.app.state.supervisor


@router.get("/health")
async def health() -> dict:
    """Liveness endpoint, no auth."""
    return {"status": "ok", "version": __version__}


@router.post("/auth/login")
async def login(request: Request, body: LoginRequest) -> LoginResponse:
    tokens = request.app.state.tokens
    user = tokens.authenticate(body.username, body.password)
    if user is None:
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return LoginResponse(
        token=tokens.issue_session(user),
        user=UserInfo(username=user.username, role=user.role),
    )


@router.post("/auth/reauth")
async def reauth(
    request: Request,
    body: ReauthRequest,
    principal: Principal = Depends(current_principal),
) -> ReauthResponse:
    """Trade the account password for a short-lived re-authentication token."""
    tokens = request.app.state.tokens
    if tokens.authenticate(principal.username, body.password) is None:
        raise HTTPException(status_code=401, detail="Invalid password")
    return ReauthResponse(
        reauth_token=tokens.issue_reauth(principal),
        expires_in_sec=tokens.reauth_ttl_seconds,
    )


@router.get("/workloads", dependencies=[Depends(any_role)])
async def list_workloads(request: Request) -> dict:
    records = await _get_supervisor(request).list_workloads()
    return {"workloads": [record.to_dict() for record in records]}


@router.get("/workloads/{workload_id}/status", dependencies=[Depends(any_role)])
async def workload_status(request: Request, workload_id: str) -> StatusResponse:
    status = await _get_supervisor(request).get_status(workload_id)
    return StatusResponse(id=workload_id, status=status.value)


@router.get("/workloads/{workload_id}/logs", dependencies=[Depends(any_role)])
async def workload_logs(
    request: Request, workload_id: str, lines: int | None = Query(default=None, ge=1, le=1000)
) -> LogsResponse:
    all_lines = _get_supervisor(request).get_logs(workload_id)
    return LogsResponse(id=workload_id, lines=all_lines[-lines:] if lines else all_lines)


@router.get("/workloads/{workload_id}/health", dependencies=[Depends(any_role)])
async def workload_health(request: Request, workload_id: str) -> HealthResponse:
    report = await _get_supervisor(request).ping_health(workload_id)
    return HealthResponse(http_code=report.http_code, healthy=report.healthy)


@router.post("/workloads/{workload_id}/start")
async def start_workload(
    request: Request,
    workload_id: str,
    principal: Principal = Depends(require_operator_reauth),
) -> CommandResponse:
    status = await _get_supervisor(request).start(workload_id, actor=principal.username)
    return CommandResponse(success=True, message=f"Started '{workload_id}'", status=status.value)


@router.post("/workloads/{workload_id}/stop")
async def stop_workload(
    request: Request,
    workload_id: str,
    force: bool = Query(default=False),
    principal: Principal = Depends(require_operator_reauth),
) -> CommandResponse:
    await _get_supervisor(request).stop(workload_id, force=force, actor=principal.username)
    return CommandResponse(success=True, message=f"Stopped '{workload_id}'", status="stopped")


@router.post("/workloads/{workload_id}/restart")
async def restart_workload(
    request: Request,
    workload_id: str,
    principal: Principal = Depends(require_operator_reauth),
) -> CommandResponse:
    status = await _get_supervisor(request).restart(workload_id, actor=principal.username)
    return CommandResponse(success=True, message=f"Restarting '{workload_id}'", status=status.value)


@router.get("/operations", dependencies=[Depends(any_role)])
async def recent_operations(
    request: Request,
    limit: int = Query(default=50, ge=1, le=500),
    workload_id: str | None = None,
) -> list[OperationInfo]:
    records = await request.app.state.operations.recent(limit=limit, workload_id=workload_id)
    return [OperationInfo(**record.to_dict()) for record in records]


@router.get("/system/info", dependencies=[Depends(any_role)])
async def host_info(request: Request) -> SystemInfo:
    info = await asyncio.to_thread(system_info, request.app.state.locator)
    return SystemInfo(**info)
