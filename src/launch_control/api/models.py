"""Pydantic request/response models for the HTTP control surface."""

from __future__ import annotations

from pydantic import BaseModel, Field


class LoginRequest(BaseModel):
    username: str
    password: str


class UserInfo(BaseModel):
    username: str
    role: str


class LoginResponse(BaseModel):
    token: str
    user: UserInfo


class ReauthRequest(BaseModel):
    password: str


class ReauthResponse(BaseModel):
    reauth_token: str = Field(serialization_alias="reauthToken")
    expires_in_sec: int = Field(serialization_alias="expiresInSec")


class CommandResponse(BaseModel):
    """Generic response for lifecycle commands."""

    success: bool
    message: str
    status: str | None = None


class StatusResponse(BaseModel):
    id: str
    status: str


class LogsResponse(BaseModel):
    id: str
    lines: list[str] = []


class HealthResponse(BaseModel):
    http_code: int = Field(serialization_alias="httpCode")
    healthy: bool


class OperationInfo(BaseModel):
    id: int | None = None
    workload_id: str
    operation: str
    user: str | None = None
    success: bool
    error: str | None = None
    timestamp: str


class SystemInfo(BaseModel):
    platform: str
    arch: str
    homedir: str
    docker_installed: bool
    compose_tool: str | None = None
    docker_version: str | None = None
    compose_version: str | None = None
