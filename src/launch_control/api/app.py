"""FastAPI application factory for the control surface."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from launch_control.api.auth import TokenService
from launch_control.api.routes import router
from launch_control.engine.errors import (
    ConfigurationError,
    HealthTimeoutError,
    LifecycleError,
    WorkloadNotFoundError,
)

if TYPE_CHECKING:
    from launch_control.config.schema import AuthConfig
    from launch_control.db.repository import OperationRepo
    from launch_control.engine.supervisor import LifecycleSupervisor
    from launch_control.engine.tools import ToolLocator


def _status_for(exc: LifecycleError) -> int:
    if isinstance(exc, WorkloadNotFoundError):
        return 404
    if isinstance(exc, ConfigurationError):
        return 400
    if isinstance(exc, HealthTimeoutError):
        return 504
    return 500


def create_app(
    supervisor: LifecycleSupervisor,
    operations: OperationRepo,
    auth_config: AuthConfig,
    locator: ToolLocator,
) -> FastAPI:
    """Create the control API application.

    Args:
        supervisor: The running LifecycleSupervisor.
        operations: Audit trail repository, served read-only.
        auth_config: Users and token secrets.
        locator: Tool locator used for the system info endpoint.
    """
    app = FastAPI(title="Launch Control API", docs_url=None, redoc_url=None)
    app.state.supervisor = supervisor
    app.state.operations = operations
    app.state.tokens = TokenService(auth_config)
    app.state.locator = locator

    @app.exception_handler(LifecycleError)
    async def lifecycle_error_handler(request: Request, exc: LifecycleError) -> JSONResponse:
        return JSONResponse(status_code=_status_for(exc), content={"detail": str(exc)})

    app.include_router(router)
    return app
