"""Wires the catalog, supervisor and HTTP control surface together."""

from __future__ import annotations

import asyncio
from pathlib import Path

import structlog
import uvicorn

from launch_control.api.app import create_app
from launch_control.config.loader import ConfigLoader
from launch_control.config.schema import DaemonConfig
from launch_control.db.connection import Database
from launch_control.db.repository import OperationRepo, WorkloadRepo
from launch_control.engine.logbuffer import LogBuffer
from launch_control.engine.resolver import CommandResolver
from launch_control.engine.supervisor import LifecycleSupervisor
from launch_control.engine.tools import ToolLocator
from launch_control.health.checks import HealthProber
from launch_control.logging_config import configure_logging

log = structlog.get_logger()


class LaunchControlDaemon:
    """Owns the database, the supervisor and the uvicorn server for one run of ``up``."""

    def __init__(
        self,
        config_dir: Path,
        daemon_config: DaemonConfig | None = None,
        log_dir: Path | None = None,
        serve_http: bool = True,
    ) -> None:
        self.config_dir = config_dir
        self.log_dir = log_dir
        self._loader = ConfigLoader(config_dir)
        self._config = daemon_config or self._loader.load_daemon_config()
        self._serve_http = serve_http
        self._db: Database | None = None
        self._supervisor: LifecycleSupervisor | None = None
        self._http_server: uvicorn.Server | None = None
        self._http_task: asyncio.Task | None = None

    @property
    def config(self) -> DaemonConfig:
        return self._config

    @property
    def supervisor(self) -> LifecycleSupervisor:
        if self._supervisor is None:
            raise RuntimeError("Daemon not started")
        return self._supervisor

    async def start(self) -> None:
        """Open the catalog, sync declared workloads and start serving."""
        configure_logging(self.log_dir)
        log.info("daemon starting", config_dir=str(self.config_dir))

        self._db = Database(Path(self._config.server.db_path))
        await self._db.connect()
        workloads = WorkloadRepo(self._db)
        operations = OperationRepo(self._db)

        specs = self._loader.load_all()
        summary = await workloads.sync(specs)
        log.info("catalog synced", **summary)

        locator = ToolLocator.from_environment()
        settings = self._config.supervisor
        self._supervisor = LifecycleSupervisor(
            workloads,
            operations,
            CommandResolver(locator),
            logs=LogBuffer(settings.log_buffer_size),
            prober=HealthProber(
                timeout=settings.health_timeout_seconds,
                interval=settings.health_interval_seconds,
            ),
            restart_settle_seconds=settings.restart_settle_seconds,
        )

        if self._serve_http:
            app = create_app(self._supervisor, operations, self._config.auth, locator)
            server = self._config.server
            self._http_server = uvicorn.Server(
                uvicorn.Config(app, host=server.host, port=server.port, log_level="warning")
            )
            self._http_task = asyncio.create_task(self._http_server.serve())
            log.info("http api started", host=server.host, port=server.port)

        log.info("daemon ready", workloads=len(specs))

    async def shutdown(self) -> None:
        """Stop the HTTP server, every supervised workload, then the database."""
        log.info("daemon shutting down")

        if self._http_server is not None:
            self._http_server.should_exit = True
            if self._http_task is not None and not self._http_task.done():
                try:
                    await asyncio.wait_for(self._http_task, timeout=5.0)
                except asyncio.TimeoutError:
                    self._http_task.cancel()
            self._http_server = None
            self._http_task = None

        if self._supervisor is not None:
            await self._supervisor.shutdown()

        if self._db is not None:
            await self._db.close()
            self._db = None

        log.info("daemon stopped")
