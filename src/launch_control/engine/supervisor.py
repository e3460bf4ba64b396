"""Starts, stops and restarts workloads.

Coordinates the resolver, process registry, health prober and log buffer.
Every start/stop/restart that reaches the supervisor leaves an audit record,
whether it succeeded or not.
"""

from __future__ import annotations

import asyncio
import os
import signal
import sys
from pathlib import Path

import structlog

from launch_control.db.repository import OperationRepo, WorkloadRepo
from launch_control.engine.errors import (
    ConfigurationError,
    HealthTimeoutError,
    LifecycleError,
    SpawnError,
    StartAbortedError,
    WorkloadNotFoundError,
)
from launch_control.engine.logbuffer import LogBuffer
from launch_control.engine.registry import LiveHandle, ProcessRegistry
from launch_control.engine.resolver import CommandResolver
from launch_control.health.checks import HealthProber, ProbeOutcome
from launch_control.logging_config import get_logger
from launch_control.models.events import OperationRecord
from launch_control.models.workload import (
    HealthReport,
    LaunchPlan,
    WorkloadRecord,
    WorkloadSpec,
    WorkloadStatus,
)

log = structlog.get_logger()

STREAM_LIMIT = 1024 * 1024


class LifecycleSupervisor:
    """Owns the live state of every supervised workload."""

    def __init__(
        self,
        workloads: WorkloadRepo,
        operations: OperationRepo,
        resolver: CommandResolver,
        registry: ProcessRegistry | None = None,
        logs: LogBuffer | None = None,
        prober: HealthProber | None = None,
        restart_settle_seconds: float = 0.5,
        side_command_timeout: float = 60.0,
        platform: str = sys.platform,
    ) -> None:
        self._workloads = workloads
        self._operations = operations
        self._resolver = resolver
        self._registry = registry or ProcessRegistry()
        self._logs = logs or LogBuffer()
        self._prober = prober or HealthProber()
        self._restart_settle = restart_settle_seconds
        self._side_command_timeout = side_command_timeout
        self._windows = platform == "win32"
        self._pending_restarts: dict[str, asyncio.Task] = {}

    @property
    def registry(self) -> ProcessRegistry:
        return self._registry

    @property
    def logs(self) -> LogBuffer:
        return self._logs

    # --- control surface ---

    async def start(self, workload_id: str, actor: str | None = None) -> WorkloadStatus:
        """Start a workload. Returns its status once running (or already running)."""
        record = await self._get_record(workload_id)
        try:
            status = await self._start(record.spec)
        except LifecycleError as e:
            await self._audit(workload_id, "start", actor, False, str(e))
            raise
        await self._audit(workload_id, "start", actor, True)
        return status

    async def stop(self, workload_id: str, force: bool = False, actor: str | None = None) -> None:
        """Tear the workload down. Sub-step failures are logged, never raised."""
        record = await self._get_record(workload_id)
        await self._cancel_pending_restart(workload_id)
        await self._teardown(record.spec, force=force)
        await self._workloads.set_status(workload_id, WorkloadStatus.STOPPED)
        await self._audit(workload_id, "stop", actor, True)

    async def restart(self, workload_id: str, actor: str | None = None) -> WorkloadStatus:
        """Graceful stop, then start in the background after a settle delay.

        The persisted status is set to ``running`` before the start has been
        confirmed; a failed start reverts it to ``stopped``. A stop issued
        before the deferred start runs cancels it.
        """
        record = await self._get_record(workload_id)
        await self._cancel_pending_restart(workload_id)
        await self._teardown(record.spec, force=False)
        await self._workloads.set_status(workload_id, WorkloadStatus.RUNNING)
        task = asyncio.create_task(self._deferred_start(record.spec, actor))
        self._pending_restarts[workload_id] = task
        task.add_done_callback(lambda t: self._forget_restart(workload_id, t))
        await self._audit(workload_id, "restart", actor, True)
        return WorkloadStatus.RUNNING

    async def get_status(self, workload_id: str) -> WorkloadStatus:
        handle = self._registry.lookup(workload_id)
        if handle is not None:
            return WorkloadStatus.RUNNING if handle.ready else WorkloadStatus.STARTING
        record = await self._get_record(workload_id)
        return record.status

    def get_logs(self, workload_id: str) -> list[str]:
        return self._logs.lines(workload_id)

    async def ping_health(self, workload_id: str) -> HealthReport:
        record = await self._get_record(workload_id)
        url = record.spec.health_check_url
        if not url:
            raise ConfigurationError(f"Workload '{workload_id}' has no health check URL")
        return HealthReport(http_code=await self._prober.probe(url))

    async def describe(self, workload_id: str) -> LaunchPlan:
        """Resolve the launch plan without spawning anything."""
        record = await self._get_record(workload_id)
        return await asyncio.to_thread(self._resolver.resolve, record.spec)

    async def list_workloads(self) -> list[WorkloadRecord]:
        """Catalog records with the live status overlaid."""
        records = []
        for record in await self._workloads.list_all():
            handle = self._registry.lookup(record.spec.id)
            if handle is not None:
                live = WorkloadStatus.RUNNING if handle.ready else WorkloadStatus.STARTING
                record = WorkloadRecord(
                    spec=record.spec,
                    status=live,
                    position=record.position,
                    created_at=record.created_at,
                    updated_at=record.updated_at,
                )
            records.append(record)
        return records

    async def shutdown(self) -> None:
        """Cancel pending restarts and stop every supervised workload."""
        for workload_id in list(self._pending_restarts):
            await self._cancel_pending_restart(workload_id)
            await self._workloads.set_status(workload_id, WorkloadStatus.STOPPED)

        watchers = []
        for workload_id in self._registry.ids():
            handle = self._registry.lookup(workload_id)
            if handle is None:
                continue
            if handle.watcher is not None:
                watchers.append(handle.watcher)
            record = await self._workloads.get(workload_id)
            if record is not None:
                await self._teardown(record.spec, force=False)
                # The watcher sees the handle already unregistered and leaves status alone.
                await self._workloads.set_status(workload_id, WorkloadStatus.STOPPED)
            else:
                await self._signal_handle(workload_id, handle, force=False)
                self._registry.unregister(workload_id)

        if watchers:
            _, pending = await asyncio.wait(watchers, timeout=5.0)
            for task in pending:
                task.cancel()
        log.info("supervisor stopped")

    # --- start path ---

    async def _start(self, spec: WorkloadSpec) -> WorkloadStatus:
        wlog = get_logger(spec.id)
        handle = await self._spawn_and_register(spec)
        if handle is None:
            wlog.info("workload already running, start ignored")
            existing = self._registry.lookup(spec.id)
            if existing is not None and not existing.ready:
                return WorkloadStatus.STARTING
            return WorkloadStatus.RUNNING

        url = spec.health_check_url
        if url:
            await self._workloads.set_status(spec.id, WorkloadStatus.STARTING)
            self._logs.append(spec.id, f"health: waiting for {url} up to {self._prober.timeout:g}s")
            outcome = await self._prober.await_ready(url, cancel=handle.cancelled)

            if outcome is ProbeOutcome.TIMED_OUT:
                self._logs.append(spec.id, f"health: timeout waiting for {url}")
                wlog.warning("health check timed out, rolling back", url=url)
                await self._teardown(spec, force=True)
                await self._workloads.set_status(spec.id, WorkloadStatus.STOPPED)
                raise HealthTimeoutError(url, self._prober.timeout)

            if outcome is ProbeOutcome.CANCELLED:
                wlog.info("start aborted by stop during health check")
                raise StartAbortedError(f"Workload '{spec.id}' was stopped before it became healthy")

            self._logs.append(spec.id, f"health: OK for {url}")

        if self._registry.lookup(spec.id) is not handle:
            return await self._settle_unregistered(spec, handle)

        handle.ready = True
        await self._workloads.set_status(spec.id, WorkloadStatus.RUNNING)
        wlog.info("workload running", pid=handle.pid)
        return WorkloadStatus.RUNNING

    async def _settle_unregistered(self, spec: WorkloadSpec, handle: LiveHandle) -> WorkloadStatus:
        """Decide the outcome of a start whose handle left the registry before it finished."""
        if handle.cancelled.is_set():
            raise StartAbortedError(f"Workload '{spec.id}' was stopped before it became healthy")

        code = handle.process.returncode
        if handle.container and code == 0:
            # The detached client is done; the container keeps running.
            await self._workloads.set_status(spec.id, WorkloadStatus.RUNNING)
            get_logger(spec.id).info("workload running", container=True)
            return WorkloadStatus.RUNNING

        await self._workloads.set_status(spec.id, WorkloadStatus.STOPPED)
        if spec.health_check_url:
            raise SpawnError(f"Workload '{spec.id}' exited with code {code} before it became healthy")
        if handle.container:
            raise SpawnError(f"Container client for '{spec.id}' exited with code {code}")
        return WorkloadStatus.STOPPED

    async def _spawn_and_register(self, spec: WorkloadSpec) -> LiveHandle | None:
        """Resolve, spawn and register under the workload lock. None if already registered."""
        async with self._registry.lock_for(spec.id):
            if spec.id in self._registry:
                return None

            plan = await asyncio.to_thread(self._resolver.resolve, spec)
            for warning in plan.warnings:
                self._logs.append(spec.id, f"warn: {warning}")
                log.warning(warning, workload=spec.id)
            for step in plan.prelaunch:
                self._logs.append(spec.id, f"prelaunch: {' '.join(step)}")
                await self._run_side_command(spec.id, argv=step, cwd=plan.cwd)

            self._logs.append(spec.id, f"start: {plan.display} (cwd={plan.cwd})")
            process = await self._spawn(plan)
            handle = LiveHandle(workload_id=spec.id, process=process, container=plan.container)
            self._registry.register(spec.id, handle)
            handle.watcher = asyncio.create_task(self._watch(spec, handle))

            if self._registry.lookup(spec.id) is not handle or (not plan.container and not handle.pid):
                self._registry.unregister_if(spec.id, handle)
                raise SpawnError(f"Failed to start process for '{spec.id}'")

            log.info("workload spawned", workload=spec.id, pid=handle.pid, container=plan.container)
            return handle

    async def _spawn(self, plan: LaunchPlan) -> asyncio.subprocess.Process:
        env = {**os.environ, **dict(plan.env)} if plan.env else None
        kwargs: dict = {
            "stdin": asyncio.subprocess.DEVNULL,
            "stdout": asyncio.subprocess.PIPE,
            "stderr": asyncio.subprocess.PIPE,
            "cwd": str(plan.cwd),
            "env": env,
            "limit": STREAM_LIMIT,
        }
        if not self._windows:
            # Own process group, so a stop can signal everything a shell wrapper forked.
            kwargs["start_new_session"] = True
        try:
            if plan.shell_command is not None:
                return await asyncio.create_subprocess_shell(plan.shell_command, **kwargs)
            return await asyncio.create_subprocess_exec(*(plan.argv or ()), **kwargs)
        except OSError as e:
            self._logs.append(plan.workload_id, f"ERR spawn failed: {e}")
            log.error("spawn failed", workload=plan.workload_id, error=str(e))
            raise SpawnError(f"Failed to start '{plan.workload_id}': {e}") from e

    async def _watch(self, spec: WorkloadSpec, handle: LiveHandle) -> None:
        """Pump output into the log buffer and clean up after the process exits."""
        process = handle.process
        pumps = [
            asyncio.create_task(self._pump(spec.id, process.stdout, "OUT")),
            asyncio.create_task(self._pump(spec.id, process.stderr, "ERR")),
        ]
        try:
            code = await process.wait()
            # Grandchildren may still hold the pipes open; don't wait on them forever.
            _, pending = await asyncio.wait(pumps, timeout=1.0)
            for task in pending:
                task.cancel()
            self._logs.append(spec.id, f"exit: code={code}")
            if self._registry.unregister_if(spec.id, handle):
                log.info("workload exited", workload=spec.id, exit_code=code)
                if handle.container and code != 0:
                    self._logs.append(spec.id, "warn: container client failed, container not started")
                    log.warning("container client failed", workload=spec.id, exit_code=code)
                if not handle.container or code != 0:
                    await self._workloads.set_status(spec.id, WorkloadStatus.STOPPED)
        except asyncio.CancelledError:
            for task in pumps:
                task.cancel()
            raise
        except Exception:
            log.exception("workload watcher error", workload=spec.id)

    async def _pump(self, workload_id: str, stream: asyncio.StreamReader | None, prefix: str) -> None:
        if stream is None:
            return
        while True:
            try:
                line = await stream.readline()
            except ValueError:
                self._logs.append(workload_id, f"{prefix} [line longer than {STREAM_LIMIT} bytes dropped]")
                continue
            if not line:
                return
            self._logs.append(workload_id, f"{prefix} {line.decode(errors='replace').rstrip()}")

    async def _deferred_start(self, spec: WorkloadSpec, actor: str | None) -> None:
        await asyncio.sleep(self._restart_settle)
        try:
            await self._start(spec)
        except LifecycleError as e:
            self._logs.append(spec.id, f"restart: start failed: {e}")
            log.warning("restart failed, reverting status", workload=spec.id, error=str(e))
            await self._workloads.set_status(spec.id, WorkloadStatus.STOPPED)
            await self._audit(spec.id, "start", actor, False, str(e))
        except Exception:
            log.exception("restart error", workload=spec.id)
            await self._workloads.set_status(spec.id, WorkloadStatus.STOPPED)
        else:
            await self._audit(spec.id, "start", actor, True)

    async def _cancel_pending_restart(self, workload_id: str) -> None:
        task = self._pending_restarts.pop(workload_id, None)
        if task is None or task.done():
            return
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        log.info("pending restart cancelled", workload=workload_id)

    def _forget_restart(self, workload_id: str, task: asyncio.Task) -> None:
        if self._pending_restarts.get(workload_id) is task:
            del self._pending_restarts[workload_id]

    # --- stop path ---

    async def _teardown(self, spec: WorkloadSpec, force: bool) -> None:
        """Idempotent teardown shared by stop, rollback and shutdown."""
        spec = self._resolver.normalize(spec)

        if spec.is_container:
            argv = self._resolver.teardown(spec)
            if argv is None:
                self._logs.append(spec.id, "warn: container tool not found, skipping container teardown")
                log.warning("container teardown skipped, tool missing", workload=spec.id)
            else:
                self._logs.append(spec.id, f"stop: {' '.join(argv)}")
                await self._run_side_command(spec.id, argv=argv)

        if spec.stop_command:
            self._logs.append(spec.id, f"stop: {spec.stop_command}")
            await self._run_side_command(
                spec.id, shell=spec.stop_command, cwd=self._resolver.working_directory(spec)
            )

        handle = self._registry.lookup(spec.id)
        if handle is not None:
            handle.cancelled.set()
            if not handle.exited:
                await self._signal_handle(spec.id, handle, force)
        self._registry.unregister(spec.id)
        log.info("workload stopped", workload=spec.id, force=force)

    async def _signal_handle(self, workload_id: str, handle: LiveHandle, force: bool) -> None:
        if self._windows:
            argv = ["taskkill", "/PID", str(handle.pid), "/T"]
            if force:
                argv.append("/F")
            self._logs.append(workload_id, f"stop: {' '.join(argv)}")
            await self._run_side_command(workload_id, argv=tuple(argv))
            return
        self._signal(workload_id, handle, force)

    def _signal(self, workload_id: str, handle: LiveHandle, force: bool) -> None:
        """Signal the workload's whole process group (POSIX)."""
        sig = signal.SIGKILL if force else signal.SIGTERM
        self._logs.append(workload_id, f"stop: {sig.name} pgid={handle.pid}")
        try:
            os.killpg(handle.pid, sig)
        except ProcessLookupError:
            log.debug("process group already gone", workload=workload_id, pid=handle.pid)
        except OSError as e:
            self._logs.append(workload_id, f"ERR signal failed: {e}")
            log.warning("signal failed", workload=workload_id, pid=handle.pid, error=str(e))

    # --- helpers ---

    async def _run_side_command(
        self,
        workload_id: str,
        argv: tuple[str, ...] | None = None,
        shell: str | None = None,
        cwd: Path | None = None,
    ) -> int | None:
        """Run a short-lived helper (docker load/rm, compose down, stop command).

        Output goes to the workload log. Failures are logged and reported as
        ``None``, never raised.
        """
        try:
            if shell is not None:
                process = await asyncio.create_subprocess_shell(
                    shell,
                    stdin=asyncio.subprocess.DEVNULL,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                    cwd=str(cwd) if cwd else None,
                )
            else:
                process = await asyncio.create_subprocess_exec(
                    *(argv or ()),
                    stdin=asyncio.subprocess.DEVNULL,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                    cwd=str(cwd) if cwd else None,
                )
        except OSError as e:
            self._logs.append(workload_id, f"ERR {e}")
            log.warning("side command failed to start", workload=workload_id, error=str(e))
            return None

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(), timeout=self._side_command_timeout
            )
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            self._logs.append(workload_id, f"ERR command timed out after {self._side_command_timeout:g}s")
            log.warning("side command timed out", workload=workload_id)
            return None

        if stdout:
            self._logs.append(workload_id, f"OUT {stdout.decode(errors='replace').rstrip()}")
        if stderr:
            self._logs.append(workload_id, f"ERR {stderr.decode(errors='replace').rstrip()}")
        if process.returncode != 0:
            log.warning("side command exited non-zero", workload=workload_id, exit_code=process.returncode)
        return process.returncode

    async def _get_record(self, workload_id: str) -> WorkloadRecord:
        record = await self._workloads.get(workload_id)
        if record is None:
            raise WorkloadNotFoundError(workload_id)
        return record

    async def _audit(
        self,
        workload_id: str,
        operation: str,
        actor: str | None,
        success: bool,
        error: str | None = None,
    ) -> None:
        await self._operations.record(
            OperationRecord(
                workload_id=workload_id,
                operation=operation,
                actor=actor,
                success=success,
                error=error,
            )
        )
