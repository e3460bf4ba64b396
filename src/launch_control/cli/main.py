import asyncio
import signal
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from launch_control import __version__
from launch_control.api.client import APIError, LaunchControlClient

console = Console()

DEFAULT_API_URL = "http://127.0.0.1:4000"

STATUS_COLORS = {
    "running": "green",
    "stopped": "red",
    "starting": "yellow",
    "unknown": "dim",
}


def _run_async(coro):
    """Run an async function from sync Click commands."""
    return asyncio.run(coro)


def _client(ctx: click.Context) -> LaunchControlClient:
    username = ctx.obj.get("username")
    password = ctx.obj.get("password")
    if not username or not password:
        console.print("[red]--username and --password (or LAUNCH_CONTROL_USERNAME/PASSWORD) are required[/red]")
        raise SystemExit(1)
    return LaunchControlClient(ctx.obj["api_url"], username, password)


def _call(ctx: click.Context, action):
    """Open a client, run ``action(client)`` and turn API errors into exit code 1."""

    async def run():
        async with _client(ctx) as client:
            return await action(client)

    try:
        return _run_async(run())
    except APIError as e:
        console.print(f"[red]{e}[/red]")
        raise SystemExit(1)


def _colored(status: str) -> str:
    color = STATUS_COLORS.get(status, "white")
    return f"[{color}]{status}[/{color}]"


@click.group()
@click.version_option(version=__version__, prog_name="launch-control")
@click.option("--config-dir", default="./configs", type=click.Path(), help="Config directory path")
@click.option("--api-url", default=DEFAULT_API_URL, envvar="LAUNCH_CONTROL_API_URL", help="Daemon API URL")
@click.option("--username", envvar="LAUNCH_CONTROL_USERNAME", default=None, help="API username")
@click.option("--password", envvar="LAUNCH_CONTROL_PASSWORD", default=None, help="API password")
@click.pass_context
def cli(ctx: click.Context, config_dir: str, api_url: str, username: str | None, password: str | None) -> None:
    """Launch Control: start, stop and watch local, conda and docker workloads."""
    ctx.ensure_object(dict)
    ctx.obj["config_dir"] = config_dir
    ctx.obj["api_url"] = api_url.rstrip("/")
    ctx.obj["username"] = username
    ctx.obj["password"] = password


@cli.command()
@click.option("--log-dir", default=None, type=click.Path(), help="Write JSON logs here instead of stderr")
@click.pass_context
def up(ctx: click.Context, log_dir: str | None) -> None:
    """Run the daemon and its HTTP API (foreground)."""
    from launch_control.config.loader import ConfigError, ConfigLoader
    from launch_control.engine.daemon import LaunchControlDaemon

    config_dir = Path(ctx.obj["config_dir"])
    try:
        daemon_config = ConfigLoader(config_dir).load_daemon_config()
    except ConfigError as e:
        console.print(f"[red]Config error: {e}[/red]")
        raise SystemExit(1)

    daemon = LaunchControlDaemon(
        config_dir=config_dir,
        daemon_config=daemon_config,
        log_dir=Path(log_dir) if log_dir else None,
    )

    async def run_daemon() -> None:
        try:
            await daemon.start()
        except ConfigError as e:
            console.print(f"[red]Config error: {e}[/red]")
            await daemon.shutdown()
            raise SystemExit(1)

        stop_event = asyncio.Event()

        def handle_signal() -> None:
            console.print("\n[yellow]Shutting down...[/yellow]")
            stop_event.set()

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, handle_signal)

        server = daemon_config.server
        console.print(
            f"[green]Launch Control running on http://{server.host}:{server.port}.[/green] Press Ctrl+C to stop."
        )
        await stop_event.wait()
        await daemon.shutdown()

    _run_async(run_daemon())


@cli.command()
@click.pass_context
def validate(ctx: click.Context) -> None:
    """Validate daemon.yaml and every workload config file."""
    from launch_control.config.loader import ConfigError, ConfigLoader

    try:
        loader = ConfigLoader(Path(ctx.obj["config_dir"]))
        loader.load_daemon_config()
        specs = loader.load_all()
    except ConfigError as e:
        console.print(f"[red]Config error: {e}[/red]")
        raise SystemExit(1)

    console.print(f"[green]All configs valid. {len(specs)} workload(s) found.[/green]")
    for spec in specs:
        console.print(f"  - {spec.id} ({spec.kind})")


@cli.command()
@click.argument("workload_id")
@click.pass_context
def plan(ctx: click.Context, workload_id: str) -> None:
    """Show how a workload would be launched, without starting it."""
    from launch_control.config.loader import ConfigError, ConfigLoader
    from launch_control.engine.errors import LifecycleError
    from launch_control.engine.resolver import CommandResolver
    from launch_control.engine.tools import ToolLocator

    try:
        specs = ConfigLoader(Path(ctx.obj["config_dir"])).load_all()
    except ConfigError as e:
        console.print(f"[red]Config error: {e}[/red]")
        raise SystemExit(1)

    spec = next((s for s in specs if s.id == workload_id), None)
    if spec is None:
        console.print(f"[red]Workload '{workload_id}' not found in configs.[/red]")
        raise SystemExit(1)

    resolver = CommandResolver(ToolLocator.from_environment())
    try:
        launch = resolver.resolve(spec)
    except LifecycleError as e:
        console.print(f"[red]{e}[/red]")
        raise SystemExit(1)

    table = Table(title=f"Launch plan: {workload_id}", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Kind", str(resolver.normalize(spec).kind))
    table.add_row("Working dir", str(launch.cwd))
    table.add_row("Command", launch.display)
    table.add_row("Mode", "shell" if launch.shell_command is not None else "exec")
    for step in launch.prelaunch:
        table.add_row("Prelaunch", " ".join(step))
    for key, value in launch.env:
        table.add_row("Env", f"{key}={value}")
    teardown = resolver.teardown(spec)
    if teardown:
        table.add_row("Teardown", " ".join(teardown))
    for warning in launch.warnings:
        table.add_row("Warning", f"[yellow]{warning}[/yellow]")
    console.print(table)


@cli.command("hash-password")
@click.password_option()
def hash_password_cmd(password: str) -> None:
    """Print a password_hash value for a daemon.yaml user entry."""
    from launch_control.api.auth import hash_password

    click.echo(hash_password(password))


@cli.command("list")
@click.pass_context
def list_workloads(ctx: click.Context) -> None:
    """List catalog workloads and their live status."""
    workloads = _call(ctx, lambda client: client.list_workloads())
    if not workloads:
        console.print("No workloads registered.")
        return

    table = Table(title="Workloads")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Kind", style="magenta")
    table.add_column("Status")
    table.add_column("Health URL")
    for w in workloads:
        table.add_row(w["id"], w["name"], w["kind"], _colored(w["status"]), w.get("health_check_url") or "-")
    console.print(table)


@cli.command()
@click.argument("workload_id")
@click.pass_context
def status(ctx: click.Context, workload_id: str) -> None:
    """Show the status of a workload."""
    value = _call(ctx, lambda client: client.get_status(workload_id))
    console.print(f"{workload_id}: {_colored(value)}")


@cli.command()
@click.argument("workload_id")
@click.option("--lines", "-n", default=50, help="Number of lines to show")
@click.pass_context
def logs(ctx: click.Context, workload_id: str, lines: int) -> None:
    """Show the most recent output of a workload."""
    output = _call(ctx, lambda client: client.get_logs(workload_id, lines))
    if not output:
        console.print(f"No logs for '{workload_id}'.")
        return
    for line in output:
        click.echo(line)


@cli.command()
@click.argument("workload_id")
@click.pass_context
def start(ctx: click.Context, workload_id: str) -> None:
    """Start a workload and wait until it is running."""
    response = _call(ctx, lambda client: client.start(workload_id))
    console.print(response.message)


@cli.command()
@click.argument("workload_id")
@click.option("--force", is_flag=True, help="Kill instead of asking the workload to exit")
@click.pass_context
def stop(ctx: click.Context, workload_id: str, force: bool) -> None:
    """Stop a workload."""
    response = _call(ctx, lambda client: client.stop(workload_id, force=force))
    console.print(response.message)


@cli.command()
@click.argument("workload_id")
@click.pass_context
def restart(ctx: click.Context, workload_id: str) -> None:
    """Stop a workload, then start it again in the background."""
    response = _call(ctx, lambda client: client.restart(workload_id))
    console.print(response.message)
