"""CLI entry point for devcheck.

Provides commands to validate a dev container image, check the Docker daemon
and inspect the resource usage of a running container.
"""

import asyncio
import shlex
from pathlib import Path
from typing import Annotated

import typer
from pydantic import ValidationError
from rich import print as rprint
from rich.console import Console
from rich.table import Table

from devcheck.common.config import DevCheckConfig, ValidationSettings, load_config
from devcheck.common.exceptions import DevCheckError
from devcheck.common.logging_setup import configure_logging
from devcheck.common.models import (
    CheckStatus,
    ContainerSpec,
    ContainerValidation,
    MonitoringReport,
    ResourceReport,
    ValidationStatus,
)
from devcheck.container_state import ContainerState
from devcheck.docker_handler.async_client import DockerEngine
from devcheck.docker_handler.stats import derive_resource_usage
from devcheck.monitor import ContainerMonitor
from devcheck.resource_tracker import ResourceTracker
from devcheck.validator import ContainerValidator

# Create CLI app
app = typer.Typer(
    name="devcheck",
    help="devcheck - Validate containerized development environments",
    no_args_is_help=True,
)

console = Console()

_STATUS_STYLES = {
    CheckStatus.PASSED: "[green]passed[/green]",
    CheckStatus.WARNING: "[yellow]warning[/yellow]",
    CheckStatus.FAILED: "[red]failed[/red]",
}

EnvFileOption = Annotated[
    Path | None,
    typer.Option("--env-file", help="Path to a .env file with DEVCHECK settings"),
]
VerboseOption = Annotated[bool, typer.Option("--verbose", "-v", help="Enable debug logging")]


def _load(env_file: Path | None, verbose: bool) -> DevCheckConfig:
    config = load_config(env_file)
    if verbose:
        config.logging.log_level = "DEBUG"
    configure_logging(config.logging)
    return config


def _parse_env(pairs: list[str]) -> dict[str, str]:
    environment = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            rprint(f"[red]Error:[/red] Environment variables must be KEY=VALUE. Got: {pair}")
            raise typer.Exit(1)
        environment[key] = value
    return environment


async def _run_validation(config: DevCheckConfig, spec: ContainerSpec) -> ContainerValidation:
    async with DockerEngine(config.docker) as engine:
        validator = ContainerValidator(
            engine,
            settings=config.validation,
            thresholds=config.thresholds,
            monitoring=config.monitoring,
        )
        return await validator.validate_container_startup(spec)


async def _sample_usage(config: DevCheckConfig, container_id: str) -> ResourceReport:
    async with DockerEngine(config.docker) as engine:
        counters = await engine.stats(container_id)
    usage = derive_resource_usage(
        counters,
        memory_warning_percent=config.thresholds.memory_warning_percent,
        disk_budget_mb=config.monitoring.disk_budget_mb,
    )
    tracker = ResourceTracker(config.thresholds)
    tracker.track_resource_usage(usage)
    return tracker.generate_resource_report(usage)


async def _monitor(config: DevCheckConfig, container_id: str, duration: float) -> MonitoringReport:
    async with DockerEngine(config.docker) as engine:
        info = await engine.inspect(container_id)
        name = (info.get("Name") or container_id).lstrip("/")
        image = (info.get("Config") or {}).get("Image") or "unknown"
        state = ContainerState(info.get("Id", container_id), name, ContainerSpec(image=image))

        monitor = ContainerMonitor(engine, thresholds=config.thresholds, settings=config.monitoring)
        monitor.start_monitoring(state.id, state)
        try:
            await asyncio.sleep(duration)
        finally:
            await monitor.stop_monitoring(state.id)
        report = monitor.generate_monitoring_report(state.id)
        await monitor.dispose()
        return report


def _print_validation(result: ContainerValidation) -> None:
    status = "[green]running[/green]" if result.status == ValidationStatus.RUNNING else "[red]failed[/red]"
    rprint(f"[bold]Image:[/bold] {result.metadata.get('image', '-')}")
    rprint(f"[bold]Container:[/bold] {result.metadata.get('container_name', '-')}")
    rprint(f"[bold]Status:[/bold] {status}")
    rprint(f"[bold]Build time:[/bold] {result.build_time_ms:.0f}ms")
    rprint(f"[bold]Startup time:[/bold] {result.startup_time_ms:.0f}ms")
    if result.error:
        rprint(f"[bold]Error:[/bold] {result.error}")
    rprint()

    table = Table(title="Environment Checks")
    table.add_column("Check", style="cyan")
    table.add_column("Status")
    table.add_column("Message")
    table.add_column("Time", justify="right")
    for check in result.environment_checks:
        table.add_row(
            check.name,
            _STATUS_STYLES[check.status],
            check.message,
            f"{check.execution_time_ms:.0f}ms",
        )
    console.print(table)

    if result.tool_statuses:
        rprint()
        tools_table = Table(title="Tools")
        tools_table.add_column("Tool", style="cyan")
        tools_table.add_column("Available")
        tools_table.add_column("Detail")
        for tool in result.tool_statuses:
            tools_table.add_row(
                tool.name,
                "[green]yes[/green]" if tool.available else "[red]no[/red]",
                tool.detail or "",
            )
        console.print(tools_table)

    usage = result.resource_usage
    rprint()
    rprint(
        f"[bold]Resources:[/bold] memory {usage.memory.used:.1f}/{usage.memory.limit:.1f}MB, "
        f"cpu {usage.cpu.usage:.1f}%, disk {usage.disk.used:.1f}MB"
    )


@app.command("validate")
def cmd_validate(
    image: Annotated[str | None, typer.Argument(help="Image to validate")] = None,
    spec_file: Annotated[
        Path | None,
        typer.Option("--spec", "-s", help="YAML container spec (instead of IMAGE)"),
    ] = None,
    env: Annotated[
        list[str] | None,
        typer.Option("--env", "-e", help="Environment variable KEY=VALUE (repeatable)"),
    ] = None,
    command: Annotated[
        str | None,
        typer.Option("--command", "-c", help="Override the container command"),
    ] = None,
    timeout: Annotated[
        float | None,
        typer.Option("--timeout", "-t", help="Overall validation timeout (seconds)"),
    ] = None,
    json_output: Annotated[bool, typer.Option("--json", help="Print the result as JSON")] = False,
    env_file: EnvFileOption = None,
    verbose: VerboseOption = False,
) -> None:
    """Launch a container and validate that it becomes a usable dev environment."""
    if (image is None) == (spec_file is None):
        rprint("[red]Error:[/red] Provide exactly one of IMAGE or --spec")
        raise typer.Exit(1)

    config = _load(env_file, verbose)
    if timeout is not None:
        try:
            config.validation = ValidationSettings.model_validate(
                {**config.validation.model_dump(), "validation_timeout_seconds": timeout}
            )
        except ValidationError:
            rprint(f"[red]Error:[/red] --timeout must be above 0 and at most 3600 seconds, got {timeout}")
            raise typer.Exit(1) from None

    try:
        spec = ContainerSpec.from_yaml(spec_file) if spec_file else ContainerSpec(image=image)
    except DevCheckError as e:
        rprint(f"[red]Error:[/red] {e.message}")
        raise typer.Exit(1) from None

    overrides: dict = {}
    if env:
        overrides["environment"] = {**spec.environment, **_parse_env(env)}
    if command:
        overrides["command"] = shlex.split(command)
    if overrides:
        spec = spec.model_copy(update=overrides)

    if not json_output:
        rprint(f"[blue]Validating {spec.image}...[/blue]")

    try:
        result = asyncio.run(_run_validation(config, spec))
    except DevCheckError as e:
        rprint(f"[red]Error:[/red] {e.message}")
        raise typer.Exit(1) from None

    if json_output:
        typer.echo(result.model_dump_json(indent=2))
    else:
        _print_validation(result)

    if result.status != ValidationStatus.RUNNING:
        raise typer.Exit(1)


@app.command("ping")
def cmd_ping(env_file: EnvFileOption = None, verbose: VerboseOption = False) -> None:
    """Check that the Docker daemon is reachable."""
    config = _load(env_file, verbose)

    async def run() -> dict:
        async with DockerEngine(config.docker) as engine:
            return await engine.get_info()

    try:
        info = asyncio.run(run())
    except DevCheckError as e:
        rprint(f"[red]✗[/red] {e.message}")
        raise typer.Exit(1) from None

    rprint(f"[green]✓[/green] Docker daemon reachable at {config.docker.docker_host}")
    rprint(f"  Server version: {info.get('ServerVersion', 'unknown')}")
    rprint(f"  Containers: {info.get('Containers', 0)} ({info.get('ContainersRunning', 0)} running)")


@app.command("usage")
def cmd_usage(
    container_id: Annotated[str, typer.Argument(help="Container ID or name")],
    env_file: EnvFileOption = None,
    verbose: VerboseOption = False,
) -> None:
    """Sample a running container once and report usage, score and alerts."""
    config = _load(env_file, verbose)

    try:
        report = asyncio.run(_sample_usage(config, container_id))
    except DevCheckError as e:
        rprint(f"[red]Error:[/red] {e.message}")
        raise typer.Exit(1) from None

    usage = report.usage
    table = Table(title=f"Resource usage: {container_id}")
    table.add_column("Resource", style="cyan")
    table.add_column("Used")
    table.add_column("Percent", justify="right")
    table.add_row("Memory", f"{usage.memory.used:.1f}/{usage.memory.limit:.1f}MB", f"{report.percentages['memory']:.1f}%")
    table.add_row("CPU", f"{usage.cpu.cores} cores", f"{report.percentages['cpu']:.1f}%")
    table.add_row("Disk", f"{usage.disk.used:.1f}MB", f"{report.percentages['disk']:.1f}%")
    console.print(table)

    limits = "[green]yes[/green]" if report.within_limits else "[red]no[/red]"
    rprint(f"[bold]Within limits:[/bold] {limits}")
    rprint(f"[bold]Efficiency score:[/bold] {report.efficiency_score}")
    for warning in report.warnings:
        rprint(f"[yellow]![/yellow] {warning}")
    for recommendation in report.recommendations:
        rprint(f"  - {recommendation}")


@app.command("monitor")
def cmd_monitor(
    container_id: Annotated[str, typer.Argument(help="Container ID or name")],
    duration: Annotated[
        float,
        typer.Option("--duration", "-d", help="How long to monitor (seconds)"),
    ] = 30.0,
    env_file: EnvFileOption = None,
    verbose: VerboseOption = False,
) -> None:
    """Monitor a running container for a while and print a report."""
    config = _load(env_file, verbose)
    rprint(f"[blue]Monitoring {container_id} for {duration:.0f}s...[/blue]")

    try:
        report = asyncio.run(_monitor(config, container_id, duration))
    except DevCheckError as e:
        rprint(f"[red]Error:[/red] {e.message}")
        raise typer.Exit(1) from None

    table = Table(title=f"Monitoring report: {report.container_name} ({report.sample_count} samples)")
    table.add_column("Series", style="cyan")
    table.add_column("Average", justify="right")
    table.add_column("Min", justify="right")
    table.add_column("Max", justify="right")
    for label, stats in (
        ("Memory (MB)", report.memory_mb),
        ("Memory (%)", report.memory_percent),
        ("CPU (%)", report.cpu_percent),
    ):
        table.add_row(label, f"{stats.average:.1f}", f"{stats.minimum:.1f}", f"{stats.maximum:.1f}")
    console.print(table)

    crossings = report.threshold_crossings
    rprint(f"[bold]Alerts:[/bold] memory {crossings.memory}, cpu {crossings.cpu}, disk {crossings.disk}")
    for recommendation in report.recommendations:
        rprint(f"  - {recommendation}")


# Entry point for the CLI
if __name__ == "__main__":
    app()
