from __future__ import annotations

import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .config import DEFAULT_CONFIG_FILE, ProjectSpec, Settings, load_config, save_config
from .exceptions import ConfigError, RecordNotFoundError
from .logging_config import configure_logging
from .orchestrator import BuildOrchestrator
from .persistence import RunLedger
from .runner import ProcessRunner
from .schemas import WorkflowResult
from .toolchain import DEFAULT_TOOLS, probe_tool_versions

console = Console()

config_option = click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    envvar="BUILDSERVER_CONFIG",
    default=None,
    help=f"JSON configuration file (defaults to ./{DEFAULT_CONFIG_FILE} when present).",
)


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(package_name="buildserver", message="buildserver %(version)s")
def main() -> None:
    """Build front-end projects in parallel and publish their artifacts."""


@main.command()
@config_option
@click.option("--max-workers", type=click.IntRange(min=0), default=None, help="Concurrent builds (0 = one per project).")
@click.option("--verbose", is_flag=True, default=False, help="Increase logging verbosity.")
def run(config_path: Optional[Path], max_workers: Optional[int], verbose: bool) -> None:
    """Run the link -> build -> copy workflow for every publishable project."""

    configure_logging(verbose=verbose)
    settings = _load_settings(config_path)
    if max_workers is not None:
        settings.max_workers = max_workers

    orchestrator = BuildOrchestrator.from_settings(settings)
    result = orchestrator.run_workflow()
    _print_summary(result)
    if not result.success:
        sys.exit(1)


@main.command()
@config_option
@click.option("--limit", type=click.IntRange(min=1), default=50, show_default=True)
def history(config_path: Optional[Path], limit: int) -> None:
    """List recent runs, newest first."""

    ledger = _open_ledger(config_path)
    table = Table(title="Build History")
    for column in ("ID", "Started", "Status", "Duration", "Projects", "OK", "Failed"):
        table.add_column(column)
    for run_summary in ledger.list_recent(limit):
        table.add_row(
            str(run_summary.id),
            f"{run_summary.started_at:%Y-%m-%d %H:%M:%S}",
            run_summary.status.value,
            _format_duration(run_summary.duration_ms) if not run_summary.in_progress else "-",
            str(run_summary.total_projects),
            str(run_summary.successful_projects),
            str(run_summary.failed_projects),
        )
    console.print(table)


@main.command()
@config_option
@click.argument("run_id", type=int)
def show(config_path: Optional[Path], run_id: int) -> None:
    """Show the per-project records of one run."""

    ledger = _open_ledger(config_path)
    try:
        header = ledger.get_run(run_id)
    except RecordNotFoundError as exc:
        raise click.ClickException(str(exc)) from exc

    console.print(f"Run {header.id}: {header.status.value} ({header.successful_projects}/{header.total_projects} succeeded)")
    if header.error_log_path:
        console.print(f"Error log: {header.error_log_path}")

    table = Table(title=f"Run {run_id} Projects", show_lines=True)
    for column in ("Record", "Project", "Exit", "Node", "Command", "Error"):
        table.add_column(column)
    for record in ledger.list_project_records(run_id):
        table.add_row(
            str(record.id),
            record.project_name,
            str(record.exit_code),
            record.node_version or "",
            escape(record.command),
            escape((record.error_message or "").strip()[:200]),
        )
    console.print(table)


@main.command()
@config_option
@click.argument("record_id", type=int)
@click.option("--project", "is_project", is_flag=True, default=False, help="RECORD_ID names a project record.")
def log(config_path: Optional[Path], record_id: int, is_project: bool) -> None:
    """Print the stored log of a run (or of a project record with --project)."""

    ledger = _open_ledger(config_path)
    try:
        content = ledger.get_project_log(record_id) if is_project else ledger.get_run_log(record_id)
    except RecordNotFoundError as exc:
        raise click.ClickException(str(exc)) from exc
    if content is None:
        click.echo("No log stored for this record.")
        return
    click.echo(content)


@main.command()
@config_option
def stats(config_path: Optional[Path]) -> None:
    """Show aggregate build statistics."""

    statistics = _open_ledger(config_path).get_statistics()
    console.print(f"Total runs: {statistics.total_runs}")
    console.print(f"Succeeded: {statistics.successful_runs}")
    console.print(f"Failed: {statistics.failed_runs}")
    if statistics.running_runs:
        console.print(f"Running: {statistics.running_runs}")
    console.print(f"Average duration: {_format_duration(int(statistics.average_duration_ms))}")


@main.group()
def projects() -> None:
    """Inspect and edit configured projects."""


@projects.command("list")
@config_option
def list_projects(config_path: Optional[Path]) -> None:
    settings = _load_settings(config_path)
    table = Table(title="Projects")
    for column in ("Name", "Path", "Group", "Command", "Dist", "Publish", "Node"):
        table.add_column(column)
    for project in settings.projects:
        table.add_row(
            project.name,
            project.path,
            project.group or "",
            escape(project.build_cmd),
            project.dist_dir,
            "yes" if project.is_publish else "no",
            project.node_version or "",
        )
    console.print(table)


@projects.command("add")
@config_option
@click.option("--name", required=True)
@click.option("--path", "project_path", required=True, help="Source directory relative to the root.")
@click.option("--group", default=None)
@click.option("--node-modules-dir", default=None, help="Shared node_modules directory relative to the root.")
@click.option("--build-cmd", default=None)
@click.option("--dist-dir", default=None)
@click.option("--node-version", default=None)
@click.option("--no-publish", is_flag=True, default=False)
def add_project(
    config_path: Optional[Path],
    name: str,
    project_path: str,
    group: Optional[str],
    node_modules_dir: Optional[str],
    build_cmd: Optional[str],
    dist_dir: Optional[str],
    node_version: Optional[str],
    no_publish: bool,
) -> None:
    """Append a project to the configuration file."""

    target = config_path or DEFAULT_CONFIG_FILE
    settings = _load_settings(target) if target.exists() else Settings()
    try:
        project = ProjectSpec(
            name=name,
            path=project_path,
            group=group,
            node_modules_dir=node_modules_dir,
            build_cmd=build_cmd,
            dist_dir=dist_dir,
            node_version=node_version,
            is_publish=not no_publish,
        )
        updated = Settings(**{**settings.model_dump(), "projects": [*settings.projects, project]})
    except ValueError as exc:
        raise click.ClickException(str(exc)) from exc
    save_config(updated, target)
    click.echo(f"Project added: {name}")


@main.command()
@click.argument("tools", nargs=-1)
def versions(tools: tuple) -> None:
    """Report the installed versions of node, npm, yarn and pnpm."""

    found = probe_tool_versions(ProcessRunner(), tools or DEFAULT_TOOLS)
    for tool, version_text in found.items():
        click.echo(f"{tool}: {version_text}")


def _load_settings(config_path: Optional[Path]) -> Settings:
    path = config_path
    if path is None and DEFAULT_CONFIG_FILE.exists():
        path = DEFAULT_CONFIG_FILE
    try:
        return load_config(path)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc


def _open_ledger(config_path: Optional[Path]) -> RunLedger:
    settings = _load_settings(config_path)
    return RunLedger(settings.resolve_database_path())


def _format_duration(duration_ms: int) -> str:
    if duration_ms < 1000:
        return f"{duration_ms}ms"
    return f"{duration_ms / 1000:.1f}s"


def _print_summary(result: WorkflowResult) -> None:
    table = Table(title="Build Summary", show_lines=True)
    table.add_column("Project")
    table.add_column("Exit")
    table.add_column("Command")
    for project_result in result.build_results:
        style = "green" if project_result.success else "red"
        table.add_row(project_result.name, f"[{style}]{project_result.exit_code}[/{style}]", escape(project_result.command))
    console.print(table)
    if result.run_id is not None:
        console.print(f"Run ID: {result.run_id}")
    console.print(f"Status: {result.status.value}")
    if result.error:
        console.print(f"Error: {result.error}", markup=False)
    if result.error_log_path:
        console.print(f"Error log: {result.error_log_path}", markup=False)


if __name__ == "__main__":  # pragma: no cover
    main()
