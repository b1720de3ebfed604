"""GitLab project backup and restore."""

import asyncio
import os

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table

from .client import GitLabClient
from .config import GitLabConfig, RestoreConfig
from .export import BackupReport, backup_group, backup_project
from .logs import configure_logging
from .restore.types import RestoreResult
from .restore.workflow import RestoreWorkflow
from .storage import S3ArchiveStore, store_for_source
from .transfer import format_bytes

console = Console()


def _load_config() -> GitLabConfig:
    config = GitLabConfig.from_env()
    try:
        config.validate()
    except ValueError as e:
        raise click.UsageError(str(e)) from e
    return config


@click.group()
@click.option("--gitlab-url", envvar="GITLAB_URL", help="GitLab instance URL")
@click.option("--gitlab-token", envvar="GITLAB_TOKEN", help="GitLab personal access token")
@click.option("--log-level", default=None, help="Log level (default: LOG_LEVEL or INFO)")
@click.option("--json-logs", is_flag=True, default=None, help="Emit logs as JSON lines")
def main(
    gitlab_url: str | None,
    gitlab_token: str | None,
    log_level: str | None,
    json_logs: bool | None,
) -> None:
    """Back up GitLab projects and restore them from archives."""
    load_dotenv()

    if gitlab_url:
        os.environ["GITLAB_URL"] = gitlab_url
    if gitlab_token:
        os.environ["GITLAB_TOKEN"] = gitlab_token
    configure_logging(log_level, json=json_logs or None)


@main.command()
@click.option("--group-id", type=int, default=None, help="Back up every project under this group")
@click.option("--project-id", default=None, help="Back up a single project (ID or path)")
@click.option("--output-dir", "-o", default="./backups", help="Directory for the archives")
@click.option("--include-archived", is_flag=True, help="Also back up archived projects")
def backup(
    group_id: int | None, project_id: str | None, output_dir: str, include_archived: bool
) -> None:
    """Export projects and download their archives.

    When S3BUCKETNAME is set, each archive is uploaded there and the local copy removed.
    """
    if (group_id is None) == (project_id is None):
        raise click.UsageError("Pass exactly one of --group-id or --project-id")
    config = _load_config()
    os.makedirs(output_dir, exist_ok=True)
    store = S3ArchiveStore(config.s3) if config.s3.enabled else None

    with console.status("Exporting projects...") as status:

        def show(written: int) -> None:
            status.update(f"Downloading... {format_bytes(written)} complete")

        async def run() -> BackupReport:
            async with GitLabClient(config) as client:
                if group_id is not None:
                    return await backup_group(
                        client,
                        config,
                        group_id,
                        output_dir,
                        include_archived=include_archived,
                        store=store,
                    )
                return await backup_project(
                    client, config, project_id, output_dir, show, store=store
                )

        report = asyncio.run(run())

    table = Table(title="Backup Results")
    table.add_column("Project", style="cyan")
    table.add_column("Archive")
    table.add_column("Size", justify="right", style="green")
    for item in report.results:
        if item.ok:
            location = item.stored or str(item.archive)
            table.add_row(item.project.path_with_namespace, location, format_bytes(item.size))
        else:
            table.add_row(item.project.path_with_namespace, f"[red]{item.error}[/red]", "-")
    console.print(table)

    for name in report.name_clashes:
        console.print(
            f"[yellow]Several projects are named {name!r}; their archives carry the ID[/yellow]"
        )

    for failure in report.scan_failures:
        console.print(
            f"[yellow]Group {failure.group_id}: could not list {failure.operation}:"
            f" {failure.message}[/yellow]"
        )
    if not report.ok:
        console.print(f"[red]{len(report.failed)} project(s) failed[/red]")
        raise SystemExit(1)


@main.command("restore")
@click.option("--source", "-s", required=True, help="Archive path, http(s) URL or s3://bucket/key")
@click.option("--namespace", "-n", default="", help="Target group full path")
@click.option("--path", "-p", "target_path", required=True, help="Target project path")
@click.option("--overwrite", is_flag=True, help="Skip the target emptiness check")
@click.option("--skip-labels", is_flag=True, help="Do not restore labels.json")
@click.option("--skip-issues", is_flag=True, help="Do not restore issues.json")
def restore_cmd(
    source: str,
    namespace: str,
    target_path: str,
    overwrite: bool,
    skip_labels: bool,
    skip_issues: bool,
) -> None:
    """Restore an archive into a new project."""
    config = _load_config()
    restore_config = RestoreConfig.from_env()
    restore_config.source = source
    restore_config.target_namespace = namespace.strip("/")
    restore_config.target_path = target_path
    restore_config.overwrite = overwrite
    restore_config.restore_labels = restore_config.restore_labels and not skip_labels
    restore_config.restore_issues = restore_config.restore_issues and not skip_issues

    with console.status(f"Restoring {restore_config.full_project_path}...") as status:

        def show(written: int) -> None:
            status.update(f"Downloading... {format_bytes(written)} complete")

        async def run() -> RestoreResult:
            store = store_for_source(source, config, on_progress=show)
            async with GitLabClient(config) as client:
                return await RestoreWorkflow(client, restore_config, store=store).restore()

        result = asyncio.run(run())

    for error in result.errors:
        color = "red" if error.fatal else "yellow"
        console.print(
            f"[{color}]{error.phase.value}/{error.component}: {error.message}[/{color}]"
        )
    for warning in result.warnings:
        console.print(f"[yellow]warning: {warning}[/yellow]")

    if not result.success:
        console.print("[red]Restore failed[/red]")
        raise SystemExit(1)
    console.print(
        f"[green]Restored project {result.project_id}: {result.project_url}"
        f" ({result.metrics.duration_seconds:.1f}s)[/green]"
    )


@main.command()
@click.option(
    "--transport",
    type=click.Choice(["stdio", "sse", "streamable-http"]),
    default="stdio",
    help="MCP transport type",
)
@click.option("--port", default=8000, help="Port for HTTP transports")
@click.option("--host", default="127.0.0.1", help="Host for HTTP transports")
def serve(transport: str, port: int, host: str) -> None:
    """Run the backup tools as an MCP server."""
    from .servers.gitlab import mcp

    run_kwargs: dict = {"transport": transport}
    if transport != "stdio":
        run_kwargs["host"] = host
        run_kwargs["port"] = port

    asyncio.run(mcp.run_async(show_banner=False, **run_kwargs))


if __name__ == "__main__":
    main()
