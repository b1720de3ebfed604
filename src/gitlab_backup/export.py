"""Project export: schedule GitLab's export job, wait for it, and download the archive."""

from __future__ import annotations

import asyncio
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path

import httpx
import structlog
from pydantic import ValidationError

from .client import GitLabClient
from .config import GitLabConfig
from .enumerator import BranchFailure, GroupTreeEnumerator
from .exceptions import (
    ExportNotFoundError,
    ExportRejectedError,
    ExportTimeoutError,
    GitLabError,
)
from .hooks import run_hook
from .models.projects import ExportStatus, Project
from .storage import S3ArchiveStore
from .transfer import ProgressCallback, archive_path, download_export

logger = structlog.get_logger()

_PROJECT_ERRORS = (GitLabError, httpx.HTTPError, OSError, ValidationError)


class ExportDriver:
    """Drives GitLab's asynchronous project export to completion.

    ``timeout`` is the default deadline in seconds for one export; ``None`` waits
    indefinitely, polling every ``poll_interval`` seconds.
    """

    def __init__(
        self,
        client: GitLabClient,
        *,
        poll_interval: float = 20.0,
        timeout: float | None = None,
    ) -> None:
        self._client = client
        self.poll_interval = poll_interval
        self.timeout = timeout

    @classmethod
    def from_config(cls, client: GitLabClient, config: GitLabConfig) -> ExportDriver:
        return cls(
            client, poll_interval=config.export_poll_interval, timeout=config.export_timeout
        )

    async def request_export(self, project_id: int) -> bool:
        accepted = await self._client.request_export(project_id)
        logger.info("export_requested", project_id=project_id, accepted=accepted)
        return accepted

    async def await_export(self, project_id: int, *, timeout: float | None = None) -> ExportStatus:
        """Poll the export status until it is ``finished``.

        Status ``none`` fails at once with :class:`ExportNotFoundError`. Any other
        status is polled again until ``timeout`` (default: the driver's) expires,
        which raises :class:`ExportTimeoutError`.
        """
        budget = self.timeout if timeout is None else timeout
        loop = asyncio.get_running_loop()
        started = loop.time()
        polls = 0
        while True:
            status = ExportStatus.model_validate(await self._client.get_export_status(project_id))
            polls += 1
            if status.finished:
                logger.info("export_finished", project=status.name, polls=polls)
                return status
            if status.export_status == "none":
                raise ExportNotFoundError(project_id)

            logger.info(
                "export_pending",
                project=status.name,
                status=status.export_status,
                polls=polls,
            )
            waited = loop.time() - started
            if budget is not None and waited + self.poll_interval >= budget:
                raise ExportTimeoutError(project_id, waited)
            await asyncio.sleep(self.poll_interval)

    async def export_project(
        self,
        project: Project,
        dest_dir: str | Path,
        on_progress: ProgressCallback | None = None,
        *,
        name: str | None = None,
    ) -> Path:
        """Export ``project`` and download it to ``<dest_dir>/<name>.tar.gz``.

        ``name`` defaults to the project name.
        """
        loop = asyncio.get_running_loop()
        started = loop.time()

        while not await self.request_export(project.id):
            waited = loop.time() - started
            if self.timeout is not None and waited + self.poll_interval >= self.timeout:
                raise ExportRejectedError(project.id)
            await asyncio.sleep(self.poll_interval)

        remaining = None
        if self.timeout is not None:
            remaining = max(0.0, self.timeout - (loop.time() - started))
        await self.await_export(project.id, timeout=remaining)

        await download_export(self._client, project, dest_dir, on_progress, name=name)
        return archive_path(dest_dir, name or project.name)


@dataclass
class ProjectBackup:
    project: Project
    archive: Path | None = None
    size: int = 0
    # s3:// URI once the archive has been uploaded; the local copy is then removed.
    stored: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class BackupReport:
    """Per-project outcome of a backup run."""

    results: list[ProjectBackup] = field(default_factory=list)
    scan_failures: list[BranchFailure] = field(default_factory=list)
    # Project names shared by more than one project; their archives carry the ID.
    name_clashes: list[str] = field(default_factory=list)

    @property
    def failed(self) -> list[ProjectBackup]:
        return [r for r in self.results if not r.ok]

    @property
    def ok(self) -> bool:
        return not self.failed and not self.scan_failures


def archive_names(projects: list[Project]) -> tuple[dict[int, str], list[str]]:
    """Map project IDs to archive names that are unique within one backup run.

    A name shared by several projects becomes ``<name>-<id>`` for each of them.
    Returns the mapping and the clashing names.
    """
    counts = Counter(p.name for p in projects)
    clashes = sorted(name for name, n in counts.items() if n > 1)
    names = {p.id: f"{p.name}-{p.id}" if counts[p.name] > 1 else p.name for p in projects}
    return names, clashes


class ProjectBackupRunner:
    """Exports one project at a time into ``dest_dir``, with hooks and optional upload."""

    def __init__(
        self,
        driver: ExportDriver,
        dest_dir: str | Path,
        *,
        pre_backup: str = "",
        post_backup: str = "",
        store: S3ArchiveStore | None = None,
        concurrency: int = 1,
    ) -> None:
        self._driver = driver
        self._dest_dir = Path(dest_dir)
        self._pre_backup = pre_backup
        self._post_backup = post_backup
        self._store = store
        self._limiter = asyncio.Semaphore(concurrency)

    @classmethod
    def from_config(
        cls,
        client: GitLabClient,
        config: GitLabConfig,
        dest_dir: str | Path,
        store: S3ArchiveStore | None = None,
    ) -> ProjectBackupRunner:
        return cls(
            ExportDriver.from_config(client, config),
            dest_dir,
            pre_backup=config.pre_backup,
            post_backup=config.post_backup,
            store=store,
            concurrency=config.concurrency,
        )

    async def backup(
        self,
        project: Project,
        *,
        name: str | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> ProjectBackup:
        async with self._limiter:
            logger.info("project_backup_started", project=project.name, project_id=project.id)
            try:
                result = await self._backup(project, name or project.name, on_progress)
            except _PROJECT_ERRORS as e:
                logger.error("project_backup_failed", project=project.name, error=str(e))
                return ProjectBackup(project=project, error=str(e))
        logger.info(
            "project_backup_finished",
            project=project.name,
            archive=str(result.archive),
            stored=result.stored,
        )
        return result

    async def _backup(
        self, project: Project, name: str, on_progress: ProgressCallback | None
    ) -> ProjectBackup:
        if self._pre_backup:
            await run_hook(self._pre_backup)
        path = await self._driver.export_project(project, self._dest_dir, on_progress, name=name)
        result = ProjectBackup(project=project, archive=path, size=path.stat().st_size)
        if self._post_backup:
            await run_hook(self._post_backup, path)
        if self._store is not None:
            result.stored = await self._store.upload(path)
            path.unlink()
        return result


async def backup_project(
    client: GitLabClient,
    config: GitLabConfig,
    project_id: int | str,
    dest_dir: str | Path,
    on_progress: ProgressCallback | None = None,
    *,
    store: S3ArchiveStore | None = None,
) -> BackupReport:
    """Back up a single project into ``dest_dir``."""
    project = Project.model_validate(await client.get_project(project_id))
    runner = ProjectBackupRunner.from_config(client, config, dest_dir, store)
    return BackupReport(results=[await runner.backup(project, on_progress=on_progress)])


async def backup_group(
    client: GitLabClient,
    config: GitLabConfig,
    group_id: int,
    dest_dir: str | Path,
    *,
    include_archived: bool = False,
    store: S3ArchiveStore | None = None,
) -> BackupReport:
    """Back up every project of a group tree; one project's failure never stops the others."""
    scan = await GroupTreeEnumerator(client, config.concurrency).collect(
        group_id, include_archived=include_archived
    )
    names, clashes = archive_names(scan.projects)
    for name in clashes:
        logger.warning("archive_name_clash", name=name, group_id=group_id)

    runner = ProjectBackupRunner.from_config(client, config, dest_dir, store)
    results = await asyncio.gather(
        *(runner.backup(p, name=names[p.id]) for p in scan.projects)
    )
    report = BackupReport(
        results=list(results), scan_failures=scan.failures, name_clashes=clashes
    )
    logger.info(
        "group_backup_finished",
        group_id=group_id,
        projects=len(report.results),
        failed=len(report.failed),
        scan_failures=len(report.scan_failures),
    )
    return report
