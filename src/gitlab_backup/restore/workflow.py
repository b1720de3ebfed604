"""Phase-sequenced restore of one project archive into GitLab.

A run visits validation, download, extraction, import, cleanup and complete in
that order. The first fatal error halts the run; the caller always receives a
:class:`RestoreResult` holding every error and warning met along the way.
Temporary files are released even when a run halts early.
"""

from __future__ import annotations

import asyncio
import shutil
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path

import structlog

from ..archive import ArchiveContents, extract_archive
from ..client import GitLabClient
from ..config import RestoreConfig
from ..exceptions import GitLabNotFoundError
from ..models.projects import Project
from ..storage import store_for_source
from ..transfer import ArchiveStore
from .importer import GitLabImporter, Importer, MetadataOutcome
from .progress import LoggingProgressReporter, ProgressReporter
from .types import EmptinessChecks, Phase, Progress, RestoreResult
from .validator import EmptinessValidator

logger = structlog.get_logger()


@dataclass
class _Run:
    result: RestoreResult
    progress: Progress
    started: float
    sealed: bool = False
    target: str = ""
    archive: Path | None = None
    work_dir: Path | None = None
    contents: ArchiveContents | None = None


class RestoreWorkflow:
    """Restores ``config.source`` into ``config.full_project_path``.

    The archive store, importer, validator and reporter default to the GitLab
    and HTTP implementations and can be replaced for other backends or tests.
    """

    def __init__(
        self,
        client: GitLabClient,
        config: RestoreConfig,
        *,
        store: ArchiveStore | None = None,
        importer: Importer | None = None,
        validator: EmptinessValidator | None = None,
        reporter: ProgressReporter | None = None,
    ) -> None:
        self._client = client
        self._config = config
        self._store = store or store_for_source(config.source, client.config)
        self._importer = importer or GitLabImporter(
            client,
            poll_interval=config.import_poll_interval,
            timeout=config.import_timeout,
        )
        self._validator = validator or EmptinessValidator(client)
        self._reporter = reporter or LoggingProgressReporter()
        self._run: _Run | None = None

    @property
    def progress(self) -> Progress | None:
        """Progress of the run in flight, if any."""
        return self._run.progress if self._run else None

    async def restore(self) -> RestoreResult:
        result = RestoreResult()
        run = _Run(
            result=result, progress=Progress(metrics=result.metrics), started=time.monotonic()
        )
        self._run = run
        logger.info(
            "restore_started", source=self._config.source, target=self._config.full_project_path
        )
        try:
            if (
                await self._validate(run)
                and await self._download(run)
                and await self._extract(run)
                and await self._import(run)
            ):
                await self._cleanup(run)
                self._complete(run)
        finally:
            self._release(run)
            if not run.sealed:
                result.metrics.duration_seconds = round(time.monotonic() - run.started, 3)
            self._run = None

        logger.info(
            "restore_finished",
            success=result.success,
            project_id=result.project_id,
            errors=len(result.errors),
            warnings=len(result.warnings),
            duration=result.metrics.duration_seconds,
        )
        return result

    # ── Phases ────────────────────────────────────────────────────

    def _begin(self, run: _Run, phase: Phase) -> None:
        run.progress.begin(phase)
        self._reporter.start_phase(phase)

    def _done(self, run: _Run, phase: Phase) -> bool:
        run.progress.complete(phase)
        self._reporter.complete_phase(phase)
        return True

    def _fatal(self, run: _Run, phase: Phase, component: str, message: str) -> bool:
        run.result.add_error(phase, component, message)
        self._reporter.fail_phase(phase, message)
        return False

    async def _resolve_target(self) -> str:
        """Full path of the target project.

        Without a namespace GitLab imports into the token owner's personal
        namespace, so a bare path is never looked up on its own.
        """
        if self._config.target_namespace:
            return self._config.full_project_path
        user = await self._client.get_current_user()
        return f"{user['username']}/{self._config.target_path}"

    def _work_dir(self, run: _Run) -> Path:
        if run.work_dir is None:
            run.work_dir = Path(
                tempfile.mkdtemp(prefix="gitlab-restore-", dir=self._config.tmp_dir)
            )
        return run.work_dir

    async def _validate(self, run: _Run) -> bool:
        phase = Phase.VALIDATION
        self._begin(run, phase)
        try:
            self._config.validate()
        except ValueError as e:
            return self._fatal(run, phase, "config", str(e))

        if self._config.overwrite:
            logger.info("emptiness_check_skipped", reason="overwrite flag set")
            return self._done(run, phase)

        target = self._config.full_project_path
        try:
            run.target = target = await self._resolve_target()
            project = Project.model_validate(await self._client.get_project_by_path(target))
        except GitLabNotFoundError:
            logger.info("restore_target_absent", target=target)
            return self._done(run, phase)
        except Exception as e:
            return self._fatal(run, phase, "validator", f"looking up {target}: {e}")

        try:
            checks = await self._validator.check(project.id)
        except Exception as e:
            return self._fatal(run, phase, "validator", str(e))
        if not checks.is_empty():
            return self._fatal(run, phase, "validator", _not_empty_message(checks))
        return self._done(run, phase)

    async def _download(self, run: _Run) -> bool:
        phase = Phase.DOWNLOAD
        if not self._config.is_remote_source:
            run.archive = Path(self._config.source)
            self._reporter.skip_phase(phase, "archive is local")
            return True

        self._begin(run, phase)
        try:
            download_dir = self._work_dir(run) / "download"
            download_dir.mkdir()
            run.archive, written = await self._store.fetch(self._config.source, download_dir)
        except Exception as e:
            return self._fatal(run, phase, "storage", str(e))
        run.result.metrics.bytes_downloaded += written
        return self._done(run, phase)

    async def _extract(self, run: _Run) -> bool:
        phase = Phase.EXTRACTION
        self._begin(run, phase)
        try:
            dest = self._work_dir(run) / "extracted"
            dest.mkdir()
            run.contents = await asyncio.to_thread(extract_archive, run.archive, dest)
        except Exception as e:
            return self._fatal(run, phase, "archive", str(e))
        run.result.metrics.bytes_extracted += run.contents.bytes_extracted
        return self._done(run, phase)

    async def _import(self, run: _Run) -> bool:
        phase = Phase.IMPORT
        self._begin(run, phase)
        contents = run.contents
        try:
            status = await self._importer.import_project(
                contents.project_export_path,
                self._config.target_namespace,
                self._config.target_path,
            )
        except Exception as e:
            return self._fatal(run, phase, "import", str(e))

        run.result.project_id = status.id
        run.result.project_url = (
            status.web_url
            or f"{self._client.config.url}/{run.target or self._config.full_project_path}"
        )

        if self._config.restore_labels and contents.labels_path:
            try:
                outcome = await self._importer.restore_labels(status.id, contents.labels_path)
            except Exception as e:
                return self._fatal(run, phase, "labels", str(e))
            self._record_metadata(run, outcome)
        if self._config.restore_issues and contents.issues_path:
            try:
                outcome = await self._importer.restore_issues(status.id, contents.issues_path)
            except Exception as e:
                return self._fatal(run, phase, "issues", str(e))
            self._record_metadata(run, outcome)

        if run.result.has_fatal_errors():
            self._reporter.fail_phase(phase, "metadata restore failed")
            return False
        return self._done(run, phase)

    def _record_metadata(self, run: _Run, outcome: MetadataOutcome) -> None:
        for failure in outcome.failures:
            run.result.add_error(
                Phase.IMPORT,
                failure.component,
                failure.message,
                fatal=failure.component in self._config.fatal_components,
            )

    async def _cleanup(self, run: _Run) -> None:
        self._begin(run, Phase.CLEANUP)
        self._release(run)
        self._done(run, Phase.CLEANUP)

    def _complete(self, run: _Run) -> None:
        self._begin(run, Phase.COMPLETE)
        run.result.metrics.duration_seconds = round(time.monotonic() - run.started, 3)
        run.sealed = True
        self._done(run, Phase.COMPLETE)

    def _release(self, run: _Run) -> None:
        """Remove the run's working directory; failures become warnings."""
        if run.work_dir is None:
            return
        work_dir, run.work_dir = run.work_dir, None
        try:
            shutil.rmtree(work_dir)
        except OSError as e:
            run.result.add_warning(f"failed to clean up temp dir {work_dir}: {e}")
            logger.warning("cleanup_failed", path=str(work_dir), error=str(e))


def _not_empty_message(checks: EmptinessChecks) -> str:
    return (
        "target project is not empty - use overwrite to skip validation "
        f"(commits: {checks.commit_count}, issues: {checks.issue_count}, "
        f"labels: {checks.label_count})"
    )
