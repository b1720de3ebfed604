"""Project import through the GitLab Import/Export API, plus side-car metadata restore."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

import httpx
import structlog
from pydantic import TypeAdapter, ValidationError

from ..client import GitLabClient
from ..exceptions import GitLabApiError, GitLabError, ProjectImportError
from ..models.issues import Issue, Label
from ..models.projects import ImportStatus

logger = structlog.get_logger()

_ITEM_ERRORS = (GitLabError, httpx.HTTPError)

_labels_adapter = TypeAdapter(list[Label])
_issues_adapter = TypeAdapter(list[Issue])


@dataclass
class ItemFailure:
    component: str
    message: str


@dataclass
class MetadataOutcome:
    """Counts for one metadata component. Failures never abort the component."""

    created: int = 0
    skipped: int = 0
    failures: list[ItemFailure] = field(default_factory=list)


class Importer(Protocol):
    async def import_project(self, archive: Path, namespace: str, path: str) -> ImportStatus: ...

    async def restore_labels(self, project_id: int, labels_path: Path) -> MetadataOutcome: ...

    async def restore_issues(self, project_id: int, issues_path: Path) -> MetadataOutcome: ...


class GitLabImporter:
    def __init__(
        self,
        client: GitLabClient,
        *,
        poll_interval: float = 5.0,
        timeout: float = 600.0,
    ) -> None:
        self._client = client
        self.poll_interval = poll_interval
        self.timeout = timeout

    async def import_project(self, archive: Path, namespace: str, path: str) -> ImportStatus:
        """Upload ``archive`` and wait until GitLab reports the import ``finished``."""
        logger.info("import_started", archive=str(archive), namespace=namespace, path=path)
        with archive.open("rb") as fh:
            data = await self._client.import_project(fh, archive.name, namespace, path)
        status = ImportStatus.model_validate(data)
        return await self.wait_for_import(status.id)

    async def wait_for_import(self, project_id: int) -> ImportStatus:
        loop = asyncio.get_running_loop()
        started = loop.time()
        while True:
            status = ImportStatus.model_validate(await self._client.get_import_status(project_id))
            if status.import_status == "finished":
                logger.info("import_finished", project_id=project_id, project=status.name)
                return status
            if status.import_status == "failed":
                raise ProjectImportError("import failed", status.import_error or "")
            if status.import_status not in ("none", "scheduled", "started"):
                msg = f"unexpected import status: {status.import_status}"
                raise ProjectImportError(msg)

            waited = loop.time() - started
            if waited + self.poll_interval >= self.timeout:
                msg = f"import of project {project_id} not finished after {waited:.0f}s"
                raise ProjectImportError(msg)
            logger.debug("import_pending", project_id=project_id, status=status.import_status)
            await asyncio.sleep(self.poll_interval)

    async def restore_labels(self, project_id: int, labels_path: Path) -> MetadataOutcome:
        outcome = MetadataOutcome()
        try:
            labels = _labels_adapter.validate_json(labels_path.read_bytes())
        except (OSError, ValidationError) as e:
            outcome.failures.append(ItemFailure("labels", f"cannot read {labels_path.name}: {e}"))
            return outcome

        for label in labels:
            params: dict[str, Any] = {"name": label.name, "color": label.color}
            if label.description:
                params["description"] = label.description
            if label.priority is not None:
                params["priority"] = label.priority
            try:
                await self._client.create_label(project_id, params)
            except GitLabApiError as e:
                if e.status_code == 409:
                    outcome.skipped += 1
                    logger.debug("label_exists", label=label.name)
                    continue
                self._fail(outcome, "labels", f"label {label.name!r}: {e}")
                continue
            except httpx.HTTPError as e:
                self._fail(outcome, "labels", f"label {label.name!r}: {e}")
                continue
            outcome.created += 1

        logger.info(
            "labels_restored",
            project_id=project_id,
            created=outcome.created,
            skipped=outcome.skipped,
            failed=len(outcome.failures),
        )
        return outcome

    async def restore_issues(self, project_id: int, issues_path: Path) -> MetadataOutcome:
        outcome = MetadataOutcome()
        try:
            issues = _issues_adapter.validate_json(issues_path.read_bytes())
        except (OSError, ValidationError) as e:
            outcome.failures.append(ItemFailure("issues", f"cannot read {issues_path.name}: {e}"))
            return outcome

        for issue in issues:
            try:
                created = await self._client.create_issue(project_id, _issue_params(issue))
            except _ITEM_ERRORS as e:
                self._fail(outcome, "issues", f"issue {issue.title!r}: {e}")
                continue
            iid = created.get("iid") if isinstance(created, dict) else None
            if iid is None:
                self._fail(outcome, "issues", f"issue {issue.title!r}: response has no iid")
                continue
            outcome.created += 1

            if issue.state == "closed":
                try:
                    await self._client.update_issue(project_id, iid, {"state_event": "close"})
                except _ITEM_ERRORS as e:
                    self._fail(outcome, "issues", f"closing issue #{iid}: {e}")

            for note in issue.notes:
                try:
                    await self._client.add_issue_comment(
                        project_id, iid, note.body, created_at=note.created_at
                    )
                except _ITEM_ERRORS as e:
                    self._fail(outcome, "notes", f"note on issue #{iid}: {e}")

        logger.info(
            "issues_restored",
            project_id=project_id,
            created=outcome.created,
            failed=len(outcome.failures),
        )
        return outcome

    @staticmethod
    def _fail(outcome: MetadataOutcome, component: str, message: str) -> None:
        logger.warning("metadata_item_failed", component=component, error=message)
        outcome.failures.append(ItemFailure(component, message))


def _issue_params(issue: Issue) -> dict[str, Any]:
    params: dict[str, Any] = {"title": issue.title}
    if issue.description:
        params["description"] = issue.description
    if issue.labels:
        params["labels"] = ",".join(issue.labels)
    if issue.created_at:
        params["created_at"] = issue.created_at
    if issue.assignees:
        params["assignee_ids"] = [a.id for a in issue.assignees]
    if issue.weight is not None:
        params["weight"] = issue.weight
    if issue.confidential:
        params["confidential"] = True
    return params
