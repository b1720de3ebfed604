"""Emptiness checks for restore targets."""

from __future__ import annotations

import asyncio

import structlog

from ..client import GitLabClient
from .types import EmptinessChecks

logger = structlog.get_logger()


class EmptinessValidator:
    """Counts the commits, issues and labels a project already has.

    The three queries are independent and read-only.
    """

    def __init__(self, client: GitLabClient) -> None:
        self._client = client

    async def check(self, project_id: int | str) -> EmptinessChecks:
        (has_commits, commits), (has_issues, issues), (has_labels, labels) = await asyncio.gather(
            self._client.count_commits(project_id),
            self._client.count_issues(project_id),
            self._client.count_labels(project_id),
        )
        checks = EmptinessChecks(
            has_commits=has_commits,
            has_issues=has_issues,
            has_labels=has_labels,
            commit_count=commits,
            issue_count=issues,
            label_count=labels,
        )
        logger.info(
            "emptiness_checked",
            project_id=project_id,
            commits=commits,
            issues=issues,
            labels=labels,
            empty=checks.is_empty(),
        )
        return checks
