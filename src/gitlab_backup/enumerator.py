"""Recursive discovery of every project owned by a group and its subgroups."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

import httpx
import structlog
from pydantic import ValidationError

from .client import GitLabClient
from .exceptions import GitLabError
from .models.projects import Group, Project

logger = structlog.get_logger()

# Failures that abort a single branch of the walk instead of the whole scan.
_BRANCH_ERRORS = (GitLabError, httpx.HTTPError, ValidationError)


@dataclass
class BranchFailure:
    """A group whose subgroups or projects could not be listed."""

    group_id: int
    operation: str
    message: str


@dataclass
class ProjectScan:
    """Outcome of walking one group tree."""

    root_group_id: int
    projects: list[Project] = field(default_factory=list)
    failures: list[BranchFailure] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.failures


@dataclass
class _Walk:
    include_archived: bool
    limiter: asyncio.Semaphore
    visited: set[int] = field(default_factory=set)
    failures: list[BranchFailure] = field(default_factory=list)

    def fail(self, group_id: int, operation: str, error: Exception) -> None:
        self.failures.append(BranchFailure(group_id, operation, str(error)))
        logger.error(
            "group_branch_failed", group_id=group_id, operation=operation, error=str(error)
        )


class GroupTreeEnumerator:
    """Depth-first walk of a group tree collecting the projects of every group.

    Subgroup subtrees come first, in listing order, followed by the group's own
    projects. Sibling subtrees are listed concurrently; at most ``concurrency``
    API calls are in flight at once. Each group is visited once, so a cyclic
    subgroup graph still terminates.
    """

    def __init__(self, client: GitLabClient, concurrency: int = 4) -> None:
        self._client = client
        self._concurrency = concurrency

    async def collect(self, root_group_id: int, *, include_archived: bool = False) -> ProjectScan:
        walk = _Walk(
            include_archived=include_archived,
            limiter=asyncio.Semaphore(self._concurrency),
        )
        found = await self._walk(root_group_id, walk)

        scan = ProjectScan(root_group_id=root_group_id, failures=walk.failures)
        seen: set[int] = set()
        for project in found:
            if project.id not in seen:
                seen.add(project.id)
                scan.projects.append(project)

        logger.info(
            "group_scan_finished",
            group_id=root_group_id,
            groups=len(walk.visited),
            projects=len(scan.projects),
            failures=len(scan.failures),
        )
        return scan

    async def _walk(self, group_id: int, walk: _Walk) -> list[Project]:
        if group_id in walk.visited:
            logger.warning("group_already_visited", group_id=group_id)
            return []
        walk.visited.add(group_id)

        try:
            async with walk.limiter:
                raw_groups = await self._client.list_subgroups(group_id)
            subgroups = [Group.model_validate(g) for g in raw_groups]
        except _BRANCH_ERRORS as e:
            walk.fail(group_id, "subgroups", e)
            return []

        for subgroup in subgroups:
            logger.info("subgroup_found", group_id=group_id, subgroup_id=subgroup.id)
        branches = await asyncio.gather(*(self._walk(sub.id, walk) for sub in subgroups))
        projects = [project for branch in branches for project in branch]

        try:
            async with walk.limiter:
                raw_projects = await self._client.list_group_projects(group_id)
            own = [Project.model_validate(p) for p in raw_projects]
        except _BRANCH_ERRORS as e:
            walk.fail(group_id, "projects", e)
            return projects

        for project in own:
            if project.archived and not walk.include_archived:
                logger.info("project_archived_skipped", project=project.name, group_id=group_id)
                continue
            logger.debug("project_found", project=project.name, group_id=group_id)
            projects.append(project)
        return projects
