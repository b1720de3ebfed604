"""GitLab backup MCP server: tool registrations for backup and restore."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Annotated, Any

from fastmcp import Context, FastMCP
from pydantic import Field

from ..client import GitLabClient
from ..config import GitLabConfig, RestoreConfig
from ..enumerator import GroupTreeEnumerator
from ..export import ExportDriver
from ..models.projects import Project
from ..restore.validator import EmptinessValidator
from ..restore.workflow import RestoreWorkflow


@asynccontextmanager
async def lifespan(server: FastMCP) -> AsyncIterator[dict[str, Any]]:
    config = GitLabConfig.from_env()
    config.validate()
    client = GitLabClient(config)
    try:
        yield {"client": client, "config": config}
    finally:
        await client.close()


mcp = FastMCP(
    name="GitLab Backup MCP Server",
    instructions=(
        "Backs up GitLab projects through the Import/Export API and restores"
        " archives into empty target projects."
    ),
    lifespan=lifespan,
)


def _get_client(ctx: Context) -> GitLabClient:
    return ctx.request_context.lifespan_context["client"]


def _get_config(ctx: Context) -> GitLabConfig:
    return ctx.request_context.lifespan_context["config"]


def _ok(data: Any) -> str:
    return json.dumps(data, indent=2, ensure_ascii=False)


def _err(error: Exception) -> str:
    detail: dict[str, Any] = {"error": str(error)}
    from ..exceptions import (
        ExportNotFoundError,
        ExportTimeoutError,
        GitLabApiError,
        GitLabAuthError,
        GitLabNotFoundError,
        HookError,
        StorageError,
    )

    if isinstance(error, GitLabNotFoundError):
        detail["status_code"] = error.status_code
        detail["body"] = error.body
        detail["hint"] = "Verify the project or group ID/path exists and is visible to the token."
    elif isinstance(error, GitLabAuthError):
        detail["status_code"] = error.status_code
        detail["body"] = error.body
        detail["hint"] = "Check GITLAB_TOKEN permissions. Token needs 'api' scope."
    elif isinstance(error, GitLabApiError):
        detail["status_code"] = error.status_code
        detail["body"] = error.body
        if error.status_code == 429:
            detail["hint"] = "Rate limited. Wait before retrying."
    elif isinstance(error, ExportNotFoundError):
        detail["hint"] = "GitLab has no export for this project. Request a new export."
    elif isinstance(error, ExportTimeoutError):
        detail["hint"] = "Export still running. Raise EXPORT_TIMEOUT_MIN or retry later."
    elif isinstance(error, StorageError):
        detail["hint"] = "Check the S3 settings and the AWS credentials."
    elif isinstance(error, HookError):
        detail["hint"] = "Check the PREBACKUP/POSTBACKUP command."
    return json.dumps(detail, indent=2, ensure_ascii=False)


# ════════════════════════════════════════════════════════════════════
# Backup
# ════════════════════════════════════════════════════════════════════


@mcp.tool(
    tags={"gitlab", "groups", "read"},
    annotations={"readOnlyHint": True, "idempotentHint": True, "openWorldHint": True},
)
async def gitlab_list_group_projects(
    ctx: Context,
    group_id: Annotated[int, Field(description="Numeric ID of the root group", gt=0)],
    include_archived: Annotated[
        bool, Field(description="Include archived projects in the listing")
    ] = False,
) -> str:
    """List every project in a group and all of its subgroups."""
    try:
        enumerator = GroupTreeEnumerator(_get_client(ctx), _get_config(ctx).concurrency)
        scan = await enumerator.collect(group_id, include_archived=include_archived)
        return _ok(
            {
                "group_id": group_id,
                "projects": [
                    {"id": p.id, "name": p.name, "path_with_namespace": p.path_with_namespace}
                    for p in scan.projects
                ],
                "count": len(scan.projects),
                "complete": scan.complete,
                "failures": [
                    {"group_id": f.group_id, "operation": f.operation, "message": f.message}
                    for f in scan.failures
                ],
            }
        )
    except Exception as e:
        return _err(e)


@mcp.tool(
    tags={"gitlab", "projects", "write"},
    annotations={"readOnlyHint": False, "openWorldHint": True},
)
async def gitlab_export_project(
    ctx: Context,
    project_id: Annotated[
        str,
        Field(
            description="Project ID or URL-encoded path (e.g. 'my-group/my-project')", min_length=1
        ),
    ],
    output_dir: Annotated[
        str, Field(description="Local directory to write <project name>.tar.gz into", min_length=1)
    ],
) -> str:
    """Export a project and download the archive. Blocks until the export is ready."""
    try:
        client = _get_client(ctx)
        project = Project.model_validate(await client.get_project(project_id))
        driver = ExportDriver.from_config(client, _get_config(ctx))
        path = await driver.export_project(project, output_dir)
        return _ok(
            {
                "project_id": project.id,
                "archive": str(path),
                "bytes": path.stat().st_size,
            }
        )
    except Exception as e:
        return _err(e)


# ════════════════════════════════════════════════════════════════════
# Restore
# ════════════════════════════════════════════════════════════════════


@mcp.tool(
    tags={"gitlab", "projects", "read"},
    annotations={"readOnlyHint": True, "idempotentHint": True, "openWorldHint": True},
)
async def gitlab_check_project_empty(
    ctx: Context,
    project_id: Annotated[
        str,
        Field(
            description="Project ID or URL-encoded path (e.g. 'my-group/my-project')", min_length=1
        ),
    ],
) -> str:
    """Report whether a project has no commits, issues or labels."""
    try:
        checks = await EmptinessValidator(_get_client(ctx)).check(project_id)
        return _ok(
            {
                "empty": checks.is_empty(),
                "commits": checks.commit_count,
                "issues": checks.issue_count,
                "labels": checks.label_count,
            }
        )
    except Exception as e:
        return _err(e)


@mcp.tool(
    tags={"gitlab", "projects", "write"},
    annotations={"readOnlyHint": False, "openWorldHint": True},
)
async def gitlab_restore_project(
    ctx: Context,
    source: Annotated[
        str,
        Field(
            description="Local .tar.gz path, http(s) URL or s3://bucket/key of the archive",
            min_length=1,
        ),
    ],
    path: Annotated[str, Field(description="Path of the project to create", min_length=1)],
    namespace: Annotated[
        str, Field(description="Full path of the target group; empty for the user namespace")
    ] = "",
    overwrite: Annotated[
        bool, Field(description="Skip the check that the target project is empty")
    ] = False,
) -> str:
    """Restore an archive into a new GitLab project."""
    try:
        config = RestoreConfig.from_env()
        config.source = source
        config.target_namespace = namespace.strip("/")
        config.target_path = path
        config.overwrite = overwrite
        result = await RestoreWorkflow(_get_client(ctx), config).restore()
        return _ok(result.to_dict())
    except Exception as e:
        return _err(e)
