"""GitLab API client using httpx."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import Any, BinaryIO
from urllib.parse import quote

import httpx

from .config import GitLabConfig
from .exceptions import GitLabApiError, GitLabAuthError, GitLabNotFoundError

PER_PAGE = 100


class GitLabClient:
    """Async HTTP client for the parts of the GitLab REST API v4 used by backup and restore."""

    def __init__(self, config: GitLabConfig) -> None:
        self.config = config
        self.config.validate()
        self._client = httpx.AsyncClient(
            base_url=self.config.api_url,
            headers={"PRIVATE-TOKEN": self.config.token},
            timeout=self.config.timeout,
            verify=self.config.ssl_verify,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> GitLabClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # ── HTTP helpers ──────────────────────────────────────────────

    @staticmethod
    def _encode_id(project_id: str | int) -> str:
        """Encode a project/group ID. Numeric IDs pass through; paths are URL-encoded."""
        if isinstance(project_id, int):
            return str(project_id)
        try:
            return str(int(project_id))
        except ValueError:
            return quote(project_id, safe="")

    @staticmethod
    def _raise_for_status(resp: httpx.Response) -> None:
        if resp.status_code in (401, 403):
            raise GitLabAuthError(resp.status_code, resp.text)
        if resp.status_code == 404:
            raise GitLabNotFoundError(resp.text)
        if not resp.is_success:
            raise GitLabApiError(resp.status_code, resp.reason_phrase or "", resp.text)

    @staticmethod
    def _parse(resp: httpx.Response, *, raw: bool = False) -> Any:
        if resp.status_code == 204 or not resp.content:
            return None

        if raw:
            return resp.text

        content_type = resp.headers.get("content-type", "")
        if "text/html" in content_type:
            msg = "Unexpected HTML response, check URL and authentication"
            raise GitLabApiError(resp.status_code, msg, resp.text[:500])

        try:
            return resp.json()
        except json.JSONDecodeError as e:
            raise GitLabApiError(
                resp.status_code,
                f"JSON parse error: {e}",
                resp.text[:500],
            ) from e

    async def _send(
        self,
        method: str,
        path: str,
        *,
        json_data: Any = None,
        params: dict[str, Any] | None = None,
        data: dict[str, Any] | None = None,
        files: dict[str, Any] | None = None,
        extra_headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """Make an API request and return the response, raising on error statuses."""
        headers = {}
        if extra_headers:
            headers.update(extra_headers)

        kwargs: dict[str, Any] = {"params": params, "headers": headers}
        if json_data is not None:
            kwargs["json"] = json_data
        if data is not None:
            kwargs["data"] = data
        if files is not None:
            kwargs["files"] = files

        resp = await self._client.request(method, path, **kwargs)
        self._raise_for_status(resp)
        return resp

    async def _request(self, method: str, path: str, *, raw: bool = False, **kwargs: Any) -> Any:
        """Make an API request and return parsed JSON (or raw text if raw=True)."""
        resp = await self._send(method, path, **kwargs)
        return self._parse(resp, raw=raw)

    async def get(
        self, path: str, params: dict[str, Any] | None = None, *, raw: bool = False
    ) -> Any:
        return await self._request("GET", path, params=params, raw=raw)

    async def post(self, path: str, json_data: Any = None, **kwargs: Any) -> Any:
        return await self._request("POST", path, json_data=json_data, **kwargs)

    async def put(self, path: str, json_data: Any = None, **kwargs: Any) -> Any:
        return await self._request("PUT", path, json_data=json_data, **kwargs)

    async def get_all(self, path: str, params: dict[str, Any] | None = None) -> list[dict]:
        """GET every page of a list endpoint, following ``X-Next-Page``."""
        items: list[dict] = []
        page = 1
        while True:
            p = {"per_page": PER_PAGE, **(params or {}), "page": page}
            resp = await self._send("GET", path, params=p)
            items.extend(self._parse(resp) or [])
            next_page = resp.headers.get("x-next-page", "")
            if not next_page.strip():
                return items
            page = int(next_page)

    async def get_with_total(
        self, path: str, params: dict[str, Any] | None = None
    ) -> tuple[list[dict], int]:
        """GET a single page and return it with the ``X-Total`` count (page length if absent)."""
        resp = await self._send("GET", path, params=params)
        items = self._parse(resp) or []
        total = resp.headers.get("x-total", "")
        if total.isdigit() and int(total) > 0:
            return items, int(total)
        return items, len(items)

    @asynccontextmanager
    async def stream(self, path: str) -> AsyncIterator[httpx.Response]:
        """Stream a GET response body; error statuses raise before the body is consumed."""
        async with self._client.stream("GET", path) as resp:
            if not resp.is_success:
                await resp.aread()
                self._raise_for_status(resp)
            yield resp

    # ── Projects ──────────────────────────────────────────────────

    async def get_project(self, project_id: str | int) -> dict:
        enc = self._encode_id(project_id)
        return await self.get(f"/projects/{enc}")

    async def get_project_by_path(self, full_path: str) -> dict:
        """Look up a project by ``namespace/path``, never as a numeric ID."""
        return await self.get(f"/projects/{quote(full_path, safe='')}")

    async def get_current_user(self) -> dict:
        return await self.get("/user")

    # ── Groups ────────────────────────────────────────────────────

    async def list_subgroups(self, group_id: str | int) -> list[dict]:
        enc = self._encode_id(group_id)
        return await self.get_all(f"/groups/{enc}/subgroups")

    async def list_group_projects(self, group_id: str | int) -> list[dict]:
        enc = self._encode_id(group_id)
        return await self.get_all(f"/groups/{enc}/projects", params={"with_shared": "false"})

    # ── Export ────────────────────────────────────────────────────

    async def request_export(self, project_id: str | int) -> bool:
        """Ask GitLab to schedule an export. True when the request was accepted (202)."""
        enc = self._encode_id(project_id)
        resp = await self._send("POST", f"/projects/{enc}/export")
        return resp.status_code == 202

    async def get_export_status(self, project_id: str | int) -> dict:
        enc = self._encode_id(project_id)
        return await self.get(f"/projects/{enc}/export")

    def stream_export(
        self, project_id: str | int
    ) -> AbstractAsyncContextManager[httpx.Response]:
        enc = self._encode_id(project_id)
        return self.stream(f"/projects/{enc}/export/download")

    # ── Import ────────────────────────────────────────────────────

    async def import_project(
        self, archive: BinaryIO, filename: str, namespace: str, path: str
    ) -> dict:
        data = {"path": path}
        if namespace:
            data["namespace"] = namespace
        return await self._request(
            "POST",
            "/projects/import",
            data=data,
            files={"file": (filename, archive, "application/gzip")},
        )

    async def get_import_status(self, project_id: str | int) -> dict:
        enc = self._encode_id(project_id)
        return await self.get(f"/projects/{enc}/import")

    # ── Repository content ────────────────────────────────────────

    async def count_commits(self, project_id: str | int) -> tuple[bool, int]:
        enc = self._encode_id(project_id)
        try:
            items, total = await self.get_with_total(
                f"/projects/{enc}/repository/commits", params={"per_page": 1}
            )
        except GitLabNotFoundError:
            # An empty repository has no default branch to list commits from.
            return False, 0
        return bool(items), total

    async def count_issues(self, project_id: str | int) -> tuple[bool, int]:
        enc = self._encode_id(project_id)
        items, total = await self.get_with_total(
            f"/projects/{enc}/issues", params={"per_page": 1, "scope": "all"}
        )
        return bool(items), total

    async def count_labels(self, project_id: str | int) -> tuple[bool, int]:
        enc = self._encode_id(project_id)
        items, total = await self.get_with_total(
            f"/projects/{enc}/labels", params={"per_page": 1}
        )
        return bool(items), total

    # ── Labels ────────────────────────────────────────────────────

    async def create_label(self, project_id: str | int, params: dict[str, Any]) -> dict:
        enc = self._encode_id(project_id)
        return await self.post(f"/projects/{enc}/labels", params)

    # ── Issues ────────────────────────────────────────────────────

    async def create_issue(self, project_id: str | int, params: dict[str, Any]) -> dict:
        enc = self._encode_id(project_id)
        return await self.post(f"/projects/{enc}/issues", params)

    async def update_issue(
        self, project_id: str | int, issue_iid: int, params: dict[str, Any]
    ) -> dict:
        enc = self._encode_id(project_id)
        return await self.put(f"/projects/{enc}/issues/{issue_iid}", params)

    async def add_issue_comment(
        self, project_id: str | int, issue_iid: int, body: str, created_at: str = ""
    ) -> dict:
        enc = self._encode_id(project_id)
        data: dict[str, Any] = {"body": body}
        if created_at:
            data["created_at"] = created_at
        return await self.post(f"/projects/{enc}/issues/{issue_iid}/notes", data)
