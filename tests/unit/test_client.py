"""Tests for GitLab API client."""

from __future__ import annotations

import io
import json

import httpx
import pytest
import respx

from gitlab_backup.client import GitLabClient
from gitlab_backup.config import GitLabConfig
from gitlab_backup.exceptions import GitLabApiError, GitLabAuthError, GitLabNotFoundError

BASE = "https://gitlab.example.com/api/v4"


def _make_client() -> GitLabClient:
    return GitLabClient(GitLabConfig(url="https://gitlab.example.com", token="test-token"))


class TestEncodeId:
    def test_numeric_string(self):
        assert GitLabClient._encode_id("123") == "123"

    def test_integer(self):
        assert GitLabClient._encode_id(123) == "123"

    def test_path(self):
        assert GitLabClient._encode_id("my-group/my-project") == "my-group%2Fmy-project"


class TestConstruction:
    def test_invalid_config_rejected(self):
        with pytest.raises(ValueError, match="token"):
            GitLabClient(GitLabConfig(url="https://gitlab.example.com", token=""))

    @pytest.mark.asyncio
    async def test_sends_private_token(self):
        async with respx.mock(base_url=BASE) as router:
            route = router.get("/projects/1").mock(return_value=httpx.Response(200, json={}))
            async with _make_client() as client:
                await client.get_project(1)
            assert route.calls.last.request.headers["PRIVATE-TOKEN"] == "test-token"


class TestRequest:
    @pytest.mark.asyncio
    async def test_get_project(self):
        async with respx.mock(base_url=BASE) as router:
            router.get("/projects/123").mock(
                return_value=httpx.Response(200, json={"id": 123, "name": "test"})
            )
            client = _make_client()
            result = await client.get_project(123)
            assert result["id"] == 123
            assert result["name"] == "test"

    @pytest.mark.asyncio
    async def test_auth_error_401(self):
        async with respx.mock(base_url=BASE) as router:
            router.get("/projects/123").mock(return_value=httpx.Response(401, text="Unauthorized"))
            client = _make_client()
            with pytest.raises(GitLabAuthError) as exc_info:
                await client.get_project(123)
            assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_not_found_error(self):
        async with respx.mock(base_url=BASE) as router:
            router.get("/projects/999").mock(return_value=httpx.Response(404, text="Not Found"))
            client = _make_client()
            with pytest.raises(GitLabNotFoundError):
                await client.get_project(999)

    @pytest.mark.asyncio
    async def test_server_error(self):
        async with respx.mock(base_url=BASE) as router:
            router.get("/projects/123").mock(
                return_value=httpx.Response(500, text="Internal Server Error")
            )
            client = _make_client()
            with pytest.raises(GitLabApiError) as exc_info:
                await client.get_project(123)
            assert exc_info.value.status_code == 500

    @pytest.mark.asyncio
    async def test_html_response_error(self):
        async with respx.mock(base_url=BASE) as router:
            router.get("/projects/123").mock(
                return_value=httpx.Response(
                    200,
                    text="<html><body>Login</body></html>",
                    headers={"content-type": "text/html"},
                )
            )
            client = _make_client()
            with pytest.raises(GitLabApiError, match="HTML"):
                await client.get_project(123)

    @pytest.mark.asyncio
    async def test_path_encoding(self):
        async with respx.mock(base_url=BASE) as router:
            route = router.get("/projects/my-group%2Fmy-project").mock(
                return_value=httpx.Response(200, json={"id": 1})
            )
            client = _make_client()
            await client.get_project("my-group/my-project")
            assert route.called

    @pytest.mark.asyncio
    async def test_lookup_by_path_keeps_namespaced_digits(self):
        async with respx.mock(base_url=BASE) as router:
            by_path = router.get("/projects/alice%2F2024").mock(
                return_value=httpx.Response(200, json={"id": 9})
            )
            client = _make_client()
            await client.get_project_by_path("alice/2024")
            assert by_path.called

    @pytest.mark.asyncio
    async def test_current_user(self):
        async with respx.mock(base_url=BASE) as router:
            router.get("/user").mock(
                return_value=httpx.Response(200, json={"id": 3, "username": "alice"})
            )
            client = _make_client()
            assert (await client.get_current_user())["username"] == "alice"


class TestPagination:
    @pytest.mark.asyncio
    async def test_follows_next_page_header(self):
        async with respx.mock(base_url=BASE) as router:
            route = router.get("/groups/5/projects").mock(
                side_effect=[
                    httpx.Response(200, json=[{"id": 1}, {"id": 2}], headers={"x-next-page": "2"}),
                    httpx.Response(200, json=[{"id": 3}], headers={"x-next-page": ""}),
                ]
            )
            client = _make_client()
            result = await client.list_group_projects(5)
            assert [p["id"] for p in result] == [1, 2, 3]
            assert route.call_count == 2
            second = route.calls[1].request.url.params
            assert second["page"] == "2"
            assert second["per_page"] == "100"
            assert second["with_shared"] == "false"

    @pytest.mark.asyncio
    async def test_single_page_without_header(self):
        async with respx.mock(base_url=BASE) as router:
            route = router.get("/groups/5/subgroups").mock(
                return_value=httpx.Response(200, json=[{"id": 9}])
            )
            client = _make_client()
            result = await client.list_subgroups(5)
            assert result == [{"id": 9}]
            assert route.call_count == 1


class TestExport:
    @pytest.mark.asyncio
    async def test_request_export_accepted(self):
        async with respx.mock(base_url=BASE) as router:
            router.post("/projects/7/export").mock(
                return_value=httpx.Response(202, json={"message": "202 Accepted"})
            )
            client = _make_client()
            assert await client.request_export(7) is True

    @pytest.mark.asyncio
    async def test_request_export_other_success_not_accepted(self):
        async with respx.mock(base_url=BASE) as router:
            router.post("/projects/7/export").mock(return_value=httpx.Response(200, json={}))
            client = _make_client()
            assert await client.request_export(7) is False

    @pytest.mark.asyncio
    async def test_stream_export_body(self):
        async with respx.mock(base_url=BASE) as router:
            router.get("/projects/7/export/download").mock(
                return_value=httpx.Response(200, content=b"archive-bytes")
            )
            client = _make_client()
            async with client.stream_export(7) as resp:
                body = b"".join([chunk async for chunk in resp.aiter_bytes()])
            assert body == b"archive-bytes"

    @pytest.mark.asyncio
    async def test_stream_export_error_raises(self):
        async with respx.mock(base_url=BASE) as router:
            router.get("/projects/7/export/download").mock(
                return_value=httpx.Response(404, text="404 Not Found")
            )
            client = _make_client()
            with pytest.raises(GitLabNotFoundError):
                async with client.stream_export(7):
                    pass


class TestCounts:
    @pytest.mark.asyncio
    async def test_count_commits_uses_total_header(self):
        async with respx.mock(base_url=BASE) as router:
            router.get("/projects/3/repository/commits").mock(
                return_value=httpx.Response(200, json=[{"id": "abc"}], headers={"x-total": "42"})
            )
            client = _make_client()
            assert await client.count_commits(3) == (True, 42)

    @pytest.mark.asyncio
    async def test_count_commits_empty_repository(self):
        async with respx.mock(base_url=BASE) as router:
            router.get("/projects/3/repository/commits").mock(
                return_value=httpx.Response(404, text="404 Tree Not Found")
            )
            client = _make_client()
            assert await client.count_commits(3) == (False, 0)

    @pytest.mark.asyncio
    async def test_count_issues_falls_back_to_page_length(self):
        async with respx.mock(base_url=BASE) as router:
            route = router.get("/projects/3/issues").mock(
                return_value=httpx.Response(200, json=[{"iid": 1}])
            )
            client = _make_client()
            assert await client.count_issues(3) == (True, 1)
            assert route.calls.last.request.url.params["scope"] == "all"

    @pytest.mark.asyncio
    async def test_count_labels_none(self):
        async with respx.mock(base_url=BASE) as router:
            router.get("/projects/3/labels").mock(
                return_value=httpx.Response(200, json=[], headers={"x-total": "0"})
            )
            client = _make_client()
            assert await client.count_labels(3) == (False, 0)


class TestImportAndMetadata:
    @pytest.mark.asyncio
    async def test_import_project_is_multipart(self):
        async with respx.mock(base_url=BASE) as router:
            route = router.post("/projects/import").mock(
                return_value=httpx.Response(201, json={"id": 11, "import_status": "scheduled"})
            )
            client = _make_client()
            result = await client.import_project(
                io.BytesIO(b"tarball"), "app.tar.gz", "team/sub", "app"
            )
            assert result["id"] == 11
            request = route.calls.last.request
            assert request.headers["content-type"].startswith("multipart/form-data")
            body = request.content
            assert b'name="path"' in body
            assert b"team/sub" in body
            assert b'filename="app.tar.gz"' in body

    @pytest.mark.asyncio
    async def test_import_project_without_namespace(self):
        async with respx.mock(base_url=BASE) as router:
            route = router.post("/projects/import").mock(
                return_value=httpx.Response(201, json={"id": 11})
            )
            client = _make_client()
            await client.import_project(io.BytesIO(b"x"), "app.tar.gz", "", "app")
            assert b'name="namespace"' not in route.calls.last.request.content

    @pytest.mark.asyncio
    async def test_add_issue_comment_keeps_timestamp(self):
        async with respx.mock(base_url=BASE) as router:
            route = router.post("/projects/3/issues/4/notes").mock(
                return_value=httpx.Response(201, json={"id": 1})
            )
            client = _make_client()
            await client.add_issue_comment(3, 4, "hello", created_at="2024-01-02T00:00:00Z")
            sent = json.loads(route.calls.last.request.content)
            assert sent == {"body": "hello", "created_at": "2024-01-02T00:00:00Z"}

    @pytest.mark.asyncio
    async def test_update_issue(self):
        async with respx.mock(base_url=BASE) as router:
            route = router.put("/projects/3/issues/4").mock(
                return_value=httpx.Response(200, json={"iid": 4, "state": "closed"})
            )
            client = _make_client()
            result = await client.update_issue(3, 4, {"state_event": "close"})
            assert result["state"] == "closed"
            assert json.loads(route.calls.last.request.content) == {"state_event": "close"}
