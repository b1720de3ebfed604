"""Tests for exceptions."""

from gitlab_backup.exceptions import (
    ExportError,
    ExportNotFoundError,
    ExportTimeoutError,
    GitLabApiError,
    GitLabAuthError,
    GitLabError,
    GitLabNotFoundError,
    HookError,
    ProjectImportError,
)


def test_api_error():
    e = GitLabApiError(500, "Internal Server Error", "something broke")
    assert e.status_code == 500
    assert "500" in str(e)
    assert "something broke" in str(e)


def test_auth_error_401():
    e = GitLabAuthError(401)
    assert e.status_code == 401
    assert "Unauthorized" in str(e)


def test_auth_error_403():
    e = GitLabAuthError(403)
    assert e.status_code == 403
    assert "Forbidden" in str(e)


def test_not_found_error():
    e = GitLabNotFoundError("resource not found")
    assert e.status_code == 404
    assert isinstance(e, GitLabApiError)


def test_export_not_found_message():
    e = ExportNotFoundError(42)
    assert str(e) == "project 42 not exported"
    assert e.project_id == 42
    assert isinstance(e, ExportError)


def test_export_timeout_carries_wait():
    e = ExportTimeoutError(7, 125.4)
    assert e.waited == 125.4
    assert "125s" in str(e)
    assert isinstance(e, GitLabError)


def test_import_error_includes_gitlab_reason():
    e = ProjectImportError("import failed", "Repository could not be imported")
    assert e.import_error == "Repository could not be imported"
    assert str(e) == "import failed: Repository could not be imported"


def test_import_error_without_reason():
    assert str(ProjectImportError("import failed")) == "import failed"


def test_hook_error_names_command():
    e = HookError("notify.sh", "exit status 3")
    assert e.command == "notify.sh"
    assert "exit status 3" in str(e)
    assert isinstance(e, GitLabError)
