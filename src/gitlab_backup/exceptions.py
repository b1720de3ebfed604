"""GitLab backup exceptions."""

from __future__ import annotations


class GitLabError(Exception):
    """Base exception for GitLab backup operations."""


class GitLabApiError(GitLabError):
    """Raised when the GitLab API returns a non-success response."""

    def __init__(self, status_code: int, status_text: str, body: str = "") -> None:
        self.status_code = status_code
        self.status_text = status_text
        self.body = body
        super().__init__(f"GitLab API Error {status_code} {status_text}: {body}")


class GitLabAuthError(GitLabApiError):
    """Raised on 401/403 authentication failures."""

    def __init__(self, status_code: int, body: str = "") -> None:
        status_text = "Unauthorized" if status_code == 401 else "Forbidden"
        super().__init__(status_code, status_text, body)


class GitLabNotFoundError(GitLabApiError):
    """Raised on 404 responses."""

    def __init__(self, body: str = "") -> None:
        super().__init__(404, "Not Found", body)


class ExportError(GitLabError):
    """Base exception for project export failures."""

    def __init__(self, project_id: int, message: str) -> None:
        self.project_id = project_id
        super().__init__(message)


class ExportNotFoundError(ExportError):
    """Raised when GitLab reports export status ``none``."""

    def __init__(self, project_id: int) -> None:
        super().__init__(project_id, f"project {project_id} not exported")


class ExportRejectedError(ExportError):
    """Raised when GitLab never accepts the export request."""

    def __init__(self, project_id: int) -> None:
        super().__init__(project_id, f"export request for project {project_id} was not accepted")


class ExportTimeoutError(ExportError):
    """Raised when an export does not finish before its deadline."""

    def __init__(self, project_id: int, waited: float) -> None:
        self.waited = waited
        super().__init__(
            project_id, f"export of project {project_id} not finished after {waited:.0f}s"
        )


class ArchiveError(GitLabError):
    """Raised when a backup archive is missing, malformed, or unsafe to extract."""


class ProjectImportError(GitLabError):
    """Raised when GitLab fails to import a project archive."""

    def __init__(self, message: str, import_error: str = "") -> None:
        self.import_error = import_error
        if import_error:
            message = f"{message}: {import_error}"
        super().__init__(message)


class StorageError(GitLabError):
    """Raised when an archive cannot be read from or written to remote storage."""


class HookError(GitLabError):
    """Raised when a pre- or post-backup hook command fails."""

    def __init__(self, command: str, message: str) -> None:
        self.command = command
        super().__init__(f"hook {command!r} failed: {message}")
