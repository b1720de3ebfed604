"""Project, group, export and import models."""

from __future__ import annotations

from .base import GitLabModel
from .common import Namespace


class Group(GitLabModel):
    id: int
    name: str = ""
    path: str = ""
    full_path: str = ""
    parent_id: int | None = None
    web_url: str = ""


class Project(GitLabModel):
    id: int
    name: str = ""
    path: str = ""
    path_with_namespace: str = ""
    web_url: str = ""
    archived: bool = False
    namespace: Namespace | None = None


class ExportStatus(GitLabModel):
    id: int
    name: str = ""
    path_with_namespace: str = ""
    # GitLab may add states; unknown values keep polling.
    export_status: str = "none"

    @property
    def finished(self) -> bool:
        return self.export_status == "finished"


class ImportStatus(GitLabModel):
    id: int
    name: str = ""
    path_with_namespace: str = ""
    web_url: str = ""
    import_status: str = "none"
    import_error: str | None = None
