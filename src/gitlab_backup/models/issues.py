"""Label, issue and note models as stored in side-car metadata files."""

from __future__ import annotations

from .base import GitLabModel
from .common import User


class Label(GitLabModel):
    name: str
    color: str = "#428BCA"
    description: str | None = None
    priority: int | None = None


class Note(GitLabModel):
    id: int = 0
    body: str = ""
    author: User | None = None
    created_at: str = ""


class Issue(GitLabModel):
    id: int = 0
    iid: int = 0
    title: str
    description: str | None = None
    state: str = "opened"
    created_at: str | None = None
    labels: list[str] = []
    assignees: list[User] = []
    weight: int | None = None
    confidential: bool = False
    notes: list[Note] = []
