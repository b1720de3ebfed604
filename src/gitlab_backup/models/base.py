"""Base model for GitLab API payloads and archive metadata."""

from __future__ import annotations

from pydantic import BaseModel


class GitLabModel(BaseModel):
    """Base model with common behavior for all GitLab payload models."""

    model_config = {"extra": "ignore", "populate_by_name": True}
