"""Shared test fixtures for gitlab-backup."""

from __future__ import annotations

import io
import json
import tarfile
from pathlib import Path

import pytest
import respx

from gitlab_backup.client import GitLabClient
from gitlab_backup.config import GitLabConfig

TEST_URL = "https://gitlab.example.com"
TEST_TOKEN = "test-token"


def _add_bytes(tar: tarfile.TarFile, name: str, data: bytes) -> None:
    info = tarfile.TarInfo(name)
    info.size = len(data)
    tar.addfile(info, io.BytesIO(data))


def make_export(path: Path, files: dict[str, bytes] | None = None) -> Path:
    """Write a minimal GitLab-style export tarball to ``path``."""
    files = files or {"VERSION": b"0.2.4", "project.json": b'{"description": ""}'}
    with tarfile.open(path, "w:gz") as tar:
        for name, data in files.items():
            _add_bytes(tar, name, data)
    return path


def make_composite(
    path: Path,
    *,
    labels: list[dict] | None = None,
    issues: list[dict] | None = None,
    export_name: str = "project.tar.gz",
) -> Path:
    """Write an archive bundling a native export with labels.json/issues.json."""
    inner = make_export(path.parent / f"inner-{export_name}")
    with tarfile.open(path, "w:gz") as tar:
        _add_bytes(tar, export_name, inner.read_bytes())
        if labels is not None:
            _add_bytes(tar, "labels.json", json.dumps(labels).encode())
        if issues is not None:
            _add_bytes(tar, "issues.json", json.dumps(issues).encode())
    inner.unlink()
    return path


@pytest.fixture
def config() -> GitLabConfig:
    return GitLabConfig(url=TEST_URL, token=TEST_TOKEN, export_poll_interval=0.01)


@pytest.fixture
def client(config: GitLabConfig) -> GitLabClient:
    return GitLabClient(config)


@pytest.fixture
def mock_api() -> respx.MockRouter:
    with respx.mock(base_url=f"{TEST_URL}/api/v4", assert_all_called=False) as router:
        yield router
