"""Archive transfer: stream archive bytes to disk and commit them with an atomic rename."""

from __future__ import annotations

import os
from collections.abc import AsyncIterable, Callable
from pathlib import Path
from typing import Protocol
from urllib.parse import unquote, urlsplit

import httpx
import structlog

from .client import GitLabClient
from .exceptions import GitLabApiError
from .models.projects import Project

logger = structlog.get_logger()

ProgressCallback = Callable[[int], None]

ARCHIVE_SUFFIX = ".tar.gz"
PARTIAL_SUFFIX = ".tmp"


def format_bytes(size: float) -> str:
    """Format bytes to human readable."""
    for unit in ["B", "KB", "MB", "GB"]:
        if size < 1024:
            return f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} TB"


def archive_path(dest_dir: str | Path, name: str) -> Path:
    return Path(dest_dir) / f"{name}{ARCHIVE_SUFFIX}"


def local_name(remote_path: str) -> str:
    """Reduce a URL path or object key to a single safe file name."""
    name = Path(unquote(remote_path).replace("\\", "/")).name
    if name in ("", ".", ".."):
        return f"archive{ARCHIVE_SUFFIX}"
    return name


def partial_path(final_path: Path) -> Path:
    return final_path.with_name(final_path.name + PARTIAL_SUFFIX)


async def write_atomically(
    chunks: AsyncIterable[bytes],
    final_path: Path,
    on_progress: ProgressCallback | None = None,
) -> int:
    """Write ``chunks`` to ``<final_path>.tmp`` and rename it into place once complete.

    If the stream fails, the partial file is left behind under its ``.tmp`` name
    and ``final_path`` is never created.
    """
    tmp_path = partial_path(final_path)
    written = 0
    report = on_progress
    with tmp_path.open("wb") as out:
        async for chunk in chunks:
            out.write(chunk)
            written += len(chunk)
            if report is not None:
                try:
                    report(written)
                except Exception:
                    logger.warning("progress_callback_failed", path=str(final_path), exc_info=True)
                    report = None
    os.replace(tmp_path, final_path)
    return written


async def download_export(
    client: GitLabClient,
    project: Project,
    dest_dir: str | Path,
    on_progress: ProgressCallback | None = None,
    *,
    name: str | None = None,
) -> int:
    """Download a finished export to ``<dest_dir>/<name>.tar.gz``; returns bytes written.

    ``name`` defaults to the project name.
    """
    final_path = archive_path(dest_dir, name or project.name)
    logger.info("download_started", project=project.name, path=str(final_path))
    async with client.stream_export(project.id) as resp:
        written = await write_atomically(resp.aiter_bytes(), final_path, on_progress)
    logger.info(
        "download_finished",
        project=project.name,
        path=str(final_path),
        bytes=written,
        size=format_bytes(written),
    )
    return written


class ArchiveStore(Protocol):
    """Remote storage a restore archive can be fetched from."""

    async def fetch(self, source: str, dest_dir: Path) -> tuple[Path, int]:
        """Copy ``source`` into ``dest_dir``; returns the local path and bytes written."""
        ...


class HttpArchiveStore:
    """Fetch archives from ``http(s)://`` URLs, e.g. presigned object-store links."""

    def __init__(
        self,
        *,
        timeout: float = 300.0,
        verify: bool = True,
        on_progress: ProgressCallback | None = None,
    ) -> None:
        self._timeout = timeout
        self._verify = verify
        self._on_progress = on_progress

    async def fetch(self, source: str, dest_dir: Path) -> tuple[Path, int]:
        name = local_name(urlsplit(source).path)
        final_path = Path(dest_dir) / name
        logger.info("archive_fetch_started", source=source, path=str(final_path))
        async with httpx.AsyncClient(
            timeout=self._timeout, verify=self._verify, follow_redirects=True
        ) as http:
            async with http.stream("GET", source) as resp:
                if not resp.is_success:
                    await resp.aread()
                    raise GitLabApiError(
                        resp.status_code, resp.reason_phrase or "", resp.text[:500]
                    )
                written = await write_atomically(
                    resp.aiter_bytes(), final_path, self._on_progress
                )
        logger.info("archive_fetch_finished", source=source, bytes=written)
        return final_path, written
