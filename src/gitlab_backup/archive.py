"""Backup archive validation and extraction."""

from __future__ import annotations

import shutil
import tarfile
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

import structlog

from .exceptions import ArchiveError

logger = structlog.get_logger()

LABELS_FILE = "labels.json"
ISSUES_FILE = "issues.json"


@dataclass
class ArchiveContents:
    """Where the pieces of an archive ended up on disk."""

    project_export_path: Path
    extraction_dir: Path
    labels_path: Path | None = None
    issues_path: Path | None = None
    bytes_extracted: int = 0


def validate_archive(archive: str | Path) -> None:
    """Check that ``archive`` is a readable, non-empty gzip-compressed tar file."""
    path = Path(archive)
    if not path.exists():
        msg = f"archive not found: {path}"
        raise ArchiveError(msg)
    if path.is_dir():
        msg = f"archive path is a directory: {path}"
        raise ArchiveError(msg)
    if path.stat().st_size == 0:
        msg = f"archive is empty: {path}"
        raise ArchiveError(msg)
    try:
        with tarfile.open(path, "r:gz") as tar:
            tar.next()
    except (tarfile.TarError, OSError, EOFError) as e:
        msg = f"invalid tar.gz archive {path}: {e}"
        raise ArchiveError(msg) from e


def _safe_target(dest_dir: Path, member_name: str) -> Path:
    """Resolve a member path inside ``dest_dir``, rejecting traversal."""
    name = PurePosixPath(member_name)
    if name.is_absolute() or ".." in name.parts:
        msg = f"unsafe path in archive: {member_name}"
        raise ArchiveError(msg)
    target = dest_dir / Path(*name.parts)
    if not target.resolve().is_relative_to(dest_dir.resolve()):
        msg = f"unsafe path in archive: {member_name}"
        raise ArchiveError(msg)
    return target


def _is_composite(members: list[tarfile.TarInfo]) -> bool:
    top_level = {m.name for m in members if m.isfile() and "/" not in m.name.strip("/")}
    has_export = any(name.endswith(".tar.gz") for name in top_level)
    return has_export and bool(top_level & {LABELS_FILE, ISSUES_FILE})


def extract_archive(archive: str | Path, dest_dir: str | Path) -> ArchiveContents:
    """Prepare an archive for import.

    A composite archive (GitLab export plus ``labels.json``/``issues.json``) is
    unpacked into ``dest_dir``. Any other archive is a GitLab native export and
    is imported as is.
    """
    archive = Path(archive)
    dest = Path(dest_dir)
    validate_archive(archive)

    with tarfile.open(archive, "r:gz") as tar:
        members = tar.getmembers()
        if not _is_composite(members):
            size = archive.stat().st_size
            logger.info("archive_is_native_export", archive=str(archive), bytes=size)
            return ArchiveContents(
                project_export_path=archive, extraction_dir=dest, bytes_extracted=size
            )

        contents = ArchiveContents(project_export_path=archive, extraction_dir=dest)
        for member in members:
            if not member.isfile():
                continue
            target = _safe_target(dest, member.name)
            target.parent.mkdir(parents=True, exist_ok=True)
            source = tar.extractfile(member)
            if source is None:
                continue
            with source, target.open("wb") as out:
                shutil.copyfileobj(source, out)
            contents.bytes_extracted += member.size

            if target.parent == dest:
                if target.name == LABELS_FILE:
                    contents.labels_path = target
                elif target.name == ISSUES_FILE:
                    contents.issues_path = target
                elif target.name.endswith(".tar.gz"):
                    contents.project_export_path = target

    logger.info(
        "archive_extracted",
        archive=str(archive),
        dest=str(dest),
        bytes=contents.bytes_extracted,
        labels=contents.labels_path is not None,
        issues=contents.issues_path is not None,
    )
    return contents
