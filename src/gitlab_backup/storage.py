"""S3 object storage for backup archives."""

from __future__ import annotations

import asyncio
import base64
import hashlib
from collections.abc import AsyncIterator
from pathlib import Path
from typing import Any

import structlog
from aiobotocore.session import get_session
from botocore.exceptions import BotoCoreError, ClientError

from .config import S3_SCHEME, GitLabConfig, S3Config, parse_s3_uri
from .exceptions import StorageError
from .transfer import (
    ArchiveStore,
    HttpArchiveStore,
    ProgressCallback,
    local_name,
    write_atomically,
)

logger = structlog.get_logger()

CHUNK_SIZE = 1024 * 1024


async def _iter_body(stream: Any) -> AsyncIterator[bytes]:
    while chunk := await stream.read(CHUNK_SIZE):
        yield chunk


class S3ArchiveStore:
    """Fetch ``s3://bucket/key`` restore sources and upload backup archives.

    Credentials come from the standard AWS chain (``AWS_ACCESS_KEY_ID`` and
    friends); region and endpoint from :class:`S3Config`.
    """

    def __init__(
        self,
        config: S3Config,
        *,
        session: Any = None,
        on_progress: ProgressCallback | None = None,
    ) -> None:
        self._config = config
        self._session = session or get_session()
        self._on_progress = on_progress

    def _client(self) -> Any:
        return self._session.create_client(
            "s3",
            region_name=self._config.region,
            endpoint_url=self._config.endpoint_url,
        )

    async def fetch(self, source: str, dest_dir: Path) -> tuple[Path, int]:
        bucket, key = parse_s3_uri(source)
        final_path = Path(dest_dir) / local_name(key)
        logger.info("archive_fetch_started", source=source, path=str(final_path))
        try:
            async with self._client() as s3:
                response = await s3.get_object(Bucket=bucket, Key=key)
                async with response["Body"] as stream:
                    written = await write_atomically(
                        _iter_body(stream), final_path, self._on_progress
                    )
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"fetching {source}: {e}") from e
        logger.info("archive_fetch_finished", source=source, bytes=written)
        return final_path, written

    async def upload(self, archive: Path) -> str:
        """Upload ``archive`` under the configured prefix; returns its ``s3://`` URI."""
        bucket = self._config.bucket
        key = self._config.key_for(archive.name)
        body = await asyncio.to_thread(archive.read_bytes)
        digest = hashlib.md5(body, usedforsecurity=False).digest()
        try:
            async with self._client() as s3:
                await s3.put_object(
                    Bucket=bucket,
                    Key=key,
                    Body=body,
                    ContentMD5=base64.b64encode(digest).decode(),
                )
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"uploading {archive.name} to s3://{bucket}/{key}: {e}") from e
        uri = f"{S3_SCHEME}{bucket}/{key}"
        logger.info("archive_uploaded", archive=str(archive), uri=uri, bytes=len(body))
        return uri


def store_for_source(
    source: str,
    config: GitLabConfig,
    on_progress: ProgressCallback | None = None,
) -> ArchiveStore:
    """Pick the archive store that can fetch ``source``."""
    if source.startswith(S3_SCHEME):
        return S3ArchiveStore(config.s3, on_progress=on_progress)
    return HttpArchiveStore(verify=config.ssl_verify, on_progress=on_progress)
