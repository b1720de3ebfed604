"""GitLab backup configuration."""

from __future__ import annotations

import os
import re
import tempfile
from dataclasses import dataclass, field

DEFAULT_GITLAB_URL = "https://gitlab.com"

_PATH_SEGMENT_RE = re.compile(r"^[a-zA-Z0-9_.-]+$")
_BUCKET_RE = re.compile(r"^[a-z0-9][a-z0-9.-]{1,61}[a-z0-9]$")

S3_SCHEME = "s3://"


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes")


@dataclass
class S3Config:
    """Object storage for backup uploads and ``s3://`` restore sources."""

    bucket: str = ""
    # Key prefix inside the bucket, without leading or trailing slashes.
    prefix: str = ""
    region: str | None = None
    endpoint_url: str | None = None

    @classmethod
    def from_env(cls) -> S3Config:
        return cls(
            bucket=os.getenv("S3BUCKETNAME", ""),
            prefix=os.getenv("S3BUCKETPATH", "").strip("/"),
            region=os.getenv("S3REGION") or None,
            endpoint_url=os.getenv("S3ENDPOINT") or None,
        )

    @property
    def enabled(self) -> bool:
        return bool(self.bucket)

    def key_for(self, filename: str) -> str:
        return f"{self.prefix}/{filename}" if self.prefix else filename

    def validate(self) -> None:
        if self.enabled and not _BUCKET_RE.match(self.bucket):
            msg = f"invalid S3 bucket name: {self.bucket}"
            raise ValueError(msg)
        if ".." in self.prefix.split("/"):
            msg = f"S3 bucket path must not contain '..' segments: {self.prefix}"
            raise ValueError(msg)


def parse_s3_uri(uri: str) -> tuple[str, str]:
    """Split ``s3://bucket/key`` into bucket and key."""
    if not uri.startswith(S3_SCHEME):
        msg = f"not an S3 source: {uri}"
        raise ValueError(msg)
    bucket, _, key = uri[len(S3_SCHEME) :].partition("/")
    if not bucket or not key:
        msg = f"invalid S3 path: expected s3://bucket/key, got {uri}"
        raise ValueError(msg)
    return bucket, key


@dataclass
class GitLabConfig:
    """Connection and export settings, loaded from environment variables."""

    url: str = DEFAULT_GITLAB_URL
    token: str = ""
    timeout: int = 30
    ssl_verify: bool = True
    export_poll_interval: float = 20.0
    # Seconds; None waits for the export without a deadline.
    export_timeout: float | None = 600.0
    concurrency: int = 4
    # Shell-style commands run around each project export; %INPUTFILE% is the archive path.
    pre_backup: str = ""
    post_backup: str = ""
    s3: S3Config = field(default_factory=S3Config)

    @classmethod
    def from_env(cls) -> GitLabConfig:
        url = (os.getenv("GITLAB_URL") or os.getenv("GITLAB_URI") or DEFAULT_GITLAB_URL).rstrip(
            "/"
        )
        token = (
            os.getenv("GITLAB_TOKEN")
            or os.getenv("GITLAB_PAT")
            or os.getenv("GITLAB_PERSONAL_ACCESS_TOKEN")
            or os.getenv("GITLAB_API_TOKEN", "")
        )
        timeout = int(os.getenv("GITLAB_TIMEOUT", "30"))
        ssl_verify = os.getenv("GITLAB_SSL_VERIFY", "true").lower() not in (
            "false",
            "0",
            "no",
        )
        poll_interval = float(os.getenv("EXPORT_POLL_INTERVAL", "20"))
        timeout_mins = float(os.getenv("EXPORT_TIMEOUT_MIN", "10"))
        concurrency = int(os.getenv("GITLAB_CONCURRENCY", "4"))

        return cls(
            url=url,
            token=token,
            timeout=timeout,
            ssl_verify=ssl_verify,
            export_poll_interval=poll_interval,
            export_timeout=timeout_mins * 60 if timeout_mins > 0 else None,
            concurrency=concurrency,
            pre_backup=os.getenv("PREBACKUP", ""),
            post_backup=os.getenv("POSTBACKUP", ""),
            s3=S3Config.from_env(),
        )

    @property
    def api_url(self) -> str:
        return f"{self.url}/api/v4"

    def validate(self) -> None:
        if not self.url:
            msg = "GITLAB_URL environment variable is required"
            raise ValueError(msg)
        if not self.token:
            msg = (
                "GitLab token is required. Set one of: GITLAB_TOKEN, GITLAB_PAT, "
                "GITLAB_PERSONAL_ACCESS_TOKEN, or GITLAB_API_TOKEN"
            )
            raise ValueError(msg)
        if self.timeout <= 0:
            msg = f"GITLAB_TIMEOUT must be positive, got {self.timeout}"
            raise ValueError(msg)
        if self.export_poll_interval <= 0:
            msg = f"EXPORT_POLL_INTERVAL must be positive, got {self.export_poll_interval}"
            raise ValueError(msg)
        if self.export_timeout is not None and self.export_timeout < 0:
            msg = f"EXPORT_TIMEOUT_MIN must not be negative, got {self.export_timeout}"
            raise ValueError(msg)
        if self.concurrency < 1:
            msg = f"GITLAB_CONCURRENCY must be at least 1, got {self.concurrency}"
            raise ValueError(msg)
        self.s3.validate()


@dataclass
class RestoreConfig:
    """What to restore and where to restore it."""

    source: str = ""
    target_namespace: str = ""
    target_path: str = ""
    overwrite: bool = False
    tmp_dir: str = field(default_factory=tempfile.gettempdir)
    restore_labels: bool = True
    restore_issues: bool = True
    # Metadata components whose item failures abort the restore.
    fatal_components: frozenset[str] = frozenset()
    import_timeout: float = 600.0
    import_poll_interval: float = 5.0

    @classmethod
    def from_env(cls) -> RestoreConfig:
        fatal = os.getenv("RESTORE_FATAL_COMPONENTS", "")
        return cls(
            source=os.getenv("RESTORE_SOURCE", ""),
            target_namespace=os.getenv("RESTORE_TARGET_NS", "").strip("/"),
            target_path=os.getenv("RESTORE_TARGET_PATH", ""),
            overwrite=_env_bool("RESTORE_OVERWRITE", False),
            tmp_dir=os.getenv("TMPDIR") or tempfile.gettempdir(),
            restore_labels=_env_bool("RESTORE_LABELS", True),
            restore_issues=_env_bool("RESTORE_ISSUES", True),
            fatal_components=frozenset(c.strip() for c in fatal.split(",") if c.strip()),
            import_timeout=float(os.getenv("IMPORT_TIMEOUT_MIN", "10")) * 60,
        )

    @property
    def is_s3_source(self) -> bool:
        return self.source.startswith(S3_SCHEME)

    @property
    def is_remote_source(self) -> bool:
        return self.is_s3_source or self.source.startswith(("http://", "https://"))

    @property
    def full_project_path(self) -> str:
        if not self.target_namespace:
            return self.target_path
        return f"{self.target_namespace}/{self.target_path}"

    def validate(self) -> None:
        if not self.source:
            msg = "RESTORE_SOURCE is required"
            raise ValueError(msg)
        if self.is_s3_source:
            parse_s3_uri(self.source)
        elif not self.is_remote_source:
            if not self.source.endswith(".tar.gz"):
                msg = f"archive must be a .tar.gz file, got {self.source}"
                raise ValueError(msg)
            if ".." in self.source.replace("\\", "/").split("/"):
                msg = f"restore source must not contain '..' segments: {self.source}"
                raise ValueError(msg)

        if not self.target_path:
            msg = "RESTORE_TARGET_PATH is required"
            raise ValueError(msg)
        if not _PATH_SEGMENT_RE.match(self.target_path):
            msg = (
                "invalid target path: must contain only letters, numbers, underscores, "
                f"dots, and hyphens, got {self.target_path}"
            )
            raise ValueError(msg)

        if self.target_namespace:
            for part in self.target_namespace.split("/"):
                if not part:
                    msg = "target namespace cannot contain empty path segments"
                    raise ValueError(msg)
                if part == ".." or not _PATH_SEGMENT_RE.match(part):
                    msg = f"invalid target namespace segment: {part}"
                    raise ValueError(msg)

        if self.import_timeout <= 0 or self.import_poll_interval <= 0:
            msg = "import timeout and poll interval must be positive"
            raise ValueError(msg)
