"""Restore phases and the records a restore run produces."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class Phase(str, Enum):
    """Restore phases, in the order a run visits them."""

    VALIDATION = "validation"
    DOWNLOAD = "download"
    EXTRACTION = "extraction"
    IMPORT = "import"
    CLEANUP = "cleanup"
    COMPLETE = "complete"


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Metrics:
    bytes_downloaded: int = 0
    bytes_extracted: int = 0
    duration_seconds: float = 0.0


@dataclass(frozen=True)
class ErrorRecord:
    """One problem met during a restore. Fatal records halt the run."""

    phase: Phase
    component: str
    message: str
    fatal: bool
    timestamp: datetime


@dataclass
class RestoreResult:
    """Complete accounting of one restore run.

    ``success`` is derived from ``errors``: a run succeeds exactly when no
    fatal error was recorded.
    """

    project_id: int | None = None
    project_url: str = ""
    metrics: Metrics = field(default_factory=Metrics)
    errors: list[ErrorRecord] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.has_fatal_errors()

    def has_fatal_errors(self) -> bool:
        return any(e.fatal for e in self.errors)

    def add_error(
        self, phase: Phase, component: str, message: str, *, fatal: bool = True
    ) -> ErrorRecord:
        timestamp = _now()
        # Keep timestamps ordered even if the wall clock steps backwards.
        if self.errors and timestamp < self.errors[-1].timestamp:
            timestamp = self.errors[-1].timestamp
        record = ErrorRecord(
            phase=phase, component=component, message=message, fatal=fatal, timestamp=timestamp
        )
        self.errors.append(record)
        return record

    def add_warning(self, warning: str) -> None:
        self.warnings.append(warning)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "project_id": self.project_id,
            "project_url": self.project_url,
            "metrics": {
                "bytes_downloaded": self.metrics.bytes_downloaded,
                "bytes_extracted": self.metrics.bytes_extracted,
                "duration_seconds": self.metrics.duration_seconds,
            },
            "errors": [
                {
                    "phase": e.phase.value,
                    "component": e.component,
                    "message": e.message,
                    "fatal": e.fatal,
                    "timestamp": e.timestamp.isoformat(),
                }
                for e in self.errors
            ],
            "warnings": list(self.warnings),
        }


@dataclass
class EmptinessChecks:
    """What a restore target already contains.

    ``is_empty`` looks at the ``has_*`` flags only; the counts are informational.
    """

    has_commits: bool = False
    has_issues: bool = False
    has_labels: bool = False
    commit_count: int = 0
    issue_count: int = 0
    label_count: int = 0

    def is_empty(self) -> bool:
        return not self.has_commits and not self.has_issues and not self.has_labels


@dataclass
class Progress:
    """Live view of a restore run, updated once per phase transition."""

    metrics: Metrics
    current_phase: Phase | None = None
    completed_phases: list[Phase] = field(default_factory=list)
    start_time: datetime = field(default_factory=_now)
    phase_start_time: datetime = field(default_factory=_now)

    def begin(self, phase: Phase) -> None:
        self.current_phase = phase
        self.phase_start_time = _now()

    def complete(self, phase: Phase) -> None:
        self.completed_phases.append(phase)
