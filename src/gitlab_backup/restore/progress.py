"""User-visible progress reporting for restore runs."""

from __future__ import annotations

from typing import Protocol

import structlog

from .types import Phase

_PHASE_MESSAGES = {
    Phase.VALIDATION: "Validating project emptiness",
    Phase.DOWNLOAD: "Downloading archive",
    Phase.EXTRACTION: "Extracting archive",
    Phase.IMPORT: "Importing project",
    Phase.CLEANUP: "Cleaning up temporary files",
    Phase.COMPLETE: "Restore complete",
}


def phase_message(phase: Phase) -> str:
    return _PHASE_MESSAGES.get(phase, phase.value)


class ProgressReporter(Protocol):
    def start_phase(self, phase: Phase) -> None: ...

    def complete_phase(self, phase: Phase) -> None: ...

    def fail_phase(self, phase: Phase, error: str) -> None: ...

    def skip_phase(self, phase: Phase, reason: str) -> None: ...


class LoggingProgressReporter:
    """Reports phase transitions as structlog events."""

    def __init__(self, logger: structlog.typing.FilteringBoundLogger | None = None) -> None:
        self._log = logger or structlog.get_logger("gitlab_backup.restore")

    def start_phase(self, phase: Phase) -> None:
        self._log.info("restore_phase_started", phase=phase.value, message=phase_message(phase))

    def complete_phase(self, phase: Phase) -> None:
        self._log.info("restore_phase_completed", phase=phase.value, message=phase_message(phase))

    def fail_phase(self, phase: Phase, error: str) -> None:
        self._log.error(
            "restore_phase_failed", phase=phase.value, message=phase_message(phase), error=error
        )

    def skip_phase(self, phase: Phase, reason: str) -> None:
        self._log.info(
            "restore_phase_skipped", phase=phase.value, message=phase_message(phase), reason=reason
        )

