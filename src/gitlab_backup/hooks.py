"""Pre- and post-backup hook commands."""

from __future__ import annotations

import asyncio
import shlex
from pathlib import Path

import structlog

from .exceptions import HookError

logger = structlog.get_logger()

INPUT_FILE_TOKEN = "%INPUTFILE%"


def hook_argv(command: str, input_file: Path | str | None = None) -> list[str]:
    """Split ``command`` shell-style and substitute ``%INPUTFILE%`` in each argument.

    The command is never passed to a shell, so an archive path containing spaces
    stays a single argument.
    """
    try:
        argv = shlex.split(command)
    except ValueError as e:
        raise HookError(command, f"cannot parse command: {e}") from e
    if input_file is not None:
        argv = [arg.replace(INPUT_FILE_TOKEN, str(input_file)) for arg in argv]
    return argv


async def run_hook(command: str, input_file: Path | str | None = None) -> None:
    """Run a hook command; raises :class:`HookError` on a non-zero exit."""
    argv = hook_argv(command, input_file)
    if not argv:
        return
    logger.info("hook_started", command=argv[0], input_file=str(input_file or ""))
    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
    except OSError as e:
        raise HookError(command, str(e)) from e
    output, _ = await proc.communicate()
    if proc.returncode != 0:
        tail = output.decode(errors="replace").strip()[-500:]
        message = f"exit status {proc.returncode}"
        raise HookError(command, f"{message}: {tail}" if tail else message)
    logger.info("hook_finished", command=argv[0])
