"""CI command execution.

Each configured command is run with ``sh -c`` in the repository root. Its
combined stdout and stderr is logged line by line while the command runs, so
progress is visible even when a later command fails.
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from pathlib import Path

from releaseflow.errors import ErrorKind, WorkflowError
from releaseflow.logging import get_logger

logger = get_logger(__name__)

# Bytes read from a command's output per chunk
_CHUNK_SIZE = 64 * 1024


def _log_output_line(raw: bytes) -> None:
    logger.info(raw.decode("utf-8", errors="replace").rstrip("\r"))


async def run_command(command: str, cwd: Path) -> int:
    """Run a shell command, streaming its output to the log.

    Output is read in fixed-size chunks and logged one complete line at a
    time, so lines of any length are passed through. If reading or logging
    fails the child process is killed before the error propagates.

    Args:
        command: Shell command line
        cwd: Working directory

    Returns:
        The command's exit code
    """
    proc = await asyncio.create_subprocess_exec(
        "sh",
        "-c",
        command,
        cwd=str(cwd),
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.STDOUT,
    )
    if proc.stdout is None:
        raise WorkflowError(f'Command "{command}" has no output pipe', ErrorKind.INTERNAL)

    completed = False
    try:
        buffer = b""
        while True:
            chunk = await proc.stdout.read(_CHUNK_SIZE)
            if not chunk:
                break
            *lines, buffer = (buffer + chunk).split(b"\n")
            for line in lines:
                _log_output_line(line)
        if buffer:
            _log_output_line(buffer)
        completed = True
    finally:
        if not completed and proc.returncode is None:
            logger.warning("ci_command_killed", command=command, pid=proc.pid)
            with contextlib.suppress(ProcessLookupError):
                proc.kill()
            await proc.wait()

    return await proc.wait()


async def run_ci_commands(commands: list[str], cwd: Path) -> None:
    """Run CI commands in order, stopping at the first failure.

    Args:
        commands: Shell commands from the ``ci`` configuration option
        cwd: Repository root

    Raises:
        WorkflowError: If a command exits non-zero
    """
    for command in commands:
        start_time = time.monotonic()
        logger.info("ci_command_started", command=command)

        code = await run_command(command, cwd)
        if code != 0:
            raise WorkflowError(
                f'Command "{command}" exited with exit code {code}',
                ErrorKind.CI_COMMAND,
            )

        logger.info(
            "ci_command_succeeded",
            command=command,
            duration_seconds=round(time.monotonic() - start_time, 2),
        )
