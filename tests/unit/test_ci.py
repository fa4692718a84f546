"""Unit tests for CI command execution."""

from __future__ import annotations

import asyncio
from pathlib import Path
from unittest.mock import patch

import pytest

from releaseflow.errors import ErrorKind, WorkflowError
from releaseflow.pipeline import ci
from releaseflow.pipeline.ci import run_ci_commands, run_command


@pytest.mark.asyncio
async def test_run_command_streams_lines(tmp_path: Path) -> None:
    with patch.object(ci, "logger") as logger:
        code = await run_command("echo one; echo two >&2; exit 3", tmp_path)

    assert code == 3
    logged = [call.args[0] for call in logger.info.call_args_list]
    assert logged == ["one", "two"]


@pytest.mark.asyncio
async def test_run_command_uses_cwd(tmp_path: Path) -> None:
    await run_command("echo hello > out.txt", tmp_path)
    assert (tmp_path / "out.txt").read_text() == "hello\n"


@pytest.mark.asyncio
async def test_commands_run_in_order(tmp_path: Path) -> None:
    await run_ci_commands(["echo a >> log.txt", "echo b >> log.txt"], tmp_path)
    assert (tmp_path / "log.txt").read_text() == "a\nb\n"


@pytest.mark.asyncio
async def test_failure_stops_remaining_commands(tmp_path: Path) -> None:
    with pytest.raises(WorkflowError) as exc_info:
        await run_ci_commands(["exit 2", "touch never.txt"], tmp_path)

    assert exc_info.value.message == 'Command "exit 2" exited with exit code 2'
    assert exc_info.value.kind is ErrorKind.CI_COMMAND
    assert not (tmp_path / "never.txt").exists()


@pytest.mark.asyncio
async def test_run_command_streams_line_longer_than_chunk(tmp_path: Path) -> None:
    command = "head -c 2100000 /dev/zero | tr '\\0' 'x'; echo; echo done; exit 0"
    with patch.object(ci, "logger") as logger:
        code = await run_command(command, tmp_path)

    assert code == 0
    logged = [call.args[0] for call in logger.info.call_args_list]
    assert logged == ["x" * 2100000, "done"]


@pytest.mark.asyncio
async def test_run_command_flushes_unterminated_line(tmp_path: Path) -> None:
    with patch.object(ci, "logger") as logger:
        code = await run_command("printf 'first\\nlast'", tmp_path)

    assert code == 0
    logged = [call.args[0] for call in logger.info.call_args_list]
    assert logged == ["first", "last"]


@pytest.mark.asyncio
async def test_run_command_kills_process_when_logging_fails(tmp_path: Path) -> None:
    with patch.object(ci, "logger") as logger:
        logger.info.side_effect = RuntimeError("log sink closed")
        with pytest.raises(RuntimeError, match="log sink closed"):
            await asyncio.wait_for(
                run_command("echo started; exec sleep 30", tmp_path), timeout=10
            )

    assert logger.warning.call_args.args == ("ci_command_killed",)
