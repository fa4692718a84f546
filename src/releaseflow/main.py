"""Main CLI entry point for releaseflow.

This module provides the Typer application run as the GitHub Action's entry
point, and a helper command for checking how branches are classified.

Usage:
    releaseflow run --dir /github/workspace
    releaseflow classify env/staging

Exit codes:
    0  the workflow succeeded (or the push was for a tag)
    1  the workflow failed
    78 the branch has no open pull request yet
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated

import typer
from pydantic import ValidationError
from rich.console import Console

from releaseflow.config import LoggingConfig, RunnerSettings, load_action_config
from releaseflow.errors import ErrorKind, WorkflowError
from releaseflow.logging import get_logger, setup_logging
from releaseflow.mode import classify
from releaseflow.orchestrator.runner import WorkflowRunner

app = typer.Typer(
    name="releaseflow",
    help="Releaseflow: branch-based release workflow",
    no_args_is_help=True,
)

console = Console()
logger = get_logger(__name__)

EXIT_FAILURE = 1
EXIT_NO_PULL_REQUEST = 78


def _exit_code(error: WorkflowError) -> int:
    if error.kind is ErrorKind.NO_PULL_REQUEST:
        return EXIT_NO_PULL_REQUEST
    return EXIT_FAILURE


@app.callback()
def main_callback(
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable debug logging"),
    ] = False,
) -> None:
    """Configure logging for all commands.

    Args:
        verbose: Enable debug-level logging
    """
    try:
        config = LoggingConfig(level="DEBUG") if verbose else LoggingConfig()
    except ValidationError as e:
        console.print(f"[red]Error loading logging configuration:[/red] {e}")
        raise typer.Exit(code=EXIT_FAILURE)
    setup_logging(config)


@app.command()
def run(
    directory: Annotated[
        Path,
        typer.Option(
            "--dir",
            "-d",
            help="Root of the checked out repository",
            file_okay=False,
        ),
    ] = Path("."),
) -> None:
    """Run the workflow for the push event described by the environment."""
    runner = WorkflowRunner(RunnerSettings(), repo_path=directory.resolve())
    try:
        asyncio.run(runner.run())
    except WorkflowError as e:
        logger.error(e.message)
        raise typer.Exit(code=_exit_code(e))
    except Exception as e:
        logger.error(str(e) or type(e).__name__)
        raise typer.Exit(code=EXIT_FAILURE)


@app.command(name="classify")
def classify_branch(
    branch: Annotated[str, typer.Argument(help="Branch name, without refs/heads/")],
) -> None:
    """Print the workflow mode of a branch under the CONFIG_FILE configuration."""
    try:
        config = load_action_config(RunnerSettings())
        mode = classify(config, branch)
    except WorkflowError as e:
        logger.error(e.message)
        raise typer.Exit(code=_exit_code(e))
    console.print(mode.value)


if __name__ == "__main__":
    app()
