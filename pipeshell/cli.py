"""Command-line entry point for pipeshell."""

import logging
from typing import Annotated, Optional

import typer

from pipeshell.config import Limits, OverflowPolicy, get_limits, get_overflow_policy
from pipeshell.errors import PipeshellError
from pipeshell.executor import execute_line
from pipeshell.repl import ReadLoop

_LOGGING_CONFIGURED = False

logger = logging.getLogger(__name__)

app = typer.Typer(
    help="Run command pipelines such as 'ls -l | grep py | wc -l'.",
    context_settings={"help_option_names": ["-h", "--help"]},
    no_args_is_help=True,
)

MaxStagesOption = Annotated[
    Optional[int],
    typer.Option("--max-stages", min=1, help="Maximum number of pipeline stages."),
]
MaxArgsOption = Annotated[
    Optional[int],
    typer.Option("--max-args", min=1, help="Maximum arguments per stage."),
]
StrictOption = Annotated[
    bool,
    typer.Option(
        "--strict",
        help="Reject lines over capacity instead of truncating them.",
    ),
]
VerboseOption = Annotated[
    bool,
    typer.Option("-v", "--verbose", help="Log forks, pipes and reaps."),
]


def configure_logging(level: int = logging.WARNING) -> None:
    """Configure logging once for the CLI.

    Safe to call multiple times; only the first call configures.

    Args:
        level: Logging level (defaults to WARNING).
    """
    global _LOGGING_CONFIGURED
    if _LOGGING_CONFIGURED:
        return

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    _LOGGING_CONFIGURED = True


def _resolve_settings(
    max_stages: Optional[int], max_args: Optional[int], strict: bool
) -> tuple[Limits, OverflowPolicy]:
    """Combine CLI options with environment settings."""
    try:
        limits = get_limits().replace(max_stages=max_stages, max_args=max_args)
        policy = OverflowPolicy.REJECT if strict else get_overflow_policy()
    except ValueError as exc:
        typer.secho(f"✗ invalid configuration: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(2) from exc
    return limits, policy


@app.command("shell")
def shell(
    prompt: Annotated[
        Optional[str],
        typer.Option("--prompt", help="Prompt shown before each line."),
    ] = None,
    max_stages: MaxStagesOption = None,
    max_args: MaxArgsOption = None,
    strict: StrictOption = False,
    verbose: VerboseOption = False,
) -> None:
    """Start the interactive read-loop.

    Exits with status 0 on 'exit' or 'quit' and status 1 when input ends.
    """
    configure_logging(logging.DEBUG if verbose else logging.WARNING)
    limits, policy = _resolve_settings(max_stages, max_args, strict)
    status = ReadLoop(prompt=prompt, limits=limits, policy=policy).run()
    raise typer.Exit(status)


@app.command("run")
def run(
    line: Annotated[str, typer.Argument(help="Pipeline to run, quoted as one argument.")],
    max_stages: MaxStagesOption = None,
    max_args: MaxArgsOption = None,
    strict: StrictOption = False,
    verbose: VerboseOption = False,
) -> None:
    """Run a single pipeline line and exit."""
    configure_logging(logging.DEBUG if verbose else logging.WARNING)
    limits, policy = _resolve_settings(max_stages, max_args, strict)
    try:
        execute_line(line, limits=limits, policy=policy)
    except PipeshellError as exc:
        logger.debug("Pipeline failed", exc_info=True)
        typer.secho(f"✗ {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1) from exc


def main() -> None:
    """Main entry point for the pipeshell console script."""
    app()


if __name__ == "__main__":
    main()
