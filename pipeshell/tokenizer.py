"""Split an input line into pipeline stages and argument vectors."""

import logging
from typing import Optional

from pipeshell.config import Limits, OverflowPolicy, get_limits, get_overflow_policy
from pipeshell.errors import ArgumentOverflowError, SegmentOverflowError
from pipeshell.model import CommandSet, Pipeline

logger = logging.getLogger(__name__)

PIPE_DELIMITER = "|"
ARG_DELIMITER = " "


def split_fields(text: str, delimiter: str, limit: int) -> tuple[list[str], int]:
    """
    Split text on a delimiter, skipping empty fields.

    Runs of the delimiter count as one separator and leading or trailing
    delimiters produce nothing, so ``"  a   b "`` split on spaces gives
    ``["a", "b"]``.

    Args:
        text: Text to split.
        delimiter: Single-character delimiter.
        limit: Maximum number of fields to keep.

    Returns:
        Tuple of (kept fields, number of fields dropped past the limit).
    """
    fields = [part for part in text.split(delimiter) if part]
    return fields[:limit], max(len(fields) - limit, 0)


def tokenize(
    line: str,
    limits: Optional[Limits] = None,
    policy: Optional[OverflowPolicy] = None,
) -> Pipeline:
    """
    Tokenize one input line into a Pipeline.

    The line is split on ``|`` into stages and each stage on single spaces
    into arguments. Empty stages and empty arguments are skipped. A blank
    line, or one made only of delimiters, gives a Pipeline of length 0.

    Args:
        line: Raw input line. One trailing newline is ignored.
        limits: Capacities to apply. Defaults to get_limits().
        policy: What to do with stages or arguments beyond capacity.
            Defaults to get_overflow_policy().

    Returns:
        Pipeline with independent string tokens.

    Raises:
        SegmentOverflowError: Too many stages under OverflowPolicy.REJECT.
        ArgumentOverflowError: Too many arguments under OverflowPolicy.REJECT.

    Example:
        >>> tokenize("ls -l | wc -l").stages
        (CommandSet(argv=('ls', '-l')), CommandSet(argv=('wc', '-l')))
    """
    limits = limits or get_limits()
    policy = policy or get_overflow_policy()

    if line.endswith("\n"):
        line = line[:-1]
        if line.endswith("\r"):
            line = line[:-1]

    # Segments holding only spaces tokenize to nothing and are not stages.
    segments = [
        segment
        for segment in line.split(PIPE_DELIMITER)
        if split_fields(segment, ARG_DELIMITER, 1)[0]
    ]
    dropped_stages = max(len(segments) - limits.max_stages, 0)
    if dropped_stages and policy is OverflowPolicy.REJECT:
        raise SegmentOverflowError(len(segments), limits.max_stages)
    segments = segments[: limits.max_stages]

    stages = []
    dropped_args = 0
    for segment in segments:
        argv, dropped = split_fields(segment, ARG_DELIMITER, limits.max_args)
        if dropped and policy is OverflowPolicy.REJECT:
            raise ArgumentOverflowError(argv[0], len(argv) + dropped, limits.max_args)
        dropped_args += dropped
        stages.append(CommandSet(argv=tuple(argv)))

    pipeline = Pipeline(
        stages=tuple(stages),
        dropped_stages=dropped_stages,
        dropped_args=dropped_args,
    )
    if pipeline.truncated:
        logger.warning(
            "Input truncated to capacity: dropped %d stage(s) and %d argument(s)",
            dropped_stages,
            dropped_args,
        )
    return pipeline
