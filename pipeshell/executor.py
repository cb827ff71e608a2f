"""Fork/exec execution of tokenized pipelines."""

import logging
import os
import signal
import sys
import time
from typing import Optional

from pipeshell.config import UNWIND_GRACE_SECONDS, Limits, OverflowPolicy, get_limits
from pipeshell.errors import ForkError, PipeCapacityError
from pipeshell.loader import child_process, exec_image
from pipeshell.model import CommandSet, ExecutionResult, Pipeline
from pipeshell.pipes import PipeSet
from pipeshell.tokenizer import tokenize

logger = logging.getLogger(__name__)


def _fork(stage: CommandSet, index: int) -> int:
    """Fork a child for ``stage``, flushing Python's buffers first."""
    sys.stdout.flush()
    sys.stderr.flush()
    try:
        pid = os.fork()
    except OSError as exc:
        raise ForkError(
            f"fork error for '{stage.program}': {exc.strerror or exc}", stage=index
        ) from exc
    if pid:
        logger.debug("Forked stage %d (%s) as pid %d", index, stage, pid)
    return pid


def _reap(pid: int) -> int:
    """Block until ``pid`` terminates and return its raw wait status."""
    _, status = os.waitpid(pid, 0)
    logger.debug("Reaped pid %d with status %d", pid, status)
    return status


def _reap_all(result: ExecutionResult) -> None:
    """
    Reap every forked stage, recording statuses in fork order.

    A KeyboardInterrupt while waiting does not abandon the remaining
    children: the wait is resumed and the interrupt is re-raised once
    every stage has been reaped.
    """
    interrupted = False
    for pid in result.pids:
        while True:
            try:
                status = _reap(pid)
            except KeyboardInterrupt:
                interrupted = True
                logger.debug("Interrupted while waiting for pid %d; still waiting", pid)
                continue
            break
        result.statuses.append(status)
    if interrupted:
        raise KeyboardInterrupt


def _signal(pid: int, signum: int) -> None:
    try:
        os.kill(pid, signum)
    except ProcessLookupError:
        pass


def _unwind(result: ExecutionResult) -> tuple[int, ...]:
    """
    Terminate and reap every stage forked so far.

    Stages get SIGTERM and UNWIND_GRACE_SECONDS to exit; any still running
    after that are sent SIGKILL.
    """
    for pid in result.pids:
        _signal(pid, signal.SIGTERM)

    statuses: dict[int, int] = {}
    pending = list(result.pids)
    deadline = time.monotonic() + UNWIND_GRACE_SECONDS
    while pending:
        for pid in list(pending):
            reaped, status = os.waitpid(pid, os.WNOHANG)
            if reaped:
                statuses[pid] = status
                pending.remove(pid)
        if not pending or time.monotonic() >= deadline:
            break
        time.sleep(0.01)

    for pid in pending:
        logger.warning("Stage pid %d still running after SIGTERM; sending SIGKILL", pid)
        _signal(pid, signal.SIGKILL)
        statuses[pid] = _reap(pid)

    result.statuses.extend(statuses[pid] for pid in result.pids)
    return tuple(result.pids)


def run_single(command: CommandSet) -> ExecutionResult:
    """
    Run one command with no piping and wait for it.

    Args:
        command: The command set to run.

    Returns:
        ExecutionResult with one pid and one wait status. No pipe is
        created.

    Raises:
        ForkError: If the child process cannot be created.
    """
    result = ExecutionResult(pipeline=Pipeline(stages=(command,)))
    pid = _fork(command, 0)
    if pid == 0:
        with child_process(command.argv):
            exec_image(command.argv)
    result.pids.append(pid)
    _reap_all(result)
    return result


def run_pipeline(pipeline: Pipeline, limits: Optional[Limits] = None) -> ExecutionResult:
    """
    Run a multi-stage pipeline, one process per stage, and wait for all.

    All N-1 pipes are created before the first fork. Stages are forked in
    order; each child wires its pipe ends onto stdin/stdout, closes every
    pipe descriptor and execs. The parent closes every descriptor once the
    forks are done and reaps each child.

    If a fork fails after earlier stages are running, all pipes are closed,
    those stages are sent SIGTERM (SIGKILL after UNWIND_GRACE_SECONDS) and
    reaped, and ForkError is raised.

    Args:
        pipeline: Pipeline with at least two stages.
        limits: Capacities to apply. Defaults to get_limits().

    Returns:
        ExecutionResult with one pid and one wait status per stage.

    Raises:
        ValueError: If the pipeline has fewer than two stages.
        PipeCapacityError: If more pipes are needed than allowed.
        PipeCreationError: If the OS cannot create a pipe.
        ForkError: If a child process cannot be created.
        KeyboardInterrupt: Re-raised after every stage has been reaped.
    """
    limits = limits or get_limits()
    if len(pipeline) < 2:
        raise ValueError("run_pipeline() needs at least two stages; use run_single()")
    if pipeline.pipe_count > limits.max_pipes:
        raise PipeCapacityError(pipeline.pipe_count, limits.max_pipes)

    result = ExecutionResult(pipeline=pipeline)
    with PipeSet.open(pipeline.pipe_count) as pipes:
        result.pipes_created = len(pipes)
        for index, role, stage in pipeline.roles():
            try:
                pid = _fork(stage, index)
            except ForkError as exc:
                pipes.close()
                logger.error(
                    "Fork failed at stage %d of %d; terminating %d running stage(s)",
                    index,
                    len(pipeline),
                    len(result.pids),
                )
                reaped = _unwind(result)
                raise ForkError(str(exc), stage=index, reaped=reaped) from exc
            if pid == 0:
                with child_process(stage.argv):
                    pipes.attach(index, role)
                    exec_image(stage.argv)
            result.pids.append(pid)

    _reap_all(result)
    return result


def execute_line(
    line: str,
    limits: Optional[Limits] = None,
    policy: Optional[OverflowPolicy] = None,
) -> Optional[ExecutionResult]:
    """
    Tokenize a line and run it.

    Args:
        line: Raw input line.
        limits: Capacities to apply. Defaults to get_limits().
        policy: Overflow policy for the tokenizer.

    Returns:
        ExecutionResult, or None if the line holds no command.

    Raises:
        PipeshellError: On capacity, pipe or fork failures.

    Example:
        >>> execute_line("echo hello | tr a-z A-Z").return_codes
        HELLO
        [0, 0]
    """
    limits = limits or get_limits()
    pipeline = tokenize(line, limits=limits, policy=policy)
    if len(pipeline) == 0:
        return None
    if len(pipeline) == 1:
        return run_single(pipeline[0])
    return run_pipeline(pipeline, limits=limits)
