"""Process image replacement for freshly forked children."""

import os
import signal
from contextlib import contextmanager
from typing import Iterator, Sequence

from pipeshell.config import EXEC_FAILURE_STATUS


def describe_exec_failure(argv: Sequence[str], exc: BaseException) -> str:
    """Format the one-line report for a program that could not be loaded."""
    program = argv[0] if argv else "<empty>"
    if isinstance(exc, FileNotFoundError):
        return f"{program}: command not found"
    if isinstance(exc, OSError) and exc.strerror:
        return f"{program}: {exc.strerror}"
    return f"{program}: {exc}"


def report(message: str) -> None:
    """Write a message straight to file descriptor 2.

    Children use this instead of logging: the parent's handlers and
    buffers must not be touched between fork and exec.
    """
    try:
        os.write(2, (message + "\n").encode(errors="replace"))
    except OSError:
        pass


def restore_signals() -> None:
    """Reset signals the interpreter ignores back to their defaults.

    Ignored dispositions survive exec; a stage writing to a closed pipe
    must be killed by SIGPIPE like it would be under a shell.
    """
    for name in ("SIGPIPE", "SIGXFSZ"):
        signum = getattr(signal, name, None)
        if signum is not None:
            signal.signal(signum, signal.SIG_DFL)


def exec_image(argv: Sequence[str]) -> None:
    """
    Replace the current process image with ``argv[0]``.

    The program is located through the PATH search and receives the full
    argument vector. Only call this inside a forked child.

    Args:
        argv: Program name followed by its arguments.

    Raises:
        OSError: If the program cannot be found or executed. On success
            this function never returns.
    """
    if not argv:
        raise ValueError("cannot exec an empty argument vector")
    restore_signals()
    os.execvp(argv[0], list(argv))


@contextmanager
def child_process(argv: Sequence[str]) -> Iterator[None]:
    """
    Guard the code a forked child runs before exec.

    Any exception raised inside the block is reported on stderr and the
    child exits with EXEC_FAILURE_STATUS. If the block finishes without
    exec'ing, the child exits the same way. Either way control never
    returns to the parent's stack frames in the child.

    Args:
        argv: Argument vector of the stage, used in the report.
    """
    try:
        yield
    except BaseException as exc:  # noqa: BLE001
        report(describe_exec_failure(argv, exc))
    finally:
        os._exit(EXEC_FAILURE_STATUS)
