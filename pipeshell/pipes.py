"""Pipe handles and the scoped set of pipes owned by the pipeline builder."""

import fcntl
import logging
import os
from typing import Iterator, Optional

from pipeshell.errors import PipeCreationError
from pipeshell.model import StageRole

logger = logging.getLogger(__name__)

# Pipe ends never occupy stdin, stdout or stderr.
LOWEST_PIPE_FD = 3


def _lift(fd: int) -> int:
    """Move ``fd`` to the lowest free descriptor >= LOWEST_PIPE_FD."""
    if fd >= LOWEST_PIPE_FD:
        return fd
    try:
        lifted = fcntl.fcntl(fd, fcntl.F_DUPFD, LOWEST_PIPE_FD)
    finally:
        os.close(fd)
    os.set_inheritable(lifted, False)
    return lifted


class Pipe:
    """One OS pipe with named read and write ends.

    Closing is idempotent and each end is closed at most once.
    """

    def __init__(self, read_fd: int, write_fd: int):
        self.read_fd: Optional[int] = read_fd
        self.write_fd: Optional[int] = write_fd

    @classmethod
    def open(cls) -> "Pipe":
        """Create a new pipe.

        When the process started with a standard descriptor closed, the OS
        hands out that slot first; such ends are moved above fd 2 so that
        wiring a stage onto stdin/stdout never clobbers another pipe end.

        Raises:
            PipeCreationError: If the OS cannot allocate the pipe.
        """
        try:
            read_fd, write_fd = os.pipe()
        except OSError as exc:
            raise PipeCreationError(f"pipe error: {exc.strerror or exc}") from exc
        try:
            read_fd = _lift(read_fd)
        except OSError as exc:
            os.close(write_fd)
            raise PipeCreationError(f"pipe error: {exc.strerror or exc}") from exc
        try:
            write_fd = _lift(write_fd)
        except OSError as exc:
            os.close(read_fd)
            raise PipeCreationError(f"pipe error: {exc.strerror or exc}") from exc
        return cls(read_fd, write_fd)

    @property
    def closed(self) -> bool:
        return self.read_fd is None and self.write_fd is None

    def close(self) -> None:
        """Close both ends that are still open."""
        read_fd, self.read_fd = self.read_fd, None
        write_fd, self.write_fd = self.write_fd, None
        for fd in (read_fd, write_fd):
            if fd is not None:
                os.close(fd)

    def __enter__(self) -> "Pipe":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"Pipe(read_fd={self.read_fd}, write_fd={self.write_fd})"


class PipeSet:
    """
    The N-1 pipes connecting an N-stage pipeline.

    Used as a context manager by the parent: every descriptor is closed when
    the block exits, whether construction succeeded or failed.

    Example:
        >>> with PipeSet.open(2) as pipes:
        ...     len(pipes.fds())
        4
    """

    def __init__(self, pipes: Optional[list[Pipe]] = None):
        self.pipes: list[Pipe] = pipes or []

    @classmethod
    def open(cls, count: int) -> "PipeSet":
        """
        Create ``count`` pipes up front, in stage order.

        If any creation fails the pipes made so far are closed before the
        error propagates.

        Raises:
            PipeCreationError: If the OS cannot allocate a pipe.
        """
        pipe_set = cls()
        try:
            for _ in range(count):
                pipe_set.pipes.append(Pipe.open())
        except PipeCreationError:
            logger.error(
                "Pipe allocation failed after %d of %d pipes",
                len(pipe_set.pipes),
                count,
            )
            pipe_set.close()
            raise
        logger.debug("Opened %d pipe(s): %s", count, pipe_set.fds())
        return pipe_set

    def __len__(self) -> int:
        return len(self.pipes)

    def __iter__(self) -> Iterator[Pipe]:
        return iter(self.pipes)

    def __getitem__(self, index: int) -> Pipe:
        return self.pipes[index]

    def fds(self) -> list[int]:
        """Every descriptor still open, read end before write end."""
        return [
            fd
            for pipe in self.pipes
            for fd in (pipe.read_fd, pipe.write_fd)
            if fd is not None
        ]

    def ends_for(self, index: int, role: StageRole) -> tuple[Optional[int], Optional[int]]:
        """
        Return the descriptors stage ``index`` uses as (stdin, stdout).

        None means the stage keeps the descriptor it inherited.
        """
        stdin_fd = self.pipes[index - 1].read_fd if role.reads_pipe else None
        stdout_fd = self.pipes[index].write_fd if role.writes_pipe else None
        return stdin_fd, stdout_fd

    def attach(self, index: int, role: StageRole) -> None:
        """
        Wire stage ``index`` onto stdin/stdout, then close every pipe.

        Runs in the child. Every inherited pipe descriptor is closed, the
        duplicated ones included, otherwise downstream readers never see
        end-of-stream.
        """
        stdin_fd, stdout_fd = self.ends_for(index, role)
        if stdin_fd is not None:
            os.dup2(stdin_fd, 0)
        if stdout_fd is not None:
            os.dup2(stdout_fd, 1)
        self.close()

    def close(self) -> None:
        """Close every pipe end still open."""
        for pipe in self.pipes:
            pipe.close()

    def __enter__(self) -> "PipeSet":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
