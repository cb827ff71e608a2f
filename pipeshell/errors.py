"""Exception types raised by the pipeline engine."""

from typing import Optional


class PipeshellError(Exception):
    """Base exception for pipeline construction and execution errors."""


class CapacityError(PipeshellError):
    """Raised when a line asks for more than the configured capacity."""


class SegmentOverflowError(CapacityError):
    """Raised when a line has more pipeline stages than allowed."""

    def __init__(self, submitted: int, limit: int):
        self.submitted = submitted
        self.limit = limit
        super().__init__(
            f"too many commands: {submitted} submitted, at most {limit} allowed"
        )


class ArgumentOverflowError(CapacityError):
    """Raised when a single command has more arguments than allowed."""

    def __init__(self, program: str, submitted: int, limit: int):
        self.program = program
        self.submitted = submitted
        self.limit = limit
        super().__init__(
            f"too many arguments for '{program}': "
            f"{submitted} submitted, at most {limit} allowed"
        )


class PipeCapacityError(CapacityError):
    """Raised when a pipeline needs more pipes than the builder may open."""

    def __init__(self, needed: int, limit: int):
        self.needed = needed
        self.limit = limit
        super().__init__(f"too many pipes: {needed} needed, at most {limit} allowed")


class PipeCreationError(PipeshellError):
    """Raised when the OS refuses to create a pipe."""


class ForkError(PipeshellError):
    """Raised when a child process cannot be created.

    Attributes:
        stage: Index of the stage whose fork failed.
        reaped: Pids of stages that were already running and have been
            terminated and reaped before this error was raised.
    """

    def __init__(
        self, message: str, stage: int = 0, reaped: Optional[tuple[int, ...]] = None
    ):
        self.stage = stage
        self.reaped = reaped or ()
        super().__init__(message)


class InputUnavailableError(PipeshellError):
    """Raised when the line source is exhausted or cannot be read."""
