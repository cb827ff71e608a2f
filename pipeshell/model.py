"""Value types for tokenized pipelines and their execution results."""

import os
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Iterator


class StageRole(Enum):
    """Position of a stage in a pipeline.

    Attributes:
        ONLY: Sole stage; nothing is redirected.
        FIRST: stdout goes to the next stage, stdin is inherited.
        MIDDLE: stdin and stdout are both pipe ends.
        LAST: stdin comes from the previous stage, stdout is inherited.
    """

    ONLY = auto()
    FIRST = auto()
    MIDDLE = auto()
    LAST = auto()

    @classmethod
    def for_index(cls, index: int, count: int) -> "StageRole":
        """Resolve the role of stage ``index`` in a pipeline of ``count`` stages."""
        if not 0 <= index < count:
            raise IndexError(f"stage {index} out of range for {count} stages")
        if count == 1:
            return cls.ONLY
        if index == 0:
            return cls.FIRST
        if index == count - 1:
            return cls.LAST
        return cls.MIDDLE

    @property
    def reads_pipe(self) -> bool:
        return self in (StageRole.MIDDLE, StageRole.LAST)

    @property
    def writes_pipe(self) -> bool:
        return self in (StageRole.FIRST, StageRole.MIDDLE)


@dataclass(frozen=True)
class CommandSet:
    """One pipeline stage: an executable name followed by its arguments."""

    argv: tuple[str, ...]

    def __post_init__(self) -> None:
        if not self.argv:
            raise ValueError("a command set needs at least the program name")

    @property
    def program(self) -> str:
        return self.argv[0]

    @property
    def args(self) -> tuple[str, ...]:
        return self.argv[1:]

    def __str__(self) -> str:
        return " ".join(self.argv)


@dataclass(frozen=True)
class Pipeline:
    """Ordered command sets for one input line.

    ``dropped_stages`` and ``dropped_args`` count what the tokenizer
    discarded when the line exceeded capacity.
    """

    stages: tuple[CommandSet, ...] = ()
    dropped_stages: int = 0
    dropped_args: int = 0

    def __len__(self) -> int:
        return len(self.stages)

    def __iter__(self) -> Iterator[CommandSet]:
        return iter(self.stages)

    def __getitem__(self, index: int) -> CommandSet:
        return self.stages[index]

    @property
    def pipe_count(self) -> int:
        """Number of pipes needed to connect the stages."""
        return max(len(self.stages) - 1, 0)

    @property
    def truncated(self) -> bool:
        return bool(self.dropped_stages or self.dropped_args)

    def roles(self) -> Iterator[tuple[int, StageRole, CommandSet]]:
        """Yield ``(index, role, stage)`` in stage order."""
        count = len(self.stages)
        for index, stage in enumerate(self.stages):
            yield index, StageRole.for_index(index, count), stage

    def __str__(self) -> str:
        return " | ".join(str(stage) for stage in self.stages)


@dataclass
class ExecutionResult:
    """Result of running a pipeline to completion."""

    pipeline: Pipeline
    pids: list[int] = field(default_factory=list)
    statuses: list[int] = field(default_factory=list)
    pipes_created: int = 0

    @property
    def reaped(self) -> int:
        return len(self.statuses)

    @property
    def return_codes(self) -> list[int]:
        """Exit codes per stage; negative values are terminating signals."""
        return [os.waitstatus_to_exitcode(status) for status in self.statuses]
