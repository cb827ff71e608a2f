"""pipeshell - Run 'cmd1 | cmd2 | ... | cmdN' lines as connected child processes."""

from pipeshell.config import Limits, OverflowPolicy, clear_config_cache, get_limits
from pipeshell.errors import (
    ArgumentOverflowError,
    CapacityError,
    ForkError,
    InputUnavailableError,
    PipeCapacityError,
    PipeCreationError,
    PipeshellError,
    SegmentOverflowError,
)
from pipeshell.executor import execute_line, run_pipeline, run_single
from pipeshell.model import CommandSet, ExecutionResult, Pipeline, StageRole
from pipeshell.tokenizer import tokenize

__version__ = "0.1.0"
__all__ = [
    "tokenize",
    "execute_line",
    "run_single",
    "run_pipeline",
    # Model
    "CommandSet",
    "Pipeline",
    "StageRole",
    "ExecutionResult",
    # Configuration
    "Limits",
    "OverflowPolicy",
    "get_limits",
    "clear_config_cache",
    # Errors
    "PipeshellError",
    "CapacityError",
    "SegmentOverflowError",
    "ArgumentOverflowError",
    "PipeCapacityError",
    "PipeCreationError",
    "ForkError",
    "InputUnavailableError",
]
