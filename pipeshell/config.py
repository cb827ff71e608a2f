"""Capacity limits and runtime settings, with environment overrides."""

import os
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from typing import Optional

DEFAULT_PROMPT = "pipeShell > "

# Exit status of a child whose program could not be loaded.
EXEC_FAILURE_STATUS = 127

# Seconds stages get to exit after SIGTERM before SIGKILL when a
# pipeline is torn down.
UNWIND_GRACE_SECONDS = 1.0

EXIT_SENTINELS = frozenset({"exit", "quit"})


class OverflowPolicy(Enum):
    """What the tokenizer does with stages or arguments beyond capacity.

    Attributes:
        TRUNCATE: Drop the excess, record how much was dropped, log a warning.
        REJECT: Raise a CapacityError and run nothing.
    """

    TRUNCATE = "truncate"
    REJECT = "reject"


@dataclass(frozen=True)
class Limits:
    """Fixed capacities applied to every line."""

    max_stages: int = 8
    max_args: int = 8
    max_pipes: int = 7

    def __post_init__(self) -> None:
        for name in ("max_stages", "max_args"):
            if getattr(self, name) < 1:
                raise ValueError(f"{name} must be >= 1")
        if self.max_pipes < 0:
            raise ValueError("max_pipes must be >= 0")

    def replace(
        self,
        max_stages: Optional[int] = None,
        max_args: Optional[int] = None,
        max_pipes: Optional[int] = None,
    ) -> "Limits":
        """Return a copy with the given capacities changed.

        Raising ``max_stages`` without naming ``max_pipes`` keeps the pipe
        capacity at one less than the stage capacity, so that every stage
        count the tokenizer can produce is also one the builder can wire.
        """
        stages = self.max_stages if max_stages is None else max_stages
        if max_pipes is None:
            max_pipes = max(self.max_pipes, stages - 1)
        return Limits(
            max_stages=stages,
            max_args=self.max_args if max_args is None else max_args,
            max_pipes=max_pipes,
        )


def _int_from_env(name: str) -> Optional[int]:
    """Read an integer override from the environment, if set."""
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return None
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


@lru_cache(maxsize=1)
def get_limits() -> Limits:
    """
    Return the active capacity limits.

    Defaults are 8 stages, 8 arguments per stage and 7 pipes.
    Can be overridden with PIPESHELL_MAX_STAGES, PIPESHELL_MAX_ARGS
    and PIPESHELL_MAX_PIPES env vars.

    Raises:
        ValueError: If an override is not an integer or is out of range.
    """
    return Limits().replace(
        max_stages=_int_from_env("PIPESHELL_MAX_STAGES"),
        max_args=_int_from_env("PIPESHELL_MAX_ARGS"),
        max_pipes=_int_from_env("PIPESHELL_MAX_PIPES"),
    )


@lru_cache(maxsize=1)
def get_overflow_policy() -> OverflowPolicy:
    """
    Return the active overflow policy.

    Defaults to TRUNCATE. Can be overridden with PIPESHELL_OVERFLOW
    ("truncate" or "reject").
    """
    raw = os.environ.get("PIPESHELL_OVERFLOW")
    if not raw:
        return OverflowPolicy.TRUNCATE
    try:
        return OverflowPolicy(raw.strip().lower())
    except ValueError:
        supported = ", ".join(p.value for p in OverflowPolicy)
        raise ValueError(
            f"PIPESHELL_OVERFLOW must be one of: {supported}, got {raw!r}"
        ) from None


def get_prompt() -> str:
    """Return the read-loop prompt (PIPESHELL_PROMPT overrides the default)."""
    return os.environ.get("PIPESHELL_PROMPT", DEFAULT_PROMPT)


def clear_config_cache() -> None:
    """Clear cached settings.

    Use this after changing PIPESHELL_* environment variables so the
    next lookup re-reads them.

    Example:
        >>> from pipeshell.config import clear_config_cache
        >>> clear_config_cache()
    """
    get_limits.cache_clear()
    get_overflow_policy.cache_clear()
