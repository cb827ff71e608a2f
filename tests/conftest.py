import os
from pathlib import Path

import pytest

from pipeshell.config import clear_config_cache

_REAL_FORK = os.fork
_REAL_PIPE = os.pipe


@pytest.fixture(autouse=True)
def clean_config(monkeypatch: pytest.MonkeyPatch):
    """
    Drop PIPESHELL_* overrides from the environment and clear cached settings.
    Automatically applied to all tests.
    """
    for name in list(os.environ):
        if name.startswith("PIPESHELL_"):
            monkeypatch.delenv(name)
    clear_config_cache()
    yield
    clear_config_cache()


class CallSpy:
    """Counts calls to a wrapped function, optionally failing on one call."""

    def __init__(self, real, fail_on=None, error=None):
        self.real = real
        self.fail_on = fail_on
        self.error = error
        self.calls = 0
        self.results = []

    def __call__(self, *args, **kwargs):
        self.calls += 1
        if self.fail_on is not None and self.calls == self.fail_on:
            raise self.error
        result = self.real(*args, **kwargs)
        self.results.append(result)
        return result


@pytest.fixture
def fork_spy(monkeypatch: pytest.MonkeyPatch) -> CallSpy:
    """Wrap os.fork; set ``fail_on``/``error`` on the spy to inject a failure."""
    spy = CallSpy(_REAL_FORK)
    monkeypatch.setattr(os, "fork", spy)
    return spy


@pytest.fixture
def pipe_spy(monkeypatch: pytest.MonkeyPatch) -> CallSpy:
    """Wrap os.pipe; set ``fail_on``/``error`` on the spy to inject a failure."""
    spy = CallSpy(_REAL_PIPE)
    monkeypatch.setattr(os, "pipe", spy)
    return spy


@pytest.fixture
def open_fds():
    """Return a callable listing this process's open descriptors (Linux only)."""
    fd_dir = Path("/proc/self/fd")
    if not fd_dir.is_dir():
        pytest.skip("/proc/self/fd is not available")

    def _list() -> set[str]:
        return set(os.listdir(fd_dir))

    return _list
