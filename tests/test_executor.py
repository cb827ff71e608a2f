import errno
import os
import signal
import subprocess
import sys
import time
from pathlib import Path

import pytest

from pipeshell.config import EXEC_FAILURE_STATUS, Limits, OverflowPolicy
from pipeshell.errors import ForkError, PipeCapacityError, PipeCreationError
from pipeshell import executor
from pipeshell.executor import execute_line, run_pipeline, run_single
from pipeshell.model import CommandSet
from pipeshell.tokenizer import tokenize


@pytest.fixture
def waitpid_spy(monkeypatch: pytest.MonkeyPatch) -> list[int]:
    reaped: list[int] = []
    real_waitpid = os.waitpid

    def _waitpid(pid, options):
        result = real_waitpid(pid, options)
        if result[0]:
            reaped.append(result[0])
        return result

    monkeypatch.setattr(os, "waitpid", _waitpid)
    return reaped


@pytest.mark.integration
def test_single_command_takes_no_pipe(fork_spy, pipe_spy, waitpid_spy, capfd) -> None:
    result = execute_line("echo hello")

    assert capfd.readouterr().out == "hello\n"
    assert pipe_spy.calls == 0
    assert fork_spy.calls == 1
    assert result.pipes_created == 0
    assert result.return_codes == [0]
    assert waitpid_spy == result.pids


@pytest.mark.integration
def test_producer_consumer_sees_data_then_eof(capfd) -> None:
    start = time.monotonic()
    result = execute_line("printf hello | cat")

    assert time.monotonic() - start < 10
    assert capfd.readouterr().out == "hello"
    assert result.return_codes == [0, 0]


@pytest.mark.integration
def test_middle_stage_sees_eof_from_first(capfd) -> None:
    result = execute_line("printf a\\nb\\nc\\n | sort -r | tr a-z A-Z")

    assert capfd.readouterr().out == "C\nB\nA\n"
    assert result.return_codes == [0, 0, 0]


@pytest.mark.integration
def test_n_stages_use_n_minus_one_pipes(fork_spy, pipe_spy, waitpid_spy, capfd) -> None:
    result = execute_line("printf a\\nb\\nc\\n | cat | cat | cat | wc -l")

    assert pipe_spy.calls == 4
    assert fork_spy.calls == 5
    assert result.pipes_created == 4
    assert result.reaped == 5
    assert sorted(waitpid_spy) == sorted(result.pids)
    assert capfd.readouterr().out.strip() == "3"


@pytest.mark.integration
def test_max_stage_pipeline_runs(fork_spy, capfd) -> None:
    line = "echo x" + " | cat" * 7

    result = execute_line(line, limits=Limits())

    assert fork_spy.calls == 8
    assert result.reaped == 8
    assert capfd.readouterr().out == "x\n"


@pytest.mark.integration
def test_ninth_stage_is_truncated(fork_spy, pipe_spy, capfd) -> None:
    line = "echo x" + " | cat" * 7 + " | tr x y"

    result = execute_line(line, limits=Limits(), policy=OverflowPolicy.TRUNCATE)

    assert result.pipeline.dropped_stages == 1
    assert fork_spy.calls == 8
    assert pipe_spy.calls == 7
    assert capfd.readouterr().out == "x\n"


@pytest.mark.integration
def test_missing_middle_program_does_not_deadlock(waitpid_spy, capfd) -> None:
    start = time.monotonic()
    result = execute_line("printf abc | no-such-program-pipeshell | cat")

    assert time.monotonic() - start < 10
    assert len(waitpid_spy) == 3
    codes = result.return_codes
    assert codes[1] == EXEC_FAILURE_STATUS
    assert codes[2] == 0
    assert codes[0] in (0, 1, -signal.SIGPIPE)
    captured = capfd.readouterr()
    assert captured.out == ""
    assert "no-such-program-pipeshell: command not found" in captured.err


@pytest.mark.integration
def test_missing_single_program_exits_with_failure_status(capfd) -> None:
    result = run_single(CommandSet(("no-such-program-pipeshell", "arg")))

    assert result.return_codes == [EXEC_FAILURE_STATUS]
    assert "no-such-program-pipeshell: command not found" in capfd.readouterr().err


@pytest.mark.integration
def test_exit_status_is_collected_not_interpreted() -> None:
    result = execute_line("false")

    assert result.return_codes == [1]


@pytest.mark.integration
def test_parent_keeps_no_pipe_descriptor(open_fds, capfd) -> None:
    before = open_fds()
    execute_line("echo a | cat | cat")
    assert open_fds() == before


@pytest.mark.unit
def test_blank_line_does_nothing(fork_spy, pipe_spy) -> None:
    assert execute_line("   |  ") is None
    assert fork_spy.calls == 0
    assert pipe_spy.calls == 0


@pytest.mark.unit
def test_pipe_capacity_checked_before_any_side_effect(fork_spy, pipe_spy) -> None:
    limits = Limits(max_stages=8, max_args=8, max_pipes=1)

    with pytest.raises(PipeCapacityError) as excinfo:
        execute_line("a | b | c", limits=limits)

    assert excinfo.value.needed == 2
    assert pipe_spy.calls == 0
    assert fork_spy.calls == 0


@pytest.mark.unit
def test_pipe_creation_failure_starts_nothing(fork_spy, pipe_spy, open_fds) -> None:
    pipe_spy.fail_on = 2
    pipe_spy.error = OSError(errno.EMFILE, "Too many open files")
    before = open_fds()

    with pytest.raises(PipeCreationError):
        execute_line("a | b | c")

    assert fork_spy.calls == 0
    assert open_fds() == before


@pytest.mark.unit
def test_single_fork_failure_is_reported(fork_spy, waitpid_spy) -> None:
    fork_spy.fail_on = 1
    fork_spy.error = OSError(errno.EAGAIN, "Resource temporarily unavailable")

    with pytest.raises(ForkError, match="fork error for 'true'"):
        execute_line("true")

    assert waitpid_spy == []


@pytest.mark.integration
def test_mid_pipeline_fork_failure_unwinds(fork_spy, waitpid_spy, open_fds) -> None:
    fork_spy.fail_on = 2
    fork_spy.error = OSError(errno.EAGAIN, "Resource temporarily unavailable")
    before = open_fds()
    start = time.monotonic()

    with pytest.raises(ForkError) as excinfo:
        run_pipeline(tokenize("sleep 30 | cat | cat"))

    assert time.monotonic() - start < 10
    assert excinfo.value.stage == 1
    assert len(excinfo.value.reaped) == 1
    assert waitpid_spy == list(excinfo.value.reaped)
    assert open_fds() == before


@pytest.mark.unit
def test_run_pipeline_requires_two_stages() -> None:
    with pytest.raises(ValueError):
        run_pipeline(tokenize("ls"))


@pytest.mark.integration
def test_pipeline_runs_with_stdin_closed() -> None:
    script = (
        "import os\n"
        "os.close(0)\n"
        "from pipeshell.executor import execute_line\n"
        "result = execute_line('printf hello | cat')\n"
        "print('', result.return_codes)\n"
    )
    env = dict(os.environ, PYTHONPATH=str(Path(__file__).resolve().parent.parent))

    completed = subprocess.run(
        [sys.executable, "-c", script],
        capture_output=True,
        text=True,
        timeout=30,
        env=env,
    )

    assert completed.returncode == 0, completed.stderr
    assert completed.stdout == "hello [0, 0]\n"
    assert completed.stderr == ""


@pytest.mark.integration
def test_unwind_kills_stage_that_ignores_sigterm(monkeypatch: pytest.MonkeyPatch) -> None:
    real_fork = os.fork
    real_waitpid = os.waitpid
    forks = []
    statuses = {}

    def _fork():
        forks.append(None)
        if len(forks) == 2:
            raise OSError(errno.EAGAIN, "Resource temporarily unavailable")
        ready_r, ready_w = os.pipe()
        pid = real_fork()
        if pid == 0:
            os.close(ready_r)
            signal.signal(signal.SIGTERM, signal.SIG_IGN)
            os.write(ready_w, b"x")
            os.close(ready_w)
            return pid
        os.close(ready_w)
        os.read(ready_r, 1)
        os.close(ready_r)
        return pid

    def _waitpid(pid, options):
        result = real_waitpid(pid, options)
        if result[0]:
            statuses[result[0]] = result[1]
        return result

    monkeypatch.setattr(os, "fork", _fork)
    monkeypatch.setattr(os, "waitpid", _waitpid)
    monkeypatch.setattr(executor, "UNWIND_GRACE_SECONDS", 0.2)
    start = time.monotonic()

    with pytest.raises(ForkError) as excinfo:
        run_pipeline(tokenize("sleep 30 | cat"))

    assert time.monotonic() - start < 10
    (pid,) = excinfo.value.reaped
    assert os.waitstatus_to_exitcode(statuses[pid]) == -signal.SIGKILL


@pytest.mark.integration
def test_interrupt_while_reaping_still_reaps_every_stage(
    monkeypatch: pytest.MonkeyPatch, fork_spy
) -> None:
    real_waitpid = os.waitpid
    calls = []
    reaped = []

    def _waitpid(pid, options):
        calls.append(pid)
        if len(calls) == 1:
            raise KeyboardInterrupt
        result = real_waitpid(pid, options)
        reaped.append(result[0])
        return result

    monkeypatch.setattr(os, "waitpid", _waitpid)

    with pytest.raises(KeyboardInterrupt):
        execute_line("true | true")

    assert sorted(reaped) == sorted(fork_spy.results)
    for pid in fork_spy.results:
        with pytest.raises(ChildProcessError):
            real_waitpid(pid, os.WNOHANG)
