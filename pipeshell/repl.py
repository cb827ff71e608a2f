"""Interactive read-loop feeding lines to the pipeline engine."""

import logging
import sys
from typing import Optional, TextIO

from pipeshell.config import EXIT_SENTINELS, Limits, OverflowPolicy, get_prompt
from pipeshell.errors import InputUnavailableError, PipeshellError
from pipeshell.executor import execute_line

logger = logging.getLogger(__name__)

FAREWELL = "Peace Out"


class ReadLoop:
    """
    Prompt, read a line, run it, repeat.

    The loop stops with status 0 on ``exit`` or ``quit`` and with status 1
    when the input runs out or cannot be read. Engine errors are reported
    and the loop moves on to the next line. Ctrl-C abandons the current
    line (its stages are still reaped) and shows a fresh prompt.

    Example:
        >>> import io
        >>> ReadLoop(stdin=io.StringIO("echo hi\\nexit\\n")).run()
        pipeShell > hi
        pipeShell > Peace Out
        0
    """

    def __init__(
        self,
        stdin: Optional[TextIO] = None,
        stdout: Optional[TextIO] = None,
        stderr: Optional[TextIO] = None,
        prompt: Optional[str] = None,
        limits: Optional[Limits] = None,
        policy: Optional[OverflowPolicy] = None,
    ):
        self.stdin = stdin or sys.stdin
        self.stdout = stdout or sys.stdout
        self.stderr = stderr or sys.stderr
        self.prompt = get_prompt() if prompt is None else prompt
        self.limits = limits
        self.policy = policy

    def read_line(self) -> str:
        """Show the prompt and return the next line without its newline.

        Raises:
            InputUnavailableError: On end of input or a read error.
        """
        self.stdout.write(self.prompt)
        self.stdout.flush()
        try:
            line = self.stdin.readline()
        except (OSError, ValueError) as exc:
            raise InputUnavailableError(f"input error: {exc}") from exc
        if line == "":
            raise InputUnavailableError("input error: end of input")
        return line.rstrip("\n")

    def handle_line(self, line: str) -> bool:
        """Run one line. Return False when the loop should stop."""
        if line in EXIT_SENTINELS:
            self.stdout.write(FAREWELL + "\n")
            self.stdout.flush()
            return False
        try:
            execute_line(line, limits=self.limits, policy=self.policy)
        except PipeshellError as exc:
            logger.debug("Line failed: %r", line, exc_info=True)
            self.stderr.write(f"pipeshell: {exc}\n")
            self.stderr.flush()
        return True

    def run(self) -> int:
        """Run until a sentinel or end of input and return the exit status."""
        while True:
            try:
                line = self.read_line()
                if not self.handle_line(line):
                    return 0
            except InputUnavailableError as exc:
                self.stderr.write(f"\n{exc}\n")
                self.stderr.flush()
                return 1
            except KeyboardInterrupt:
                self.stdout.write("\n")
                self.stdout.flush()
