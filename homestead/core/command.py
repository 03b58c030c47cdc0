"""Subprocess execution with timeouts and captured diagnostics."""
import os
import shlex
import subprocess
from dataclasses import dataclass
from typing import List, Mapping, Optional, Sequence

from homestead.core.logger import get_logger

logger = get_logger(__name__)

# Lines of stderr/stdout kept in a failure diagnostic
DIAGNOSTIC_TAIL_LINES = 5


def format_argv(argv: Sequence[str]) -> str:
    return " ".join(shlex.quote(a) for a in argv)


@dataclass(frozen=True)
class CommandResult:
    """Outcome of one external command."""

    argv: List[str]
    returncode: Optional[int]
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out

    def diagnostic(self) -> str:
        """One-line summary good enough to rerun the step by hand."""
        command = format_argv(self.argv)
        if self.timed_out:
            return f"timed out: {command}"
        if self.returncode is None:
            return f"could not start: {command}: {self.stderr.strip()}"
        output = (self.stderr or self.stdout).strip().splitlines()
        tail = " | ".join(output[-DIAGNOSTIC_TAIL_LINES:])
        message = f"exit {self.returncode}: {command}"
        if tail:
            message += f": {tail}"
        return message


class CommandRunner:
    """Runs external commands synchronously, one at a time.

    Backends and the executor take a runner instead of calling subprocess
    directly so tests can substitute a recording stub.
    """

    def __init__(self, default_timeout: Optional[float] = None):
        self.default_timeout = default_timeout

    def run(
        self,
        argv: Sequence[str],
        timeout: Optional[float] = None,
        cwd: Optional[str] = None,
        env: Optional[Mapping[str, str]] = None,
    ) -> CommandResult:
        """Run ``argv`` and capture its output. Never raises for command failures."""
        argv_list = [str(a) for a in argv]
        effective_timeout = timeout if timeout is not None else self.default_timeout
        logger.debug(f"CMD {format_argv(argv_list)}")

        try:
            proc = subprocess.run(
                argv_list,
                capture_output=True,
                text=True,
                cwd=cwd,
                env=dict(os.environ, **(env or {})),
                timeout=effective_timeout,
                stdin=subprocess.DEVNULL,
            )
        except subprocess.TimeoutExpired as e:
            logger.warning(f"Command timed out after {effective_timeout}s: {format_argv(argv_list)}")
            return CommandResult(
                argv=argv_list,
                returncode=None,
                stdout=_as_text(e.stdout),
                stderr=_as_text(e.stderr),
                timed_out=True,
            )
        except OSError as e:
            # Missing binary, permission denied on exec, bad cwd
            logger.debug(f"Command could not start: {format_argv(argv_list)}: {e}")
            return CommandResult(argv=argv_list, returncode=None, stderr=str(e))

        if proc.stdout:
            logger.debug(f"STDOUT {proc.stdout.strip()}")
        if proc.stderr:
            logger.debug(f"STDERR {proc.stderr.strip()}")

        return CommandResult(
            argv=argv_list,
            returncode=proc.returncode,
            stdout=proc.stdout or "",
            stderr=proc.stderr or "",
        )


def _as_text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode(errors="replace")
    return value
