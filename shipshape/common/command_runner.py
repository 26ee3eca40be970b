from __future__ import annotations

import logging
import subprocess
import time
from dataclasses import dataclass
from typing import Optional, Sequence


@dataclass(slots=True)
class CommandResult:
    """Captured outcome of a docker (or other) command line invocation."""

    command: Sequence[str]
    return_code: Optional[int]
    stdout: str
    stderr: str
    duration: float
    timed_out: bool = False
    tool_available: bool = True
    exception: Optional[BaseException] = None

    def succeeded(self) -> bool:
        """Return True when the command finished successfully."""
        return self.return_code == 0 and not self.timed_out and self.tool_available

    @property
    def error(self) -> Optional[str]:
        """Human readable failure description, or None on success."""
        if self.succeeded():
            return None
        if not self.tool_available:
            return f"command not found: {self.command[0]}"
        if self.timed_out:
            return f"timed out after {self.duration:.1f}s"
        detail = self.stderr.strip() or str(self.exception or "")
        if self.return_code is not None:
            return f"exit status {self.return_code}" + (f": {detail}" if detail else "")
        return detail or "unknown error"

    def log_streams(self, logger: logging.Logger) -> None:
        """Log captured stdout at INFO and stderr at ERROR, skipping empty streams."""
        out = self.stdout.strip()
        err = self.stderr.strip()
        if out:
            logger.info("stdout:\n%s", out)
        if err:
            logger.error("stderr:\n%s", err)


class CommandRunner:
    """Thin wrapper over subprocess that captures execution metadata."""

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self.logger = logger or logging.getLogger(__name__)

    def run(self, command: Sequence[str], *, timeout: Optional[float] = None) -> CommandResult:
        """Execute a command and capture stdout, stderr, timings and failures."""
        start = time.time()
        try:
            self.logger.debug("Executing command: %s", " ".join(command))
            completed = subprocess.run(
                list(command),
                capture_output=True,
                text=True,
                timeout=timeout,
            )
            return CommandResult(
                command=command,
                return_code=completed.returncode,
                stdout=completed.stdout,
                stderr=completed.stderr,
                duration=time.time() - start,
            )
        except subprocess.TimeoutExpired as exc:
            duration = time.time() - start
            self.logger.warning("Command timed out after %.2fs: %s", duration, " ".join(command))
            return CommandResult(
                command=command,
                return_code=None,
                stdout=_as_text(exc.stdout),
                stderr=_as_text(exc.stderr),
                duration=duration,
                timed_out=True,
                exception=exc,
            )
        except FileNotFoundError as exc:
            self.logger.error("Command not found: %s", command[0])
            return CommandResult(
                command=command,
                return_code=None,
                stdout="",
                stderr=f"Command not found: {command[0]}",
                duration=time.time() - start,
                tool_available=False,
                exception=exc,
            )
        except OSError as exc:
            self.logger.error("Command execution failed: %s", exc)
            return CommandResult(
                command=command,
                return_code=None,
                stdout="",
                stderr=str(exc),
                duration=time.time() - start,
                exception=exc,
            )


def _as_text(value: object) -> str:
    # TimeoutExpired may carry bytes even in text mode
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)
