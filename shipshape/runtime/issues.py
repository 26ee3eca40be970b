"""Non-fatal problems reported by runtime operations."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Optional

from shipshape.common.command_runner import CommandResult

IssueSeverity = Literal["error", "warning", "info"]


@dataclass(slots=True)
class RuntimeIssue:
    """A degraded-mode problem that does not stop the run."""

    code: str
    message: str
    severity: IssueSeverity = "error"
    subject: Optional[str] = None
    details: Optional[str] = None

    def is_error(self) -> bool:
        return self.severity == "error"

    @classmethod
    def from_result(cls, code: str, subject: str, result: CommandResult) -> "RuntimeIssue":
        """Build an issue from a failed command, keeping its stderr as details."""
        return cls(
            code=code,
            message=f"{subject}: {result.error}",
            subject=subject,
            details=result.stderr.strip() or None,
        )

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"
