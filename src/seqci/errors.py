# errors.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import ClassVar


@dataclass(eq=False)
class CIError(Exception):
    """
    Structured CI error with enough context for:
      - clean CLI output
      - debugging without full tracebacks
    """
    kind: ClassVar[str] = "ci_error"

    message: str
    details: dict = field(default_factory=dict)

    def __str__(self) -> str:
        lines = [f"{self.kind}: {self.message}"]
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)


class ConfigurationError(CIError):
    """Structurally invalid pipeline definition. Raised before any step runs."""
    kind = "configuration_error"


class EnvironmentResolutionError(CIError):
    """A referenced secret or variable could not be resolved."""
    kind = "environment_error"


class StepFailure(CIError):
    kind = "step_failed"

    def __init__(self, *, index: int, step: str, cmd: str, exit_code: int):
        super().__init__(
            message=f"step {index} '{step}' failed (exit={exit_code})",
            details={"cmd": cmd},
        )
        self.index = index
        self.step = step
        self.cmd = cmd
        self.exit_code = exit_code
