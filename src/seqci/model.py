# model.py
from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Union

from .errors import ConfigurationError, StepFailure


# ---------------------------------------------------------------------
# Events + triggers
# ---------------------------------------------------------------------

class EventKind(str, Enum):
    PUSH = "push"
    PULL_REQUEST = "pull_request"

    @classmethod
    def names(cls) -> list[str]:
        return [k.value for k in cls]


@dataclass(frozen=True)
class Event:
    """
    An incoming event from the VCS host.

    `kind` stays a plain string so events we don't know about can still be
    represented (they just never match a trigger rule).
    """
    kind: str
    branch: str | None = None
    metadata: Dict[str, object] = field(default_factory=dict, compare=False, hash=False)


@dataclass(frozen=True)
class TriggerRule:
    """Set of event kinds that start a run, plus the filters as written."""
    kinds: FrozenSet[EventKind]
    # branch filters etc. are carried so the workflow round-trips; never evaluated
    filters: Dict[str, dict] = field(default_factory=dict, hash=False)

    @classmethod
    def from_names(cls, names, filters: Optional[Dict[str, dict]] = None) -> "TriggerRule":
        kinds = set()
        for n in names:
            try:
                kinds.add(EventKind(n))
            except ValueError:
                raise ConfigurationError(
                    message=f"Unknown trigger event {n!r}",
                    details={"known": ", ".join(EventKind.names())},
                ) from None
        return cls(kinds=frozenset(kinds), filters=dict(filters or {}))

    @classmethod
    def any(cls) -> "TriggerRule":
        return cls(kinds=frozenset(EventKind))


# ---------------------------------------------------------------------
# Pipeline definition
# ---------------------------------------------------------------------

SECRET_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
SECRET_RE = re.compile(r"^\$\{\{\s*secrets\.([A-Za-z_][A-Za-z0-9_]*)\s*\}\}$")


@dataclass(frozen=True)
class SecretRef:
    """Env value that must come from the secret store: ${{ secrets.NAME }}"""
    name: str

    def __post_init__(self):
        # must survive a trip through the ${{ secrets.NAME }} syntax
        if not isinstance(self.name, str) or not SECRET_NAME_RE.match(self.name):
            raise ConfigurationError(
                message=f"Invalid secret name {self.name!r}",
                details={"allowed": "letters, digits and _, not starting with a digit"},
            )

    def __str__(self) -> str:
        return f"${{{{ secrets.{self.name} }}}}"


EnvValue = Union[str, SecretRef]


def scalar_to_str(value: Any, where: str) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    if isinstance(value, (str, int, float)):
        return str(value)
    raise ConfigurationError(message=f"{where} must be a scalar, got {type(value).__name__}")


def parse_env_value(key: str, value: Any) -> EnvValue:
    """Literal string, or a SecretRef for `${{ secrets.NAME }}`. Other expressions are rejected."""
    if isinstance(value, SecretRef):
        return value
    text = scalar_to_str(value, f"env '{key}'")
    m = SECRET_RE.match(text.strip())
    if m:
        return SecretRef(m.group(1))
    if "${{" in text:
        raise ConfigurationError(
            message=f"Unsupported expression in env '{key}'",
            details={"value": text, "supported": "${{ secrets.NAME }}"},
        )
    return text


@dataclass(frozen=True)
class Step:
    """A single unit of work: either a shell command (`run`) or an action (`uses`)."""
    name: str | None = None
    run: str | None = None
    uses: str | None = None
    with_args: Dict[str, str] = field(default_factory=dict)  # `with:` inputs for actions
    note: str | None = None
    cwd: str | None = None
    env: Dict[str, str] = field(default_factory=dict)

    @property
    def display_name(self) -> str:
        if self.name:
            return self.name
        if self.run and self.run.strip():
            return f"Run {self.run.strip().splitlines()[0]}"
        if self.uses and self.uses.strip():
            return f"Run {self.uses.strip()}"
        return "(unnamed step)"

    @property
    def command(self) -> str:
        """What gets executed, for messages."""
        return self.run if self.run is not None else f"uses: {self.uses}"


@dataclass
class Pipeline:
    """
    A single-job pipeline: trigger rule + env declarations + ordered steps.

    `steps` order is execution order.
    """
    steps: List[Step]
    name: str | None = None
    job: str = "build"
    runs_on: str | None = None
    trigger: TriggerRule = field(default_factory=TriggerRule.any)
    env: Dict[str, EnvValue] = field(default_factory=dict)

    @property
    def secret_refs(self) -> Dict[str, SecretRef]:
        return {k: v for k, v in self.env.items() if isinstance(v, SecretRef)}


# ---------------------------------------------------------------------
# Run results
# ---------------------------------------------------------------------

class RunStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class StepOutcome:
    step_name: str
    exit_status: int
    duration: float

    @property
    def ok(self) -> bool:
        return self.exit_status == 0


@dataclass
class RunResult:
    """
    Terminal record of a run. `failed_at` is the 1-indexed step that failed
    (or that would have started next when cancelled).
    """
    status: RunStatus
    outcomes: List[StepOutcome] = field(default_factory=list)
    failed_at: int | None = None

    @property
    def ok(self) -> bool:
        return self.status is RunStatus.SUCCESS

    @property
    def exit_code(self) -> int:
        if self.status is RunStatus.SUCCESS:
            return 0
        if self.status is RunStatus.CANCELLED:
            return 130
        return 1

    def raise_for_status(self, pipeline: Pipeline) -> None:
        """Raise StepFailure if the run failed at a step."""
        if self.status is not RunStatus.FAILED or self.failed_at is None:
            return
        step = pipeline.steps[self.failed_at - 1]
        raise StepFailure(
            index=self.failed_at,
            step=step.display_name,
            cmd=step.command,
            exit_code=self.outcomes[-1].exit_status,
        )


# ---------------------------------------------------------------------
# Run states (linear state machine)
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class Pending:
    index: int  # 0-based index of the step about to run


@dataclass(frozen=True)
class Succeeded:
    pass


@dataclass(frozen=True)
class Failed:
    index: int


@dataclass(frozen=True)
class Cancelled:
    index: int


RunState = Union[Pending, Succeeded, Failed, Cancelled]


def advance(state: RunState, exit_status: int, total: int) -> RunState:
    """Transition out of Pending(i) once step i has finished."""
    if not isinstance(state, Pending):
        raise ValueError(f"cannot advance from terminal state {state!r}")
    if exit_status != 0:
        return Failed(state.index)
    if state.index + 1 >= total:
        return Succeeded()
    return Pending(state.index + 1)
