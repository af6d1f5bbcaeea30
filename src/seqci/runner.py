# runner.py
from __future__ import annotations

import subprocess
import threading
import time
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional, Protocol

from .env import RunContext
from .errors import ConfigurationError
from .git_facts.git import is_work_tree
from .model import (
    Cancelled,
    Failed,
    Pending,
    Pipeline,
    RunResult,
    RunState,
    RunStatus,
    Step,
    StepOutcome,
    Succeeded,
    advance,
)
from .ui.console import Console, get_console


# exit status reported when the launcher can't even start the command
EXIT_CWD_NOT_FOUND = 127


# ----------------------------------------------------------------------
# Actions (`uses:` steps)
# ----------------------------------------------------------------------

ActionFn = Callable[[Step, Dict[str, str], Path], int]


def _checkout(step: Step, env: Dict[str, str], cwd: Path) -> int:
    # Locally the workspace is already checked out; just make sure it's a repo.
    if is_work_tree(cwd):
        return 0
    get_console().print_info(f"{cwd} is not inside a git work tree")
    return 1


class ActionRegistry:
    """Maps action names (without @version) to local implementations."""

    def __init__(self, actions: Optional[Mapping[str, ActionFn]] = None):
        self._actions: Dict[str, ActionFn] = dict(actions or {})

    @classmethod
    def default(cls) -> "ActionRegistry":
        return cls({"actions/checkout": _checkout})

    @staticmethod
    def action_name(uses: str) -> str:
        return uses.split("@", 1)[0].strip()

    def register(self, name: str, fn: ActionFn) -> None:
        self._actions[name] = fn

    def __contains__(self, uses: str) -> bool:
        return self.action_name(uses) in self._actions

    def get(self, uses: str) -> ActionFn:
        return self._actions[self.action_name(uses)]


# ----------------------------------------------------------------------
# Launchers (the command execution boundary)
# ----------------------------------------------------------------------

class Launcher(Protocol):
    # optional: supports(step) -> bool, checked during validation when present
    def launch(self, step: Step, env: Dict[str, str], cwd: Path) -> int: ...


class ProcessLauncher:
    """
    Runs `run:` steps through the shell, `uses:` steps through the action registry.

    stdout/stderr are inherited, not captured: the process owns its output.
    """

    def __init__(self, actions: Optional[ActionRegistry] = None, shell: str | None = None):
        self.actions = actions if actions is not None else ActionRegistry.default()
        self.shell = shell

    def supports(self, step: Step) -> bool:
        if step.uses is not None:
            return step.uses in self.actions
        return True

    def launch(self, step: Step, env: Dict[str, str], cwd: Path) -> int:
        if not cwd.is_dir():
            get_console().print_info(f"working directory not found: {cwd}")
            return EXIT_CWD_NOT_FOUND

        if step.uses is not None:
            return self.actions.get(step.uses)(step, env, cwd)

        proc = subprocess.run(
            step.run,
            shell=True,
            executable=self.shell,
            cwd=str(cwd),
            env=env,
        )
        return proc.returncode


# ----------------------------------------------------------------------
# Validation
# ----------------------------------------------------------------------

def validate_pipeline(pipeline: Pipeline, launcher: Optional[Launcher] = None) -> None:
    """Structural checks. Nothing runs if this raises."""
    if not pipeline.steps:
        raise ConfigurationError(
            message="Pipeline has no steps",
            details={"job": pipeline.job},
        )

    for i, step in enumerate(pipeline.steps, start=1):
        where = {"index": i}
        if step.name:
            where["step"] = step.name
        if step.run is None and step.uses is None:
            raise ConfigurationError(message=f"Step {i} has no command (run or uses)", details=where)
        if step.run is not None and step.uses is not None:
            raise ConfigurationError(message=f"Step {i} sets both run and uses", details=where)
        if step.run is not None and not step.run.strip():
            raise ConfigurationError(message=f"Step {i} has an empty command", details=where)
        if step.uses is not None and not ActionRegistry.action_name(step.uses):
            raise ConfigurationError(message=f"Step {i} has an empty action", details=where)
        where["step"] = step.display_name
        supports = getattr(launcher, "supports", None)
        if supports is not None and not supports(step):
            raise ConfigurationError(
                message=f"Step {i} uses an action that cannot run locally: {step.uses}",
                details=where,
            )


# ----------------------------------------------------------------------
# Execution
# ----------------------------------------------------------------------

def _step_cwd(ctx: RunContext, step: Step) -> Path:
    return (ctx.workdir / (step.cwd or ".")).resolve()


def _result_for(state: RunState, outcomes: List[StepOutcome]) -> RunResult:
    if isinstance(state, Succeeded):
        return RunResult(status=RunStatus.SUCCESS, outcomes=outcomes)
    if isinstance(state, Failed):
        return RunResult(status=RunStatus.FAILED, outcomes=outcomes, failed_at=state.index + 1)
    if isinstance(state, Cancelled):
        return RunResult(status=RunStatus.CANCELLED, outcomes=outcomes, failed_at=state.index + 1)
    raise ValueError(f"run ended in non-terminal state {state!r}")


def run_pipeline(
    pipeline: Pipeline,
    context: RunContext,
    *,
    launcher: Optional[Launcher] = None,
    cancel: Optional[threading.Event] = None,
    console: Optional[Console] = None,
) -> RunResult:
    """
    Run steps in order, stopping at the first non-zero exit status.

    State machine:
        Pending(i) -> Pending(i+1)   step i exited 0
        Pending(i) -> Failed(i)      step i exited non-zero
        Pending(n-1) -> Succeeded    last step exited 0
        Pending(i) -> Cancelled(i)   cancel set before step i started
    """
    launcher = launcher if launcher is not None else ProcessLauncher()
    console = console or get_console()
    validate_pipeline(pipeline, launcher)

    # secrets are masked for this run only; the console may outlive it
    with console.masking(context.secrets):
        return _run_steps(pipeline, context, launcher, cancel, console)


def _run_steps(
    pipeline: Pipeline,
    context: RunContext,
    launcher: Launcher,
    cancel: Optional[threading.Event],
    console: Console,
) -> RunResult:
    steps = pipeline.steps
    outcomes: List[StepOutcome] = []
    state: RunState = Pending(0)

    while isinstance(state, Pending):
        step = steps[state.index]

        if cancel is not None and cancel.is_set():
            console.print_cancelled(step.display_name)
            state = Cancelled(state.index)
            break

        console.print_step(state.index + 1, step.display_name, step.note)
        # each step gets its own copy; nothing it does leaks into the next
        env = context.snapshot(step.env)

        start = time.monotonic()
        exit_status = launcher.launch(step, env, _step_cwd(context, step))
        duration = time.monotonic() - start

        outcomes.append(StepOutcome(step_name=step.display_name, exit_status=exit_status, duration=duration))

        if exit_status == 0:
            console.print_step_success(duration)
        else:
            console.print_failure(
                step.display_name,
                reason=f"command failed: {step.command}",
                exit_code=exit_status,
                hint="remaining steps skipped (fail-fast)" if state.index + 1 < len(steps) else None,
            )

        state = advance(state, exit_status, len(steps))

    return _result_for(state, outcomes)
