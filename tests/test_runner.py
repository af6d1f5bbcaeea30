"""Tests for the step executor."""

import sys
import threading

import pytest

from seqci.dsl import sh, uses
from seqci.env import RunContext
from seqci.errors import ConfigurationError, StepFailure
from seqci.model import (
    Failed,
    Pending,
    Pipeline,
    RunStatus,
    Step,
    Succeeded,
    advance,
)
from seqci.runner import ActionRegistry, ProcessLauncher, run_pipeline, validate_pipeline

from conftest import FakeLauncher


def rust_pipeline():
    return Pipeline(steps=[
        sh("format-check", "cargo fmt -- --check"),
        sh("lint", "cargo clippy --all-targets --all-features -- -D warnings"),
        sh("build", "cargo build --release"),
        sh("test", "cargo test --release -- --test-threads 1"),
    ])


# ----------------------------------------------------------------------
# state machine
# ----------------------------------------------------------------------

def test_advance_transitions():
    assert advance(Pending(0), 0, 3) == Pending(1)
    assert advance(Pending(1), 2, 3) == Failed(1)
    assert advance(Pending(2), 0, 3) == Succeeded()


def test_advance_from_terminal_state_raises():
    with pytest.raises(ValueError):
        advance(Succeeded(), 0, 1)


# ----------------------------------------------------------------------
# run_pipeline
# ----------------------------------------------------------------------

def test_all_steps_pass(context, launcher):
    result = run_pipeline(rust_pipeline(), context, launcher=launcher)

    assert result.status is RunStatus.SUCCESS
    assert result.ok
    assert result.exit_code == 0
    assert result.failed_at is None
    assert [o.step_name for o in result.outcomes] == ["format-check", "lint", "build", "test"]
    assert launcher.names == ["format-check", "lint", "build", "test"]


def test_first_step_fails_nothing_else_runs(context):
    launcher = FakeLauncher({"format-check": 1})
    result = run_pipeline(rust_pipeline(), context, launcher=launcher)

    assert result.status is RunStatus.FAILED
    assert result.failed_at == 1
    assert result.exit_code == 1
    assert len(result.outcomes) == 1
    assert result.outcomes[0].exit_status == 1
    assert launcher.names == ["format-check"]


@pytest.mark.parametrize("k", [1, 2, 3, 4])
def test_failure_at_k_has_k_outcomes(context, k):
    names = ["format-check", "lint", "build", "test"]
    launcher = FakeLauncher({names[k - 1]: 101})
    result = run_pipeline(rust_pipeline(), context, launcher=launcher)

    assert result.failed_at == k
    assert len(result.outcomes) == k
    assert launcher.names == names[:k]

    # deterministic re-run gives the same result
    again = run_pipeline(rust_pipeline(), context, launcher=FakeLauncher({names[k - 1]: 101}))
    assert again.failed_at == k
    assert [o.exit_status for o in again.outcomes] == [o.exit_status for o in result.outcomes]


def test_empty_pipeline_is_config_error(context, launcher):
    with pytest.raises(ConfigurationError, match="no steps"):
        run_pipeline(Pipeline(steps=[]), context, launcher=launcher)
    assert launcher.calls == []


def test_step_without_command_is_config_error(context, launcher):
    p = Pipeline(steps=[sh("ok", "true"), Step(name="broken")])
    with pytest.raises(ConfigurationError, match="Step 2 has no command") as exc:
        run_pipeline(p, context, launcher=launcher)
    assert exc.value.details["step"] == "broken"
    assert launcher.calls == []


def test_blank_command_is_config_error():
    with pytest.raises(ConfigurationError, match="empty command"):
        validate_pipeline(Pipeline(steps=[sh("blank", "   ")]))


@pytest.mark.parametrize("step", [Step(run="   "), Step(run="\n"), Step(uses="  ")])
def test_unnamed_blank_step_is_config_error(step):
    assert step.display_name == "(unnamed step)"
    with pytest.raises(ConfigurationError, match="empty") as exc:
        validate_pipeline(Pipeline(steps=[step]))
    assert exc.value.details == {"index": 1}


def test_unsupported_action_rejected_before_running(context):
    p = Pipeline(steps=[sh("first", "true"), uses("actions/setup-node@v4")])
    launcher = ProcessLauncher(actions=ActionRegistry.default())
    with pytest.raises(ConfigurationError, match="cannot run locally"):
        run_pipeline(p, context, launcher=launcher)


def test_each_step_gets_its_own_env_copy(context):
    seen = []

    def mutate(step, env):
        seen.append(env.get("CI"))
        env["CI"] = "mutated"
        env["LEAK"] = "1"

    launcher = FakeLauncher(on_launch=mutate)
    run_pipeline(rust_pipeline(), context, launcher=launcher)

    assert seen == ["true"] * 4
    assert context.environment == {"CI": "true"}
    envs = [env for _, env, _ in launcher.calls]
    assert len({id(e) for e in envs}) == 4


def test_step_env_overrides_only_that_step(context, launcher):
    p = Pipeline(steps=[
        sh("a", "true", env={"CI": "false", "EXTRA": "1"}),
        sh("b", "true"),
    ])
    run_pipeline(p, context, launcher=launcher)
    env_a, env_b = launcher.calls[0][1], launcher.calls[1][1]
    assert env_a == {"CI": "false", "EXTRA": "1"}
    assert env_b == {"CI": "true"}


def test_step_cwd_is_relative_to_workdir(context, launcher):
    p = Pipeline(steps=[sh("sub", "true", cwd="pkg"), sh("root", "true")])
    run_pipeline(p, context, launcher=launcher)
    assert launcher.calls[0][2] == (context.workdir / "pkg").resolve()
    assert launcher.calls[1][2] == context.workdir.resolve()


def test_cancel_before_start_runs_nothing(context, launcher):
    cancel = threading.Event()
    cancel.set()
    result = run_pipeline(rust_pipeline(), context, launcher=launcher, cancel=cancel)

    assert result.status is RunStatus.CANCELLED
    assert result.exit_code == 130
    assert result.outcomes == []
    assert launcher.calls == []


def test_cancel_during_step_stops_after_it(context):
    cancel = threading.Event()
    launcher = FakeLauncher(on_launch=lambda step, env: cancel.set() if step.name == "lint" else None)
    result = run_pipeline(rust_pipeline(), context, launcher=launcher, cancel=cancel)

    assert result.status is RunStatus.CANCELLED
    assert result.failed_at == 3
    assert launcher.names == ["format-check", "lint"]
    assert len(result.outcomes) == 2


def test_raise_for_status(context):
    p = rust_pipeline()
    result = run_pipeline(p, context, launcher=FakeLauncher({"build": 2}))
    with pytest.raises(StepFailure) as exc:
        result.raise_for_status(p)
    assert exc.value.index == 3
    assert exc.value.step == "build"
    assert exc.value.exit_code == 2
    assert exc.value.cmd == "cargo build --release"


def test_raise_for_status_noop_on_success(context, launcher):
    p = rust_pipeline()
    run_pipeline(p, context, launcher=launcher).raise_for_status(p)


def test_durations_recorded(context, launcher):
    result = run_pipeline(rust_pipeline(), context, launcher=launcher)
    assert all(o.duration >= 0 for o in result.outcomes)


def test_secret_values_masked_in_output(tmp_path, capsys):
    ctx = RunContext(environment={"TOKEN": "s3cr3t-value"}, workdir=tmp_path, secrets=frozenset({"s3cr3t-value"}))
    p = Pipeline(steps=[sh("echo s3cr3t-value", "true")])
    run_pipeline(p, ctx, launcher=FakeLauncher({"echo s3cr3t-value": 1}))
    out = capsys.readouterr().out
    assert "s3cr3t-value" not in out
    assert "***" in out


def test_secret_masking_is_scoped_to_the_run(tmp_path, capsys, console):
    first = RunContext(environment={}, workdir=tmp_path, secrets=frozenset({"alpha-token"}))
    run_pipeline(Pipeline(steps=[sh("one", "true")]), first, launcher=FakeLauncher(), console=console)
    capsys.readouterr()

    second = RunContext(environment={}, workdir=tmp_path)
    p = Pipeline(steps=[sh("print alpha-token", "true")])
    run_pipeline(p, second, launcher=FakeLauncher(), console=console)
    assert "STEP 1: print alpha-token" in capsys.readouterr().out


# ----------------------------------------------------------------------
# ProcessLauncher (real shell)
# ----------------------------------------------------------------------

pytestmark_posix = pytest.mark.skipif(sys.platform == "win32", reason="uses a POSIX shell")


@pytestmark_posix
def test_process_launcher_exit_codes(tmp_path):
    launcher = ProcessLauncher()
    assert launcher.launch(sh("ok", "true"), {"PATH": "/usr/bin:/bin"}, tmp_path) == 0
    assert launcher.launch(sh("bad", "exit 3"), {"PATH": "/usr/bin:/bin"}, tmp_path) == 3


@pytestmark_posix
def test_process_launcher_fail_fast_end_to_end(tmp_path):
    marker = tmp_path / "marker"
    p = Pipeline(steps=[
        sh("write", f"echo one > {marker}"),
        sh("fail", "exit 1"),
        sh("never", f"echo two >> {marker}"),
    ])
    ctx = RunContext(environment={"PATH": "/usr/bin:/bin"}, workdir=tmp_path)
    result = run_pipeline(p, ctx, launcher=ProcessLauncher())

    assert result.failed_at == 2
    assert marker.read_text().splitlines() == ["one"]


@pytestmark_posix
def test_process_launcher_passes_env(tmp_path):
    out = tmp_path / "out"
    step = sh("env", f'printf "%s" "$GREETING" > {out}')
    ProcessLauncher().launch(step, {"PATH": "/usr/bin:/bin", "GREETING": "hello"}, tmp_path)
    assert out.read_text() == "hello"


def test_process_launcher_missing_cwd(tmp_path):
    code = ProcessLauncher().launch(sh("x", "true"), {}, tmp_path / "missing")
    assert code == 127


def test_checkout_action_outside_repo(tmp_path, monkeypatch):
    monkeypatch.setattr("seqci.runner.is_work_tree", lambda cwd: False)
    assert ProcessLauncher().launch(uses("actions/checkout@v3"), {}, tmp_path) == 1


def test_checkout_action_inside_repo(tmp_path, monkeypatch):
    monkeypatch.setattr("seqci.runner.is_work_tree", lambda cwd: True)
    assert ProcessLauncher().launch(uses("actions/checkout@v3"), {}, tmp_path) == 0


def test_custom_action_registry(tmp_path):
    registry = ActionRegistry()
    registry.register("acme/hello", lambda step, env, cwd: 7)
    launcher = ProcessLauncher(actions=registry)
    assert launcher.supports(uses("acme/hello@v1"))
    assert not launcher.supports(uses("actions/checkout@v3"))
    assert launcher.launch(uses("acme/hello@v1"), {}, tmp_path) == 7
