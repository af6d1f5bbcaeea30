# src/seqci/dsl.py
from __future__ import annotations

from dataclasses import replace
from typing import Dict, Iterable, List, Optional

from .errors import ConfigurationError
from .model import EnvValue, Pipeline, SecretRef, Step, TriggerRule, parse_env_value


# ---------------------------------------------------------------------
# Step helpers
# ---------------------------------------------------------------------

def sh(
    name: str,
    cmd: str,
    *,
    cwd: str | None = None,
    env: Optional[Dict[str, str]] = None,
    note: str | None = None,
) -> Step:
    """Create a shell step."""
    return Step(name=name, run=cmd, cwd=cwd, env=dict(env or {}), note=note)


def uses(action: str, *, name: str | None = None, note: str | None = None, **with_args: str) -> Step:
    """Create an action step, e.g. uses("actions/checkout@v3")."""
    return Step(name=name, uses=action, note=note, with_args={k: str(v) for k, v in with_args.items()})


def secret(name: str) -> SecretRef:
    """Env value resolved from the secret store at run start."""
    return SecretRef(name)


# ---------------------------------------------------------------------
# Functional helper
# ---------------------------------------------------------------------

def pipeline(
    name: str,
    *steps: Step,
    on: Iterable[str] = ("push", "pull_request"),
    env: Optional[Dict[str, EnvValue]] = None,
    job: str = "build",
    runs_on: str | None = None,
    cwd: str | None = None,  # default cwd applied to steps missing cwd
) -> Pipeline:
    steps_final: List[Step] = list(steps)
    if not steps_final:
        raise ConfigurationError(message=f"pipeline({name!r}) must have at least one step")

    if cwd is not None:
        steps_final = [s if s.cwd is not None else replace(s, cwd=cwd) for s in steps_final]

    return Pipeline(
        steps=steps_final,
        name=name,
        job=job,
        runs_on=runs_on,
        trigger=TriggerRule.from_names(list(on)),
        env={k: parse_env_value(k, v) for k, v in (env or {}).items()},
    )


# ---------------------------------------------------------------------
# Builder API
# ---------------------------------------------------------------------

class PipelineBuilder:
    def __init__(self, name: str):
        self.name = name
        self._job = "build"
        self._runs_on: str | None = None
        self._on: list[str] = []
        self._env: dict[str, EnvValue] = {}
        self._steps: list[Step] = []

    def on(self, *events: str):
        self._on.extend(events)
        return self

    def runs_on(self, label: str):
        self._runs_on = label
        return self

    def job(self, name: str):
        self._job = name
        return self

    def with_env(self, **env):
        # same rules as a YAML env block: "${{ secrets.X }}" strings become SecretRefs
        self._env.update({k: parse_env_value(k, v) for k, v in env.items()})
        return self

    def with_secret(self, var: str, secret_name: str | None = None):
        self._env[var] = SecretRef(secret_name or var)
        return self

    def define_step(self, name: str, run: str, cwd: str | None = None, note: str | None = None):
        self._steps.append(Step(name=name, run=run, cwd=cwd, note=note))
        return self

    def use_action(self, action: str, name: str | None = None, **with_args: str):
        self._steps.append(uses(action, name=name, **with_args))
        return self

    def build(self) -> Pipeline:
        if not self._steps:
            raise ConfigurationError(message=f"Pipeline '{self.name}' has no steps")

        trigger = TriggerRule.from_names(self._on) if self._on else TriggerRule.any()
        return Pipeline(
            steps=list(self._steps),
            name=self.name,
            job=self._job,
            runs_on=self._runs_on,
            trigger=trigger,
            env=dict(self._env),
        )


def build(name: str) -> PipelineBuilder:
    """Convenience: build('ci').define_step(...).build()"""
    return PipelineBuilder(name)
