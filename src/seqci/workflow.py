# workflow.py
# Loading/saving pipeline definitions.
#
# YAML workflows follow the GitHub Actions shape, restricted to one job:
#
#   name: CI
#   on: [push, pull_request]
#   env:
#     API_KEY: ${{ secrets.API_KEY }}
#   jobs:
#     build:
#       runs-on: ubuntu-latest
#       steps:
#         - uses: actions/checkout@v3
#         - name: Test
#           run: make test
#
# Python workflows define pipeline() -> Pipeline or PIPELINE = Pipeline(...).
from __future__ import annotations

import runpy
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .dsl import pipeline as dsl_pipeline
from .errors import ConfigurationError
from .model import (
    EnvValue,
    EventKind,
    Pipeline,
    SecretRef,
    Step,
    TriggerRule,
    parse_env_value,
    scalar_to_str,
)


STEP_KEYS = {"name", "run", "uses", "with", "note", "working-directory", "env"}
JOB_KEYS = {"runs-on", "steps", "env"}
TOP_KEYS = {"name", "on", "env", "jobs", "steps", "runs-on"}

DEFAULT_WORKFLOW_FILES = ["seqci.yml", "seqci.yaml", "seqci_workflow.py"]


# ----------------------------------------------------------------------
# Parsing
# ----------------------------------------------------------------------

def _parse_env_block(raw: Any, where: str) -> Dict[str, EnvValue]:
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigurationError(message=f"{where} 'env' must be a mapping")
    return {str(k): parse_env_value(str(k), v) for k, v in raw.items()}


def parse_trigger(raw: Any) -> TriggerRule:
    if raw is None:
        return TriggerRule.any()
    if isinstance(raw, str):
        return TriggerRule.from_names([raw])
    if isinstance(raw, list):
        for n in raw:
            if not isinstance(n, str):
                raise ConfigurationError(message=f"Trigger event names must be strings, got {n!r}")
        return TriggerRule.from_names(raw)
    if isinstance(raw, dict):
        filters: Dict[str, dict] = {}
        for kind, body in raw.items():
            if body is None:
                continue
            if not isinstance(body, dict):
                raise ConfigurationError(message=f"Trigger '{kind}' must be a mapping or empty")
            filters[str(kind)] = body
        return TriggerRule.from_names([str(k) for k in raw], filters=filters)
    raise ConfigurationError(message="'on' must be a string, list or mapping")


def parse_step(raw: Any, index: int) -> Step:
    """Validate a single step. `index` is 1-based, as in error messages."""
    if not isinstance(raw, dict):
        raise ConfigurationError(message=f"Step {index} must be a mapping", details={"index": index})

    where = {"index": index}
    if "name" in raw:
        where["step"] = raw["name"]

    unknown = sorted(set(map(str, raw)) - STEP_KEYS)
    if unknown:
        raise ConfigurationError(message=f"Step {index} has unknown keys: {unknown}", details=where)

    for key in ("name", "run", "uses", "note", "working-directory"):
        if key in raw and raw[key] is not None and not isinstance(raw[key], str):
            raise ConfigurationError(message=f"Step {index} '{key}' must be a string", details=where)

    if "run" not in raw and "uses" not in raw:
        raise ConfigurationError(message=f"Step {index} missing 'run' or 'uses'", details=where)
    if "run" in raw and "uses" in raw:
        raise ConfigurationError(message=f"Step {index} sets both 'run' and 'uses'", details=where)
    for key in ("run", "uses"):
        if key in raw and not (raw[key] or "").strip():
            raise ConfigurationError(message=f"Step {index} '{key}' is empty", details=where)

    with_args = raw.get("with") or {}
    if not isinstance(with_args, dict):
        raise ConfigurationError(message=f"Step {index} 'with' must be a mapping", details=where)

    env = _parse_env_block(raw.get("env"), f"Step {index}")
    if any(isinstance(v, SecretRef) for v in env.values()):
        raise ConfigurationError(
            message=f"Step {index} env cannot reference secrets; declare them in the workflow env",
            details=where,
        )

    return Step(
        name=raw.get("name"),
        run=raw.get("run"),
        uses=raw.get("uses"),
        with_args={str(k): scalar_to_str(v, f"Step {index} 'with.{k}'") for k, v in with_args.items()},
        note=raw.get("note"),
        cwd=raw.get("working-directory"),
        env={k: str(v) for k, v in env.items()},
    )


def parse_workflow_dict(config: Any) -> Pipeline:
    """Validate a workflow loaded from YAML (or built by hand) into a Pipeline."""
    if not config:
        raise ConfigurationError(message="Empty workflow definition")
    if not isinstance(config, dict):
        raise ConfigurationError(message="Workflow must be a mapping")

    # YAML 1.1 reads a bare `on` key as boolean True
    if True in config:
        config = {("on" if k is True else k): v for k, v in config.items()}

    unknown = sorted(set(map(str, config)) - TOP_KEYS)
    if unknown:
        raise ConfigurationError(message=f"Workflow has unknown keys: {unknown}")

    name = config.get("name")
    if name is not None and not isinstance(name, str):
        raise ConfigurationError(message="Workflow 'name' must be a string")

    trigger = parse_trigger(config.get("on"))
    env = _parse_env_block(config.get("env"), "Workflow")

    if "jobs" in config:
        if "steps" in config:
            raise ConfigurationError(message="Use either 'jobs' or top-level 'steps', not both")
        jobs = config["jobs"]
        if not isinstance(jobs, dict) or not jobs:
            raise ConfigurationError(message="'jobs' must be a non-empty mapping")
        if len(jobs) > 1:
            raise ConfigurationError(
                message="Only a single job is supported",
                details={"jobs": ", ".join(map(str, jobs))},
            )
        job_name, body = next(iter(jobs.items()))
        job_name = str(job_name)
        if not isinstance(body, dict):
            raise ConfigurationError(message=f"Job '{job_name}' must be a mapping")
        unknown = sorted(set(map(str, body)) - JOB_KEYS)
        if unknown:
            raise ConfigurationError(message=f"Job '{job_name}' has unknown keys: {unknown}")
        if "runs-on" in config:
            raise ConfigurationError(
                message=f"'runs-on' belongs to job '{job_name}', not the workflow",
                details={"job": job_name},
            )
        # job-level env overrides workflow-level env
        env.update(_parse_env_block(body.get("env"), f"Job '{job_name}'"))
    else:
        job_name = "build"
        body = config

    runs_on = body.get("runs-on")
    if runs_on is not None and not isinstance(runs_on, str):
        raise ConfigurationError(message="'runs-on' must be a string")

    if "steps" not in body:
        raise ConfigurationError(message="Pipeline must have 'steps' defined")
    raw_steps = body["steps"]
    if not isinstance(raw_steps, list):
        raise ConfigurationError(message="'steps' must be a list")
    if not raw_steps:
        raise ConfigurationError(message="Pipeline must have at least one step")

    steps = [parse_step(s, i) for i, s in enumerate(raw_steps, start=1)]

    return Pipeline(
        steps=steps,
        name=name,
        job=job_name,
        runs_on=runs_on,
        trigger=trigger,
        env=env,
    )


def parse_workflow(text: str) -> Pipeline:
    try:
        config = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ConfigurationError(message="Invalid YAML", details={"error": str(e)}) from e
    return parse_workflow_dict(config)


# ----------------------------------------------------------------------
# Serialization
# ----------------------------------------------------------------------

def step_to_dict(step: Step) -> Dict[str, Any]:
    d: Dict[str, Any] = {}
    if step.name is not None:
        d["name"] = step.name
    if step.uses is not None:
        d["uses"] = step.uses
    if step.with_args:
        d["with"] = dict(step.with_args)
    if step.run is not None:
        d["run"] = step.run
    if step.cwd is not None:
        d["working-directory"] = step.cwd
    if step.env:
        d["env"] = dict(step.env)
    if step.note is not None:
        d["note"] = step.note
    return d


def pipeline_to_dict(pipeline: Pipeline) -> Dict[str, Any]:
    """Inverse of parse_workflow_dict."""
    d: Dict[str, Any] = {}
    if pipeline.name is not None:
        d["name"] = pipeline.name

    on: Dict[str, Any] = {}
    for kind in EventKind:
        if kind in pipeline.trigger.kinds:
            filters = pipeline.trigger.filters.get(kind.value)
            on[kind.value] = dict(filters) if filters is not None else None
    d["on"] = on

    if pipeline.env:
        d["env"] = {k: str(v) for k, v in pipeline.env.items()}

    job: Dict[str, Any] = {}
    if pipeline.runs_on is not None:
        job["runs-on"] = pipeline.runs_on
    job["steps"] = [step_to_dict(s) for s in pipeline.steps]
    d["jobs"] = {pipeline.job: job}
    return d


def dump_workflow(pipeline: Pipeline) -> str:
    return yaml.safe_dump(
        pipeline_to_dict(pipeline),
        sort_keys=False,
        default_flow_style=False,
        allow_unicode=True,
    )


# ----------------------------------------------------------------------
# Files
# ----------------------------------------------------------------------

def load_workflow(path: str | Path) -> Pipeline:
    """
    Load a pipeline from a .yml/.yaml file or a python file.

    A python file must define either:
      - PIPELINE = Pipeline(...)
      - pipeline() -> Pipeline
    """
    wf_path = Path(path).expanduser().resolve()
    if not wf_path.exists():
        raise FileNotFoundError(f"Workflow file not found: {wf_path}")

    if wf_path.suffix in (".yml", ".yaml"):
        return parse_workflow(wf_path.read_text(encoding="utf-8"))

    if wf_path.suffix != ".py":
        raise ConfigurationError(message=f"Workflow must be a .yml, .yaml or .py file, got: {wf_path.name}")

    module_name = f"seqci_workflow_{wf_path.stem}"
    result: Optional[Pipeline] = None
    try:
        globals_dict = runpy.run_path(str(wf_path), run_name=module_name)
        fn = globals_dict.get("pipeline")
        if "PIPELINE" in globals_dict:
            result = globals_dict["PIPELINE"]
        # `from seqci import pipeline` puts the helper itself in the namespace; skip it
        elif callable(fn) and fn is not dsl_pipeline:
            result = fn()
    except ConfigurationError:
        raise
    except Exception as e:
        raise ConfigurationError(
            message="Python workflow failed to load",
            details={"file": str(wf_path), "error": f"{type(e).__name__}: {e}"},
        ) from e

    if not isinstance(result, Pipeline):
        raise ConfigurationError(
            message="Python workflow must define pipeline() -> Pipeline or PIPELINE = Pipeline(...)",
            details={"file": str(wf_path)},
        )
    return result


def save_workflow(pipeline: Pipeline, path: str | Path) -> None:
    Path(path).write_text(dump_workflow(pipeline), encoding="utf-8")


def discover_workflow_files(root: str | Path = ".") -> List[Path]:
    """Workflow files under `root`: seqci.yml / seqci_workflow.py / .github/workflows/*.yml"""
    root_p = Path(root)
    found: List[Path] = []

    for name in DEFAULT_WORKFLOW_FILES:
        p = root_p / name
        if p.exists():
            found.append(p)

    gh = root_p / ".github" / "workflows"
    if gh.is_dir():
        found.extend(sorted(list(gh.glob("*.yml")) + list(gh.glob("*.yaml"))))

    return found
