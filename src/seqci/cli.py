# cli.py
from __future__ import annotations

import signal
import subprocess
import sys
import threading
from pathlib import Path

import click

from seqci.env import ChainSecretStore, EnvironSecretStore, build_context, load_secrets_file
from seqci.errors import ConfigurationError, EnvironmentResolutionError
from seqci.git_facts.git import current_ref
from seqci.model import Pipeline
from seqci.runner import ProcessLauncher, run_pipeline, validate_pipeline
from seqci.trigger import load_event, should_run
from seqci.ui.console import Console, get_console, set_console
from seqci.workflow import discover_workflow_files, dump_workflow, load_workflow, save_workflow


EXIT_CONFIG_ERROR = 2
EXIT_INTERRUPTED = 130


def discover_workflow(workflow_arg: str | None, root: Path = Path(".")) -> Path:
    """
    Discover workflow file from argument or default.

    Raises:
        SystemExit: If workflow cannot be found or multiple workflows exist
    """
    console = get_console()

    if workflow_arg:
        workflow_path = Path(workflow_arg)
        if not workflow_path.exists():
            console.print_error(
                "Workflow file not found",
                f"Could not find workflow file: {workflow_arg}",
                suggestion="Create a workflow file or specify a different path:\n  seqci run --workflow seqci.yml",
            )
            sys.exit(EXIT_CONFIG_ERROR)
        return workflow_path

    workflow_files = discover_workflow_files(root)

    if len(workflow_files) == 0:
        console.print_error(
            "No workflow file found",
            "Could not find any workflow files.",
            details=[
                "Looked for:",
                "  seqci.yml / seqci.yaml",
                "  seqci_workflow.py",
                "  .github/workflows/*.yml",
            ],
            suggestion="Create a workflow file:\n  seqci.yml\n\nOr specify a workflow explicitly:\n  seqci run --workflow path/to/workflow.yml",
        )
        sys.exit(EXIT_CONFIG_ERROR)

    if len(workflow_files) > 1:
        file_list = "\n".join(f"  {f}" for f in workflow_files)
        console.print_error(
            "Multiple workflow files found",
            "Found multiple workflow files. Please specify which one to use:",
            details=[file_list],
            suggestion="Specify a workflow explicitly:\n  seqci run --workflow seqci.yml",
        )
        sys.exit(EXIT_CONFIG_ERROR)

    return workflow_files[0]


def _load(workflow_path: Path) -> Pipeline:
    console = get_console()
    try:
        return load_workflow(workflow_path)
    except (ConfigurationError, FileNotFoundError) as e:
        console.print_error(
            "Invalid workflow",
            f"Could not load workflow from {workflow_path}",
            details=str(e).splitlines(),
        )
        sys.exit(EXIT_CONFIG_ERROR)


def _detect_branch(workdir: str) -> str | None:
    try:
        return current_ref(cwd=workdir)
    except (subprocess.CalledProcessError, FileNotFoundError):
        get_console().print_debug("could not determine current git ref")
        return None


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.pass_context
def cli(ctx, debug):
    """seqci: sequential, fail-fast pipeline runner."""
    console = Console(debug=debug)
    set_console(console)
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@click.option("--workflow", default=None, envvar="SEQCI_WORKFLOW", help="Workflow file (.yml or .py)")
@click.option("--event", "event_name", default="push", envvar="GITHUB_EVENT_NAME", show_default=True,
              help="Event kind that triggered this run (push, pull_request, ...)")
@click.option("--event-payload", default=None, envvar="GITHUB_EVENT_PATH",
              type=click.Path(dir_okay=False), help="JSON webhook payload for the event")
@click.option("--branch", default=None, help="Target branch (defaults to the current git ref)")
@click.option("--secrets-file", default=None, envvar="SEQCI_SECRETS_FILE",
              type=click.Path(dir_okay=False), help="YAML mapping of secret name -> value")
@click.option("--secret-prefix", default="", envvar="SEQCI_SECRET_PREFIX",
              help="Prefix for secrets read from the environment")
@click.option("--workdir", default=".", show_default=True, type=click.Path(file_okay=False),
              help="Working directory for steps")
@click.option("--inherit-env/--no-inherit-env", default=True, show_default=True,
              help="Start the step environment from the current process environment")
@click.pass_context
def run(ctx, workflow, event_name, event_payload, branch, secrets_file, secret_prefix, workdir, inherit_env):
    """Run a pipeline if the event triggers it."""
    console = get_console()
    workflow_path = discover_workflow(workflow)
    pipeline = _load(workflow_path)

    try:
        event = load_event(event_name, event_payload, branch=branch or _detect_branch(workdir))
        if not should_run(event, pipeline.trigger):
            console.print_trigger_skipped(event.kind, sorted(k.value for k in pipeline.trigger.kinds))
            sys.exit(0)

        stores = []
        if secrets_file:
            stores.append(load_secrets_file(secrets_file))
        stores.append(EnvironSecretStore(prefix=secret_prefix))
        context = build_context(pipeline, ChainSecretStore(*stores), workdir=workdir, inherit_env=inherit_env)
        console.register_secrets(context.secrets)

        launcher = ProcessLauncher()
        validate_pipeline(pipeline, launcher)
    except (ConfigurationError, EnvironmentResolutionError) as e:
        console.print_error("Cannot start run", str(e).splitlines()[0], details=str(e).splitlines()[1:])
        sys.exit(EXIT_CONFIG_ERROR)

    console.print_run_started(
        pipeline=pipeline.name or workflow_path.stem,
        workflow=str(workflow_path),
        job=pipeline.job,
        step_count=len(pipeline.steps),
        event=f"{event.kind} ({event.branch})" if event.branch else event.kind,
        runs_on=pipeline.runs_on,
    )

    # SIGTERM: finish the current step, start no new ones
    cancel = threading.Event()
    previous = None
    if threading.current_thread() is threading.main_thread():
        previous = signal.signal(signal.SIGTERM, lambda signum, frame: cancel.set())

    try:
        result = run_pipeline(pipeline, context, launcher=launcher, cancel=cancel, console=console)
    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(EXIT_INTERRUPTED)
    except Exception as e:
        console.print_exception(e)
        sys.exit(1)
    finally:
        if previous is not None:
            signal.signal(signal.SIGTERM, previous)

    console.print_results(result, [s.display_name for s in pipeline.steps])
    sys.exit(result.exit_code)


@cli.command()
@click.option("--workflow", default=None, envvar="SEQCI_WORKFLOW", help="Workflow file (.yml or .py)")
def check(workflow):
    """Validate a workflow without running it."""
    console = get_console()
    workflow_path = discover_workflow(workflow)
    pipeline = _load(workflow_path)

    try:
        validate_pipeline(pipeline, ProcessLauncher())
    except ConfigurationError as e:
        console.print_error("Invalid workflow", str(e).splitlines()[0], details=str(e).splitlines()[1:])
        sys.exit(EXIT_CONFIG_ERROR)

    console.print_info(f"OK: {workflow_path}")
    console.print_info(f"  job: {pipeline.job}")
    console.print_info(f"  on: {', '.join(sorted(k.value for k in pipeline.trigger.kinds))}")
    console.print_info(f"  steps: {len(pipeline.steps)}")
    for name in sorted(pipeline.secret_refs):
        console.print_info(f"  secret: {name} <- secrets.{pipeline.secret_refs[name].name}")


@cli.command()
@click.option("--workflow", default=None, envvar="SEQCI_WORKFLOW", help="Workflow file (.yml or .py)")
@click.option("--write", is_flag=True, default=False, help="Rewrite the file in place (YAML only)")
def fmt(workflow, write):
    """Print the workflow in normalized YAML form."""
    console = get_console()
    workflow_path = discover_workflow(workflow)
    pipeline = _load(workflow_path)

    if not write:
        click.echo(dump_workflow(pipeline), nl=False)
        return

    if workflow_path.suffix not in (".yml", ".yaml"):
        console.print_error("Cannot rewrite", f"{workflow_path} is not a YAML workflow")
        sys.exit(EXIT_CONFIG_ERROR)
    save_workflow(pipeline, workflow_path)
    console.print_info(f"Rewrote {workflow_path}")


if __name__ == "__main__":
    cli()
