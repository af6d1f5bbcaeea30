from .dsl import sh, uses, secret, pipeline, PipelineBuilder, build
from .runner import run_pipeline, validate_pipeline
from .trigger import should_run
from .model import Event, Pipeline, RunResult, Step, TriggerRule

__all__ = [
    "sh", "uses", "secret", "pipeline", "PipelineBuilder", "build",
    "run_pipeline", "validate_pipeline", "should_run",
    "Event", "Pipeline", "RunResult", "Step", "TriggerRule",
]
