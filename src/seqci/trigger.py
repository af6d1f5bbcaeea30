# trigger.py
from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Optional

from .errors import ConfigurationError
from .model import Event, EventKind, TriggerRule


def should_run(event: Event, rule: TriggerRule) -> bool:
    """
    True iff the event's kind is one of the rule's kinds.

    Unknown kinds are a non-match, not an error, so new event types
    from the host just don't start the pipeline.
    """
    try:
        kind = EventKind(event.kind)
    except ValueError:
        return False
    return kind in rule.kinds


def _strip_ref(ref: str | None) -> str | None:
    if not ref:
        return None
    for prefix in ("refs/heads/", "refs/tags/"):
        if ref.startswith(prefix):
            return ref[len(prefix):]
    return ref


def event_from_github(event_name: str, payload: Optional[Dict[str, Any]] = None) -> Event:
    """
    Build an Event from a GitHub-style event name + webhook payload.

    push          -> branch from payload["ref"]
    pull_request  -> branch from payload["pull_request"]["base"]["ref"] (the target)
    """
    payload = payload or {}
    branch: str | None = None

    if event_name == EventKind.PULL_REQUEST.value:
        pr = payload.get("pull_request") or {}
        branch = _strip_ref((pr.get("base") or {}).get("ref"))
    else:
        branch = _strip_ref(payload.get("ref"))

    metadata: Dict[str, Any] = {}
    repo = payload.get("repository") or {}
    if repo.get("full_name"):
        metadata["repository"] = repo["full_name"]
    sha = payload.get("after") or (payload.get("head_commit") or {}).get("id")
    if sha:
        metadata["sha"] = sha

    return Event(kind=event_name, branch=branch, metadata=metadata)


def load_event(
    event_name: str,
    payload_path: str | Path | None = None,
    branch: str | None = None,
) -> Event:
    """
    Load an event for a local/CI invocation.

    payload_path is a JSON webhook payload (what GITHUB_EVENT_PATH points at).
    `branch` fills in when the payload doesn't carry one.
    """
    payload: Dict[str, Any] = {}
    if payload_path:
        p = Path(payload_path)
        try:
            payload = json.loads(p.read_text(encoding="utf-8"))
        except FileNotFoundError:
            raise ConfigurationError(
                message=f"Event payload not found: {p}",
            ) from None
        except json.JSONDecodeError as e:
            raise ConfigurationError(
                message=f"Event payload is not valid JSON: {p}",
                details={"error": str(e)},
            ) from e
        if not isinstance(payload, dict):
            raise ConfigurationError(message=f"Event payload must be a JSON object: {p}")

    event = event_from_github(event_name, payload)
    if event.branch is None and branch:
        event = Event(kind=event.kind, branch=branch, metadata=event.metadata)
    return event
