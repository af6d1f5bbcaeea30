"""Tests for trigger evaluation."""

import json

import pytest

from seqci.errors import ConfigurationError
from seqci.model import Event, EventKind, TriggerRule
from seqci.trigger import event_from_github, load_event, should_run


def test_pull_request_matches_push_and_pr_rule():
    rule = TriggerRule.from_names(["push", "pull_request"])
    assert should_run(Event(kind="pull_request"), rule) is True


def test_pull_request_does_not_match_push_only_rule():
    rule = TriggerRule.from_names(["push"])
    assert should_run(Event(kind="pull_request"), rule) is False


@pytest.mark.parametrize("kind", EventKind.names())
def test_every_kind_in_rule_matches(kind):
    assert should_run(Event(kind=kind), TriggerRule.any()) is True


def test_empty_rule_matches_nothing():
    rule = TriggerRule(kinds=frozenset())
    assert not any(should_run(Event(kind=k), rule) for k in EventKind.names())


def test_unknown_event_kind_is_a_non_match():
    assert should_run(Event(kind="workflow_dispatch"), TriggerRule.any()) is False
    assert should_run(Event(kind=""), TriggerRule.any()) is False


def test_rule_with_unknown_kind_is_config_error():
    with pytest.raises(ConfigurationError, match="Unknown trigger event 'schedule'"):
        TriggerRule.from_names(["push", "schedule"])


def test_push_payload_branch():
    payload = {
        "ref": "refs/heads/main",
        "after": "abc123",
        "repository": {"full_name": "user/repo"},
    }
    event = event_from_github("push", payload)
    assert event.kind == "push"
    assert event.branch == "main"
    assert event.metadata == {"repository": "user/repo", "sha": "abc123"}


def test_pull_request_payload_uses_target_branch():
    payload = {"pull_request": {"base": {"ref": "develop"}, "head": {"ref": "feature"}}}
    event = event_from_github("pull_request", payload)
    assert event.branch == "develop"


def test_load_event_reads_payload_file(tmp_path):
    p = tmp_path / "event.json"
    p.write_text(json.dumps({"ref": "refs/heads/release"}))
    event = load_event("push", p, branch="ignored")
    assert event.branch == "release"


def test_load_event_falls_back_to_branch():
    event = load_event("push", None, branch="main")
    assert event.branch == "main"


def test_load_event_bad_json(tmp_path):
    p = tmp_path / "event.json"
    p.write_text("{not json")
    with pytest.raises(ConfigurationError, match="not valid JSON"):
        load_event("push", p)


def test_load_event_missing_file(tmp_path):
    with pytest.raises(ConfigurationError, match="not found"):
        load_event("push", tmp_path / "nope.json")
