"""Tests for push event admission."""

import pytest
from slipway.core.errors import AdmissionError
from slipway.pipeline.trigger import PushEvent, TriggerEvaluator


class TestPushEvent:
    def test_from_branch_payload(self):
        event = PushEvent.from_payload({"branch": "main", "commit_ref": "abc123"})
        assert event.event == "push"
        assert event.branch == "main"
        assert event.commit_ref == "abc123"

    def test_from_git_ref_payload(self):
        event = PushEvent.from_payload({"ref": "refs/heads/main", "after": "deadbeef"})
        assert event.branch == "main"
        assert event.commit_ref == "deadbeef"

    def test_tag_ref_is_not_a_branch(self):
        with pytest.raises(AdmissionError, match="not a branch"):
            PushEvent.from_payload({"ref": "refs/tags/v1.0", "after": "deadbeef"})

    @pytest.mark.parametrize("payload", [
        {"commit_ref": "abc123"},
        {"branch": "main"},
        {"branch": "", "commit_ref": "abc123"},
        {"branch": "main", "commit_ref": "   "},
    ])
    def test_malformed_payload(self, payload):
        with pytest.raises(AdmissionError, match="Malformed"):
            PushEvent.from_payload(payload)

    def test_non_mapping_payload(self):
        with pytest.raises(AdmissionError):
            PushEvent.from_payload(["main", "abc123"])


class TestTriggerEvaluator:
    def test_target_branch_admitted(self):
        evaluator = TriggerEvaluator("main")
        event = evaluator.evaluate({"branch": "main", "commit_ref": "abc123"})
        assert event.commit_ref == "abc123"
        assert evaluator.admit({"branch": "main", "commit_ref": "abc123"})

    @pytest.mark.parametrize("branch", ["feature/x", "Main", "main2", "release/main"])
    def test_other_branches_rejected(self, branch):
        evaluator = TriggerEvaluator("main")
        assert not evaluator.admit({"branch": branch, "commit_ref": "abc123"})
        with pytest.raises(AdmissionError, match="does not match"):
            evaluator.evaluate({"branch": branch, "commit_ref": "abc123"})

    def test_other_event_kinds_rejected(self):
        evaluator = TriggerEvaluator("main")
        with pytest.raises(AdmissionError, match="does not trigger"):
            evaluator.evaluate({"event": "tag", "branch": "main", "commit_ref": "abc123"})

    def test_configurable_target(self):
        evaluator = TriggerEvaluator("gh-pages-src")
        assert evaluator.admit(PushEvent(branch="gh-pages-src", commit_ref="abc"))
        assert not evaluator.admit(PushEvent(branch="main", commit_ref="abc"))

    def test_empty_target_rejected(self):
        with pytest.raises(ValueError):
            TriggerEvaluator("")
