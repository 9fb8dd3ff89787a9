"""Trigger evaluation — decides whether an incoming push starts a run."""

from __future__ import annotations

import logging
from typing import Any, Mapping

from pydantic import BaseModel, ValidationError, field_validator

from slipway.core.errors import AdmissionError

logger = logging.getLogger("slipway.trigger")

BRANCH_REF_PREFIX = "refs/heads/"


class PushEvent(BaseModel):
    """The part of a push notification the pipeline cares about."""

    event: str = "push"
    branch: str
    commit_ref: str

    model_config = {"frozen": True}

    @field_validator("branch", "commit_ref")
    @classmethod
    def _non_empty(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be empty")
        return value

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "PushEvent":
        """Parse a raw descriptor.

        Accepts ``branch`` or a forge-style ``ref`` (``refs/heads/main``), and
        ``commit_ref``, ``commitRef`` or ``after`` for the commit.
        """
        if not isinstance(payload, Mapping):
            raise AdmissionError(f"Event descriptor must be a mapping, got {type(payload).__name__}")

        branch = payload.get("branch")
        ref = payload.get("ref")
        if branch is None and isinstance(ref, str):
            if not ref.startswith(BRANCH_REF_PREFIX):
                raise AdmissionError(f"Ref '{ref}' is not a branch")
            branch = ref[len(BRANCH_REF_PREFIX):]

        commit = payload.get("commit_ref", payload.get("commitRef", payload.get("after")))
        try:
            return cls(event=payload.get("event", "push"), branch=branch, commit_ref=commit)
        except ValidationError as e:
            fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
            raise AdmissionError(f"Malformed event descriptor (invalid: {fields})") from None


class TriggerEvaluator:
    """Admits push events whose branch equals the configured target exactly."""

    def __init__(self, target_branch: str = "main"):
        if not target_branch:
            raise ValueError("target_branch must not be empty")
        self.target_branch = target_branch

    def evaluate(self, event: PushEvent | Mapping[str, Any]) -> PushEvent:
        """Return the parsed event, or raise AdmissionError with the reason."""
        if not isinstance(event, PushEvent):
            event = PushEvent.from_payload(event)
        if event.event != "push":
            raise AdmissionError(f"Event kind '{event.event}' does not trigger deployments")
        if event.branch != self.target_branch:
            raise AdmissionError(
                f"Branch '{event.branch}' does not match target '{self.target_branch}'"
            )
        return event

    def admit(self, event: PushEvent | Mapping[str, Any]) -> bool:
        try:
            self.evaluate(event)
        except AdmissionError as e:
            logger.info(f"Rejected event: {e}")
            return False
        return True
