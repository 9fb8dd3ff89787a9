"""Pydantic schemas for trigger events."""

from pydantic import BaseModel

from slipway.schemas.run import RunOutcomeResponse


class PushEventRequest(BaseModel):
    """Body of ``POST /events/push``.

    Either ``branch`` or a git ``ref`` (``refs/heads/<branch>``) names the
    branch. The commit may be given as ``commit_ref``, ``commitRef`` or, as git
    hosts send it, ``after``.
    """
    event: str = "push"
    branch: str | None = None
    ref: str | None = None
    commit_ref: str | None = None
    commitRef: str | None = None
    after: str | None = None


class PushEventResponse(BaseModel):
    admitted: bool
    reason: str | None = None
    run: RunOutcomeResponse | None = None
