"""Pipeline types and enums."""

from __future__ import annotations

from enum import Enum


class StageStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self not in (StageStatus.PENDING, StageStatus.RUNNING)


class Capability(str, Enum):
    READ_SOURCE = "read-source"
    WRITE_ENVIRONMENT = "write-environment"
    READ_ID_TOKEN = "read-id-token"


BUILD_STAGE = "build"
DEPLOY_STAGE = "deploy"
