"""StageContext — the runtime context passed to every stage invocation."""

from __future__ import annotations
import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import AsyncIterator

from slipway.core.errors import SlipwayError
from slipway.pipeline.permissions import CapabilityToken
from slipway.pipeline.types import StageStatus


@dataclass
class Step:
    """One timed unit inside a stage (render, verify, upload, fetch, publish)."""
    name: str
    status: StageStatus = StageStatus.RUNNING
    elapsed_ms: int | None = None
    error: dict | None = None
    metadata: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        data = {"name": self.name, "status": self.status.value, "duration_ms": self.elapsed_ms}
        if self.error:
            data["error"] = self.error
        data.update(self.metadata)
        return data


class StageContext:
    """Runtime context for one stage of one run.

    Holds the stage's capability token; the token is never reachable from
    another stage's context.
    """

    def __init__(
        self,
        run_id: str,
        stage: str,
        token: CapabilityToken,
        needs: dict[str, StageStatus] | None = None,
        inputs: dict[str, dict] | None = None,
        logger: logging.Logger | None = None,
    ):
        self.run_id = run_id
        self.stage = stage
        self.token = token
        self.needs = needs or {}  # dependency name → status when this stage started
        self.inputs = inputs or {}  # dependency name → that stage's outputs
        self.outputs: dict = {}
        self._logger = logger or logging.getLogger(f"slipway.stages.{stage}")
        self._lines: list[str] = []
        self._steps: list[Step] = []

    def log(self, message: str) -> None:
        """Log a message (captured in the run's logs)."""
        stamp = datetime.now(tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")
        self._lines.append(f"{stamp} {self.stage}: {message}")
        self._logger.info(f"[{self.run_id[:8]}] {message}")

    @asynccontextmanager
    async def step(self, name: str) -> AsyncIterator[Step]:
        """Time a named step; failures are recorded with their error code and re-raised."""
        step = Step(name=name)
        self._steps.append(step)
        began = time.monotonic()
        try:
            yield step
        except SlipwayError as e:
            step.status = StageStatus.FAILED
            step.error = {"code": e.code, "message": str(e)}
            self.log(f"{name} failed [{e.code}]: {e}")
            raise
        except asyncio.CancelledError:
            step.status = StageStatus.CANCELLED
            self.log(f"{name} cancelled")
            raise
        except Exception as e:
            step.status = StageStatus.FAILED
            step.error = {"code": "internal_error", "message": f"{type(e).__name__}: {e}"}
            self.log(f"{name} failed: {e}")
            raise
        else:
            step.status = StageStatus.SUCCEEDED
            self.log(f"{name} ok")
        finally:
            step.elapsed_ms = int((time.monotonic() - began) * 1000)

    def get_logs(self) -> list[str]:
        return list(self._lines)

    def get_trace(self) -> dict:
        return {
            "stage": self.stage,
            "scope": self.token.scope.to_list(),
            "steps": [s.to_dict() for s in self._steps],
        }
