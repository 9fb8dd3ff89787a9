"""Stage runner — executes a run's stages in dependency order."""

from __future__ import annotations
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable

from slipway.core.errors import SlipwayError
from slipway.dag.resolver import StageGraph
from slipway.pipeline.context import StageContext
from slipway.pipeline.permissions import IdentityProvider, PermissionScope
from slipway.pipeline.types import StageStatus

logger = logging.getLogger("slipway.dag")

StageFn = Callable[[StageContext], Awaitable[dict | None]]


@dataclass
class StageDefinition:
    """A stage: what it runs, what it needs, and what it may do."""
    name: str
    fn: StageFn
    needs: list[str] = field(default_factory=list)
    scope: PermissionScope = field(default_factory=PermissionScope)


@dataclass
class StageResult:
    status: StageStatus = StageStatus.PENDING
    started_at: datetime | None = None
    finished_at: datetime | None = None
    duration_ms: int | None = None
    outputs: dict = field(default_factory=dict)
    error: dict | None = None
    logs: list[str] = field(default_factory=list)
    trace: dict | None = None

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration_ms": self.duration_ms,
            "error": self.error,
            "steps": (self.trace or {}).get("steps", []),
            "scope": (self.trace or {}).get("scope", []),
        }


@dataclass
class GraphRunResult:
    """Result of running every stage of one run."""
    run_id: str
    status: str = "pending"  # pending | running | succeeded | failed | cancelled
    started_at: datetime | None = None
    finished_at: datetime | None = None
    duration_ms: int | None = None
    stages: dict[str, StageResult] = field(default_factory=dict)
    execution_order: list[list[str]] = field(default_factory=list)

    def names_with(self, status: StageStatus) -> list[str]:
        return [name for name, r in self.stages.items() if r.status == status]

    @property
    def failed(self) -> list[str]:
        return self.names_with(StageStatus.FAILED)

    @property
    def skipped(self) -> list[str]:
        return self.names_with(StageStatus.SKIPPED)

    @property
    def first_error(self) -> dict | None:
        for group in self.execution_order:
            for name in group:
                error = self.stages[name].error
                if error:
                    return {"stage": name, **error}
        return None

    def logs(self) -> str:
        lines = []
        for group in self.execution_order:
            for name in group:
                lines.extend(self.stages[name].logs)
        return "\n".join(lines)

    def to_dict(self) -> dict:
        return {
            "run_id": self.run_id,
            "status": self.status,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration_ms": self.duration_ms,
            "stages": {name: r.to_dict() for name, r in self.stages.items()},
            "execution_order": self.execution_order,
        }


class StageRunner:
    """Walks a stage graph, starting a stage only when all of its needs succeeded.

    A stage whose dependency failed, was skipped or was cancelled is marked
    skipped and never started. Each started stage gets a capability token
    minted from its own scope; the token is revoked when the stage ends.
    """

    def __init__(
        self,
        stages: list[StageDefinition],
        identity: IdentityProvider,
        max_parallel: int = 1,
    ):
        self.definitions = {s.name: s for s in stages}
        self.identity = identity
        self.max_parallel = max_parallel
        self.result: GraphRunResult | None = None

        self.graph = StageGraph()
        for s in stages:
            self.graph.add_stage(s.name, needs=s.needs)
        missing = set(self.graph.nodes) - set(self.definitions)
        if missing:
            raise ValueError(f"Stages needed but not defined: {', '.join(sorted(missing))}")
        self.groups = self.graph.parallel_groups()  # raises CycleError

    async def run(self, run_id: str) -> GraphRunResult:
        """Execute every stage. On cancellation the result is finalized, then re-raised."""
        result = GraphRunResult(
            run_id=run_id,
            status="running",
            started_at=datetime.now(tz=timezone.utc),
            execution_order=self.groups,
            stages={name: StageResult() for name in self.definitions},
        )
        self.result = result
        semaphore = asyncio.Semaphore(self.max_parallel)

        async def _run_one(name: str):
            async with semaphore:
                await self._run_stage(run_id, name, result)

        try:
            for group in self.groups:
                runnable = []
                for name in group:
                    if self.graph.is_blocked(name) or not self.graph.is_eligible(name):
                        self._mark(name, StageStatus.SKIPPED, result)
                        logger.info(f"Skipping {name} — dependency did not succeed")
                    else:
                        runnable.append(name)
                await asyncio.gather(*[_run_one(name) for name in runnable])
        except asyncio.CancelledError:
            for name, node in self.graph.nodes.items():
                if node.status == StageStatus.PENDING:
                    self._mark(name, StageStatus.SKIPPED, result)
            self._finish(result)
            raise

        self._finish(result)
        return result

    async def _run_stage(self, run_id: str, name: str, result: GraphRunResult) -> None:
        definition = self.definitions[name]
        node = self.graph[name]
        stage_result = result.stages[name]

        if not self.graph.is_eligible(name):
            # Unreachable through run(); guards direct misuse
            self._mark(name, StageStatus.SKIPPED, result)
            return

        token = self.identity.mint(run_id, name, definition.scope)
        ctx = StageContext(
            run_id=run_id,
            stage=name,
            token=token,
            needs={dep: self.graph.status(dep) for dep in node.upstream},
            inputs={dep: result.stages[dep].outputs for dep in node.upstream},
        )

        self._mark(name, StageStatus.RUNNING, result)
        stage_result.started_at = datetime.now(tz=timezone.utc)
        logger.info(f"Running stage: {name} (run={run_id})")
        try:
            outputs = await definition.fn(ctx)
            stage_result.outputs = {**ctx.outputs, **(outputs or {})}
            self._mark(name, StageStatus.SUCCEEDED, result)
        except asyncio.CancelledError:
            ctx.log("Cancelled")
            self._mark(name, StageStatus.CANCELLED, result)
            raise
        except SlipwayError as e:
            logger.error(f"Stage {name} failed: {e}")
            ctx.log(f"FAILED: {e.code}: {e}")
            stage_result.error = e.to_dict()
            self._mark(name, StageStatus.FAILED, result)
        except Exception as e:
            logger.exception(f"Stage {name} crashed")
            ctx.log(f"FAILED: {type(e).__name__}: {e}")
            stage_result.error = {"code": "internal_error", "type": type(e).__name__, "message": str(e)}
            self._mark(name, StageStatus.FAILED, result)
        finally:
            token.revoke()
            stage_result.finished_at = datetime.now(tz=timezone.utc)
            stage_result.duration_ms = int(
                (stage_result.finished_at - stage_result.started_at).total_seconds() * 1000
            )
            stage_result.logs = ctx.get_logs()
            stage_result.trace = ctx.get_trace()

    def _mark(self, name: str, status: StageStatus, result: GraphRunResult) -> None:
        self.graph.set_status(name, status)
        result.stages[name].status = status

    def _finish(self, result: GraphRunResult) -> None:
        result.finished_at = datetime.now(tz=timezone.utc)
        result.duration_ms = int(
            (result.finished_at - result.started_at).total_seconds() * 1000
        )
        statuses = {r.status for r in result.stages.values()}
        if StageStatus.CANCELLED in statuses:
            result.status = "cancelled"
        elif statuses <= {StageStatus.SUCCEEDED}:
            result.status = "succeeded"
        else:
            result.status = "failed"
