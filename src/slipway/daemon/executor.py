"""Run executor — turns an admitted push into a build → deploy run and records it."""

from __future__ import annotations
import asyncio
import logging
import shutil
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping

from slipway.artifacts.store import ArtifactStore, LocalArtifactStore
from slipway.connectors import publisher_from_settings, renderer_from_settings
from slipway.connectors.publisher import Publisher
from slipway.connectors.renderer import Renderer
from slipway.core.config import SlipwaySettings
from slipway.core.errors import AdmissionError
from slipway.dag.runner import GraphRunResult, StageDefinition, StageRunner
from slipway.pipeline.environment import DatabaseEnvironment, EnvironmentHandle
from slipway.pipeline.permissions import BUILD_SCOPE, IdentityProvider, deploy_scope
from slipway.pipeline.trigger import PushEvent, TriggerEvaluator
from slipway.pipeline.types import BUILD_STAGE, DEPLOY_STAGE, StageStatus
from slipway.repositories.environment_repo import EnvironmentRepository
from slipway.repositories.run_repo import RunRepository
from slipway.stages.build import BuildStage
from slipway.stages.deploy import DeployStage

logger = logging.getLogger("slipway.executor")


@dataclass
class RunOutcome:
    """The observable result of a run."""
    run_id: str
    status: str
    build_status: str
    deploy_status: str
    published_url: str | None = None
    error: dict | None = None

    @classmethod
    def from_result(cls, result: GraphRunResult) -> "RunOutcome":
        deploy = result.stages[DEPLOY_STAGE]
        url = deploy.outputs.get("url") if deploy.status == StageStatus.SUCCEEDED else None
        return cls(
            run_id=result.run_id,
            status=result.status,
            build_status=result.stages[BUILD_STAGE].status.value,
            deploy_status=deploy.status.value,
            published_url=url,
            error=result.first_error,
        )

    @classmethod
    def from_run(cls, run) -> "RunOutcome":
        """Rebuild the outcome from a stored run row."""
        error = None
        if run.trace:
            error = run.trace.get("outcome", {}).get("error")
        elif run.error:
            stage, _, rest = run.error.partition(": ")
            code, _, message = rest.partition(": ")
            error = {"stage": stage, "code": code, "message": message}
        url = run.published_url if run.deploy_status == StageStatus.SUCCEEDED.value else None
        return cls(
            run_id=run.id,
            status=run.status,
            build_status=run.build_status or StageStatus.PENDING.value,
            deploy_status=run.deploy_status or StageStatus.PENDING.value,
            published_url=url,
            error=error,
        )

    def to_dict(self) -> dict:
        data = {
            "run_id": self.run_id,
            "status": self.status,
            "build_status": self.build_status,
            "deploy_status": self.deploy_status,
        }
        if self.published_url is not None:
            data["published_url"] = self.published_url
        if self.error is not None:
            data["error"] = self.error
        return data


def pipeline_stages(
    *,
    renderer: Renderer,
    store: ArtifactStore,
    publisher: Publisher,
    environment: EnvironmentHandle,
    source: str | Path,
    workspace: str | Path,
    output_dir: str = "dist",
    entry_document: str = "index.html",
    emit_html: bool = True,
    render_timeout_seconds: int = 600,
    deploy_lock: asyncio.Lock | None = None,
) -> list[StageDefinition]:
    """The build → deploy graph. Only deploy's scope can reach the environment."""
    workspace = Path(workspace)
    build = BuildStage(
        renderer=renderer,
        store=store,
        source=source,
        output=workspace / output_dir,
        entry_document=entry_document,
        emit_html=emit_html,
        timeout_seconds=render_timeout_seconds,
    )
    deploy = DeployStage(
        store=store,
        publisher=publisher,
        environment=environment,
        workspace=workspace,
    )

    async def _deploy(ctx):
        if deploy_lock is None:
            return await deploy(ctx)
        async with deploy_lock:
            return await deploy(ctx)

    return [
        StageDefinition(name=BUILD_STAGE, fn=build, scope=BUILD_SCOPE),
        StageDefinition(
            name=DEPLOY_STAGE,
            fn=_deploy,
            needs=[BUILD_STAGE],
            scope=deploy_scope(environment.name),
        ),
    ]


def _naive(dt: datetime | None) -> datetime | None:
    return dt.astimezone(timezone.utc).replace(tzinfo=None) if dt else None


class RunManager:
    """Admits events, executes runs, and tracks the ones in flight.

    Usage:
        manager = RunManager.from_settings(settings, session_factory)
        outcome = await manager.submit({"branch": "main", "commit_ref": "abc123"})
    """

    def __init__(
        self,
        settings: SlipwaySettings,
        session_factory,
        store: ArtifactStore,
        renderer: Renderer,
        publisher: Publisher,
        identity: IdentityProvider,
    ):
        self.settings = settings
        self.session_factory = session_factory
        self.store = store
        self.renderer = renderer
        self.publisher = publisher
        self.identity = identity
        self.trigger = TriggerEvaluator(settings.target_branch)
        self._tasks: dict[str, asyncio.Task] = {}
        self._deploy_locks: dict[str, asyncio.Lock] = {}

    @classmethod
    def from_settings(cls, settings: SlipwaySettings, session_factory) -> "RunManager":
        identity = IdentityProvider(ttl_seconds=settings.id_token_ttl_seconds)
        return cls(
            settings=settings,
            session_factory=session_factory,
            store=LocalArtifactStore(
                root=settings.artifacts_dir,
                retention_seconds=settings.artifact_retention_seconds,
            ),
            renderer=renderer_from_settings(settings),
            publisher=publisher_from_settings(settings, verifier=identity),
            identity=identity,
        )

    async def recover(self) -> int:
        """Close out runs left in flight by a previous daemon process."""
        async with self.session_factory() as session:
            count = await RunRepository(session).fail_in_flight(
                "daemon: abandoned: The daemon stopped before this run finished"
            )
        if count:
            logger.warning(f"Marked {count} abandoned run(s) as failed")
        return count

    @property
    def active_runs(self) -> list[str]:
        return list(self._tasks)

    def environment(self, name: str | None = None) -> EnvironmentHandle:
        return DatabaseEnvironment(name or self.settings.environment, self.session_factory)

    async def submit(self, payload: PushEvent | Mapping[str, Any], wait: bool = True) -> RunOutcome | None:
        """Evaluate an event and, if admitted, run the pipeline for it.

        Returns None when the event is rejected; no run is created then.
        With ``wait=False`` the run continues in the background and the
        pending outcome is returned immediately.
        """
        try:
            event = self.trigger.evaluate(payload)
        except AdmissionError as e:
            logger.info(f"Event rejected: {e}")
            return None

        run_id = str(uuid.uuid4())
        env_name = self.settings.environment
        async with self.session_factory() as session:
            await EnvironmentRepository(session).ensure(env_name)
            await RunRepository(session).create(
                id=run_id,
                event=event.event,
                branch=event.branch,
                commit_ref=event.commit_ref,
                environment=env_name,
                status="running",
                started_at=datetime.utcnow(),
            )
        logger.info(f"Admitted push to {event.branch}@{event.commit_ref[:12]} as run {run_id}")

        task = asyncio.create_task(self._execute(run_id, event), name=f"run:{run_id}")
        self._tasks[run_id] = task
        task.add_done_callback(self._forget)

        if not wait:
            return RunOutcome(
                run_id=run_id,
                status="running",
                build_status=StageStatus.PENDING.value,
                deploy_status=StageStatus.PENDING.value,
            )
        return await self.wait_for(run_id)

    def _forget(self, task: asyncio.Task) -> None:
        run_id = task.get_name().removeprefix("run:")
        self._tasks.pop(run_id, None)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Run {run_id} could not be recorded: {task.exception()!r}")

    async def wait_for(self, run_id: str) -> RunOutcome | None:
        task = self._tasks.get(run_id)
        if task is not None:
            # wait() leaves the run alone if this caller goes away
            await asyncio.wait({task})
        return await self.outcome(run_id)

    async def outcome(self, run_id: str) -> RunOutcome | None:
        async with self.session_factory() as session:
            run = await RunRepository(session).get_by_id(run_id)
        return RunOutcome.from_run(run) if run else None

    async def cancel(self, run_id: str) -> bool:
        """Request cancellation of an in-flight run."""
        task = self._tasks.get(run_id)
        if task is None or task.done():
            return False
        if task.cancelling():
            logger.info(f"Run {run_id} is already being cancelled")
        else:
            task.cancel()
            logger.info(f"Cancellation requested for run {run_id}")
        await asyncio.wait({task})
        if task.cancelled():
            await self._record_cancelled(run_id)
        return True

    async def _execute(self, run_id: str, event: PushEvent) -> RunOutcome:
        try:
            return await self._run_pipeline(run_id)
        except Exception as e:
            logger.exception(f"Run {run_id} crashed")
            return await self._record_crashed(run_id, e)

    async def _run_pipeline(self, run_id: str) -> RunOutcome:
        workspace = Path(self.settings.workspace_dir) / run_id
        env = self.environment()
        stages = pipeline_stages(
            renderer=self.renderer,
            store=self.store,
            publisher=self.publisher,
            environment=env,
            source=self.settings.source_path,
            workspace=workspace,
            output_dir=self.settings.output_dir,
            entry_document=self.settings.entry_document,
            emit_html=self.settings.emit_html,
            render_timeout_seconds=self.settings.render_timeout_seconds,
            deploy_lock=(
                self._deploy_locks.setdefault(env.name, asyncio.Lock())
                if self.settings.serialize_deploys else None
            ),
        )
        runner = StageRunner(stages, identity=self.identity)
        try:
            result = await runner.run(run_id)
        except asyncio.CancelledError:
            result = runner.result
            if result.stages[DEPLOY_STAGE].status != StageStatus.SUCCEEDED:
                await self.store.discard(run_id)
            await self._record_finish(result)
            raise
        finally:
            shutil.rmtree(workspace, ignore_errors=True)

        return await self._record_finish(result)

    async def _record_cancelled(self, run_id: str) -> None:
        """Close out a run whose task was cancelled before it recorded anything."""
        async with self.session_factory() as session:
            repo = RunRepository(session)
            run = await repo.get_by_id(run_id)
            if run is None or run.status not in ("pending", "running"):
                return
            await repo.update(
                run,
                status="cancelled",
                build_status=StageStatus.CANCELLED.value,
                deploy_status=StageStatus.SKIPPED.value,
                finished_at=datetime.utcnow(),
                error="build: cancelled: Run cancelled before it started",
            )
            outcome = RunOutcome.from_run(run)

        from slipway.daemon.webhooks import notify_run_complete
        await notify_run_complete(outcome.to_dict())
        logger.info(f"Run {run_id} cancelled")

    async def _record_crashed(self, run_id: str, exc: Exception) -> RunOutcome | None:
        """Fail a run whose execution raised outside any stage."""
        async with self.session_factory() as session:
            repo = RunRepository(session)
            run = await repo.get_by_id(run_id)
            if run is None:
                return None
            if run.status in ("pending", "running"):
                build = StageStatus(run.build_status or StageStatus.PENDING.value)
                deploy = StageStatus(run.deploy_status or StageStatus.PENDING.value)
                await repo.update(
                    run,
                    status="failed",
                    build_status=(build if build.terminal else StageStatus.FAILED).value,
                    deploy_status=(deploy if deploy.terminal else StageStatus.SKIPPED).value,
                    finished_at=datetime.utcnow(),
                    error=f"daemon: internal_error: {type(exc).__name__}: {exc}",
                )
            outcome = RunOutcome.from_run(run)

        from slipway.daemon.webhooks import notify_run_complete
        await notify_run_complete(outcome.to_dict())
        return outcome

    async def _record_finish(self, result: GraphRunResult) -> RunOutcome:
        outcome = RunOutcome.from_result(result)
        artifact = result.stages[BUILD_STAGE].outputs.get("artifact")
        error = outcome.error
        trace = result.to_dict()
        trace["outcome"] = outcome.to_dict()

        async with self.session_factory() as session:
            repo = RunRepository(session)
            run = await repo.get_by_id(result.run_id)
            await repo.update(
                run,
                status=outcome.status,
                build_status=outcome.build_status,
                deploy_status=outcome.deploy_status,
                artifact_handle=artifact,
                published_url=outcome.published_url,
                started_at=_naive(result.started_at),
                finished_at=_naive(result.finished_at),
                duration_ms=result.duration_ms,
                error=f"{error['stage']}: {error['code']}: {error['message']}" if error else None,
                trace=trace,
                logs=result.logs(),
            )

        from slipway.daemon.webhooks import notify_run_complete
        await notify_run_complete(outcome.to_dict())

        if outcome.status == "succeeded":
            logger.info(f"Run {result.run_id} published {outcome.published_url} ({result.duration_ms}ms)")
        else:
            logger.error(f"Run {result.run_id} {outcome.status}: {error}")
        return outcome


_manager: RunManager | None = None


def set_manager(manager: RunManager | None) -> None:
    global _manager
    _manager = manager


def get_manager() -> RunManager | None:
    return _manager
