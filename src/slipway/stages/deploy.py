"""Deploy stage — fetch the build artifact and publish it to an environment."""

from __future__ import annotations
import asyncio
import shutil
from pathlib import Path

from slipway.artifacts.store import ArtifactHandle, ArtifactStore
from slipway.connectors.publisher import Publisher, PublishResult
from slipway.core.errors import DependencyNotSatisfiedError, PublishError, SlipwayError
from slipway.pipeline.context import StageContext
from slipway.pipeline.environment import EnvironmentHandle
from slipway.pipeline.types import BUILD_STAGE, StageStatus


class DeployStage:
    """Publishes the artifact produced by ``build`` and records the live URL.

    Once the publish call has been issued it runs to completion even if the
    run is cancelled, and its result is recorded.
    """

    def __init__(
        self,
        store: ArtifactStore,
        publisher: Publisher,
        environment: EnvironmentHandle,
        workspace: str | Path,
        build_stage: str = BUILD_STAGE,
    ):
        self.store = store
        self.publisher = publisher
        self.environment = environment
        self.workspace = Path(workspace)
        self.build_stage = build_stage

    async def __call__(self, ctx: StageContext) -> dict:
        handle = self.check_dependency(ctx)

        site_dir = self.workspace / "site"
        try:
            async with ctx.step("fetch") as step:
                await self.store.get(handle, site_dir)
                step.metadata["digest"] = handle.digest

            credential = ctx.token.publish_credential(self.environment.name)

            async with ctx.step("publish") as step:
                result = await self._publish_uncancellable(ctx, site_dir, credential)
                step.metadata["url"] = result.url
        finally:
            shutil.rmtree(site_dir, ignore_errors=True)

        return {
            "environment": self.environment.name,
            "url": result.url,
            "deployment_id": result.deployment_id,
        }

    def check_dependency(self, ctx: StageContext) -> ArtifactHandle:
        status = ctx.needs.get(self.build_stage)
        if status != StageStatus.SUCCEEDED:
            state = status.value if status else "not declared"
            raise DependencyNotSatisfiedError(
                f"Deploy needs '{self.build_stage}' to have succeeded (it is {state})"
            )
        artifact = ctx.inputs.get(self.build_stage, {}).get("artifact")
        if not artifact:
            raise DependencyNotSatisfiedError(f"'{self.build_stage}' produced no artifact handle")
        return ArtifactHandle.from_dict(artifact)

    async def _publish_uncancellable(self, ctx: StageContext, site_dir: Path, credential) -> PublishResult:
        """Publish and record the URL; once issued, this runs to completion.

        Every cancellation that arrives while waiting is absorbed and undone
        with ``uncancel()``, so repeated cancel requests cannot interrupt it.
        """
        task = asyncio.ensure_future(self._publish_and_record(ctx, site_dir, credential))
        absorbed = 0
        try:
            while True:
                try:
                    return await asyncio.shield(task)
                except asyncio.CancelledError:
                    if task.cancelled():
                        raise
                    if absorbed == 0:
                        ctx.log("Cancellation requested while publishing; waiting for the publish call to land")
                    absorbed += 1
        finally:
            current = asyncio.current_task()
            if current is not None and task.done() and not task.cancelled():
                for _ in range(absorbed):
                    current.uncancel()

    async def _publish_and_record(self, ctx: StageContext, site_dir: Path, credential) -> PublishResult:
        result = await self._await_publish(
            self.publisher.publish(self.environment.name, site_dir, credential)
        )
        await self.environment.set_url(result.url, ctx.token)
        ctx.log(f"Environment '{self.environment.name}' now serves {result.url}")
        return result

    @staticmethod
    async def _await_publish(awaitable) -> PublishResult:
        try:
            return await awaitable
        except (SlipwayError, asyncio.CancelledError):
            raise
        except Exception as e:
            raise PublishError(f"Publish call failed: {e}") from e
