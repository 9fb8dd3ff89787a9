"""End-to-end pipeline behaviour: build → deploy over real stages and a real artifact store."""

import asyncio

import pytest
from slipway.artifacts.store import LocalArtifactStore
from slipway.core.errors import ArtifactNotFoundError, ArtifactUploadError, AuthorizationError, PublishRejectedError
from slipway.daemon.executor import RunOutcome, pipeline_stages
from slipway.dag.runner import StageDefinition, StageRunner
from slipway.pipeline.environment import InMemoryEnvironment
from slipway.pipeline.permissions import BUILD_SCOPE
from slipway.pipeline.types import StageStatus


class RejectingStore(LocalArtifactStore):
    """Artifact store whose uploads always fail."""

    def __init__(self, root, error: Exception):
        super().__init__(root=root, retention_seconds=3600)
        self.error = error

    async def put(self, run_id, directory):
        raise self.error


async def _run(run_id, *, renderer, publisher, store, environment, identity, source, tmp_path, **kwargs):
    stages = pipeline_stages(
        renderer=renderer,
        store=store,
        publisher=publisher,
        environment=environment,
        source=source,
        workspace=tmp_path / "runs" / run_id,
        **kwargs,
    )
    result = await StageRunner(stages, identity=identity).run(run_id)
    return result, RunOutcome.from_result(result)


class TestScenarios:
    @pytest.mark.asyncio
    async def test_successful_publish(self, fake_renderer, recording_publisher, store, environment, identity, source, tmp_path):
        result, outcome = await _run(
            "run-a", renderer=fake_renderer, publisher=recording_publisher, store=store,
            environment=environment, identity=identity, source=source, tmp_path=tmp_path,
        )

        assert outcome.status == "succeeded"
        assert outcome.build_status == "succeeded"
        assert outcome.deploy_status == "succeeded"
        assert outcome.published_url == "https://pages.example.test/run-a/"
        assert outcome.error is None
        assert await environment.current_url() == outcome.published_url
        assert result.execution_order == [["build"], ["deploy"]]

    @pytest.mark.asyncio
    async def test_render_failure_skips_deploy(self, renderer_factory, recording_publisher, store, identity, source, tmp_path):
        environment = InMemoryEnvironment("github-pages", url="https://pages.example.test/previous/")
        _, outcome = await _run(
            "run-b", renderer=renderer_factory(exit_code=1), publisher=recording_publisher, store=store,
            environment=environment, identity=identity, source=source, tmp_path=tmp_path,
        )

        assert outcome.status == "failed"
        assert outcome.build_status == "failed"
        assert outcome.deploy_status == "skipped"
        assert outcome.published_url is None
        assert outcome.error["stage"] == "build"
        assert outcome.error["code"] == "render_failed"
        assert recording_publisher.calls == []
        assert await environment.current_url() == "https://pages.example.test/previous/"

    @pytest.mark.asyncio
    async def test_empty_output_fails_build(self, renderer_factory, recording_publisher, store, environment, identity, source, tmp_path):
        _, outcome = await _run(
            "run-c", renderer=renderer_factory(files={}), publisher=recording_publisher, store=store,
            environment=environment, identity=identity, source=source, tmp_path=tmp_path,
        )

        assert outcome.build_status == "failed"
        assert outcome.deploy_status == "skipped"
        assert outcome.error["code"] == "empty_output"
        assert recording_publisher.calls == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [OSError("No space left on device"), ArtifactUploadError("quota exceeded")])
    async def test_upload_rejected_skips_deploy(self, fake_renderer, recording_publisher, tmp_path, identity, source, error):
        store = RejectingStore(root=tmp_path / "artifacts", error=error)
        environment = InMemoryEnvironment("github-pages", url="https://pages.example.test/previous/")
        _, outcome = await _run(
            "run-u", renderer=fake_renderer, publisher=recording_publisher, store=store,
            environment=environment, identity=identity, source=source, tmp_path=tmp_path,
        )

        assert outcome.status == "failed"
        assert outcome.build_status == "failed"
        assert outcome.deploy_status == "skipped"
        assert outcome.published_url is None
        assert outcome.error["stage"] == "build"
        assert outcome.error["code"] == "upload_failed"
        assert recording_publisher.calls == []
        assert environment.history == []
        assert await environment.current_url() == "https://pages.example.test/previous/"
        with pytest.raises(ArtifactNotFoundError):
            await store.find("run-u")

    @pytest.mark.asyncio
    async def test_publish_rejected(self, fake_renderer, publisher_factory, store, environment, identity, source, tmp_path):
        publisher = publisher_factory(error=PublishRejectedError("403 Forbidden", status_code=403))
        _, outcome = await _run(
            "run-d", renderer=fake_renderer, publisher=publisher, store=store,
            environment=environment, identity=identity, source=source, tmp_path=tmp_path,
        )

        assert outcome.status == "failed"
        assert outcome.build_status == "succeeded"
        assert outcome.deploy_status == "failed"
        assert outcome.error["stage"] == "deploy"
        assert outcome.error["code"] == "publish_rejected"
        assert await environment.current_url() is None
        # the build's artifact survives for inspection
        assert (await store.find("run-d")).run_id == "run-d"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("serialize", [False, True])
    async def test_concurrent_runs_last_write_wins(self, fake_renderer, publisher_factory, store, environment, identity, source, tmp_path, serialize):
        publisher = publisher_factory(delay=0.01)
        lock = asyncio.Lock() if serialize else None
        outcomes = await asyncio.gather(*[
            _run(
                f"run-{i}", renderer=fake_renderer, publisher=publisher, store=store,
                environment=environment, identity=identity, source=source, tmp_path=tmp_path,
                deploy_lock=lock,
            )
            for i in range(2)
        ])

        urls = {o.published_url for _, o in outcomes}
        assert all(o.status == "succeeded" for _, o in outcomes)
        assert len(urls) == 2
        current = await environment.current_url()
        assert current in urls
        assert current == environment.history[-1][1]
        assert len(environment.history) == 2

    @pytest.mark.asyncio
    async def test_rerun_same_commit(self, fake_renderer, recording_publisher, store, environment, identity, source, tmp_path):
        _, first = await _run(
            "run-1", renderer=fake_renderer, publisher=recording_publisher, store=store,
            environment=environment, identity=identity, source=source, tmp_path=tmp_path,
        )
        _, second = await _run(
            "run-2", renderer=fake_renderer, publisher=recording_publisher, store=store,
            environment=environment, identity=identity, source=source, tmp_path=tmp_path,
        )

        assert first.status == second.status == "succeeded"
        assert recording_publisher.calls[0]["files"] == recording_publisher.calls[1]["files"]
        assert (await store.find("run-1")).digest == (await store.find("run-2")).digest
        assert await environment.current_url() == second.published_url

    @pytest.mark.asyncio
    async def test_build_cannot_reach_hosting_platform(self, recording_publisher, store, environment, identity, source, tmp_path):
        attempts = []

        async def rogue_build(ctx):
            try:
                ctx.token.publish_credential("github-pages")
            except AuthorizationError as e:
                attempts.append(e)
                raise
            return {}

        runner = StageRunner(
            [StageDefinition(name="build", fn=rogue_build, scope=BUILD_SCOPE)],
            identity=identity,
        )
        result = await runner.run("run-rogue")

        assert result.stages["build"].status == StageStatus.FAILED
        assert result.stages["build"].error["code"] == "unauthorized"
        assert len(attempts) == 1
        assert recording_publisher.calls == []
        assert environment.history == []

    @pytest.mark.asyncio
    async def test_stage_scopes_recorded_in_trace(self, fake_renderer, recording_publisher, store, environment, identity, source, tmp_path):
        result, _ = await _run(
            "run-t", renderer=fake_renderer, publisher=recording_publisher, store=store,
            environment=environment, identity=identity, source=source, tmp_path=tmp_path,
        )
        stages = result.to_dict()["stages"]
        assert stages["build"]["scope"] == ["read-source"]
        assert stages["deploy"]["scope"] == ["read-id-token", "write-environment"]
