"""Build stage — render the source document and upload the site as an artifact."""

from __future__ import annotations
import asyncio
import shutil
from pathlib import Path

from slipway.artifacts.store import ArtifactStore
from slipway.connectors.renderer import Renderer
from slipway.core.errors import ArtifactUploadError, EmptyOutputError, RenderFailedError
from slipway.pipeline.context import StageContext
from slipway.pipeline.types import Capability


class BuildStage:
    """Renders ``source`` into ``output`` and uploads it keyed by run id.

    Success requires a zero exit code *and* a non-empty output directory that
    contains the entry document.
    """

    def __init__(
        self,
        renderer: Renderer,
        store: ArtifactStore,
        source: str | Path,
        output: str | Path,
        entry_document: str = "index.html",
        emit_html: bool = True,
        timeout_seconds: int = 600,
    ):
        if not str(source) or not str(output):
            raise ValueError("Build stage needs non-empty source and output paths")
        self.renderer = renderer
        self.store = store
        self.source = Path(source)
        self.output = Path(output)
        self.entry_document = entry_document
        self.emit_html = emit_html
        self.timeout_seconds = timeout_seconds

    async def __call__(self, ctx: StageContext) -> dict:
        ctx.token.require(Capability.READ_SOURCE)

        async with ctx.step("render") as step:
            await self.render(ctx)
            step.metadata["source"] = str(self.source)

        async with ctx.step("verify") as step:
            step.metadata["files"] = await asyncio.to_thread(self.verify_output)

        async with ctx.step("upload") as step:
            try:
                handle = await self.store.put(ctx.run_id, self.output)
            except ArtifactUploadError:
                raise
            except Exception as e:
                raise ArtifactUploadError(f"Artifact store rejected upload: {e}") from e
            step.metadata["digest"] = handle.digest
            ctx.log(f"Uploaded artifact ({handle.file_count} files, sha256={handle.digest[:12]})")

        return {"artifact": handle.to_dict()}

    async def render(self, ctx: StageContext) -> None:
        if not self.source.exists():
            raise RenderFailedError(f"Source document not found: {self.source}")

        await asyncio.to_thread(self._reset_output)

        try:
            result = await asyncio.wait_for(
                self.renderer.render(self.source, self.output, emit_html=self.emit_html),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            raise RenderFailedError(f"Renderer timed out after {self.timeout_seconds}s") from None

        if result.output:
            for line in result.output.strip().splitlines()[-20:]:
                ctx.log(f"renderer: {line}")
        if not result.ok:
            raise RenderFailedError(
                f"Renderer exited with code {result.exit_code}",
                exit_code=result.exit_code,
                output=result.output,
            )

    def _reset_output(self) -> None:
        # Stale files from an earlier build must not pass the output check
        if self.output.exists():
            shutil.rmtree(self.output)
        self.output.mkdir(parents=True)

    def verify_output(self) -> int:
        """Check the post-condition. Returns the number of files produced."""
        if not self.output.is_dir():
            raise EmptyOutputError(f"Renderer produced no output directory at {self.output}")
        files = [p for p in self.output.rglob("*") if p.is_file()]
        if not files:
            raise EmptyOutputError(f"Renderer reported success but {self.output} is empty")
        entry = self.output / self.entry_document
        if not entry.is_file():
            raise EmptyOutputError(f"Entry document {self.entry_document} missing from {self.output}")
        if entry.stat().st_size == 0:
            raise EmptyOutputError(f"Entry document {self.entry_document} is empty")
        return len(files)
