"""Renderer connector — runs the document renderer as an external command."""

from __future__ import annotations
import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger("slipway.connectors.renderer")


@dataclass
class RenderResult:
    exit_code: int
    output: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class Renderer(ABC):
    """Turns a source document into a static site directory."""

    @abstractmethod
    async def render(self, source: Path, output: Path, emit_html: bool = True) -> RenderResult:
        ...


class CommandRenderer(Renderer):
    """Invoke a CLI renderer built from an argv template.

    Placeholders ``{source}``, ``{output}`` and ``{entry}`` are substituted in
    every argument. With ``emit_html`` the ``html_flag`` is appended.

        CommandRenderer(["marp", "{source}", "--output", "{output}/{entry}"])
    """

    def __init__(
        self,
        command: list[str],
        html_flag: str | None = "--html",
        entry_document: str = "index.html",
        cwd: str | Path | None = None,
    ):
        if not command:
            raise ValueError("Renderer command must not be empty")
        self.command = list(command)
        self.html_flag = html_flag
        self.entry_document = entry_document
        self.cwd = cwd

    def build_argv(self, source: Path, output: Path, emit_html: bool = True) -> list[str]:
        values = {"source": str(source), "output": str(output), "entry": self.entry_document}
        argv = [arg.format(**values) for arg in self.command]
        if emit_html and self.html_flag:
            argv.append(self.html_flag)
        return argv

    async def render(self, source: Path, output: Path, emit_html: bool = True) -> RenderResult:
        argv = self.build_argv(source, output, emit_html)
        logger.info(f"Rendering: {' '.join(argv)}")
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                cwd=self.cwd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except FileNotFoundError:
            return RenderResult(exit_code=127, output=f"Renderer not found: {argv[0]}")

        try:
            stdout, _ = await proc.communicate()
        except asyncio.CancelledError:
            # Timeout or run cancellation: don't leave the renderer behind
            if proc.returncode is None:
                proc.kill()
                await proc.wait()
            raise

        return RenderResult(
            exit_code=proc.returncode,
            output=stdout.decode(errors="replace") if stdout else "",
        )
