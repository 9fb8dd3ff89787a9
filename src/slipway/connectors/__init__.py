"""Connectors — the renderer and hosting platforms the pipeline talks to."""

from slipway.connectors.publisher import DirectoryPublisher, HttpPublisher, Publisher, PublishResult
from slipway.connectors.renderer import CommandRenderer, Renderer, RenderResult


def renderer_from_settings(settings) -> CommandRenderer:
    return CommandRenderer(
        command=settings.renderer_command,
        html_flag=settings.renderer_html_flag,
        entry_document=settings.entry_document,
    )


def publisher_from_settings(settings, verifier=None) -> Publisher:
    if settings.publisher == "directory":
        return DirectoryPublisher(
            root=settings.publish_dir,
            base_url=settings.publish_base_url,
            verifier=verifier,
            keep_releases=settings.publish_keep_releases,
        )
    if settings.publisher == "http":
        if not settings.publish_api_url:
            raise ValueError("publisher = 'http' requires publish_api_url")
        return HttpPublisher(api_url=settings.publish_api_url)
    raise ValueError(f"Unknown publisher: {settings.publisher!r}")


__all__ = [
    "Renderer", "RenderResult", "CommandRenderer",
    "Publisher", "PublishResult", "DirectoryPublisher", "HttpPublisher",
    "renderer_from_settings", "publisher_from_settings",
]
