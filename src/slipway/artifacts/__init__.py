"""Artifact staging between pipeline stages."""

from slipway.artifacts.store import ArtifactHandle, ArtifactStore, LocalArtifactStore

__all__ = ["ArtifactHandle", "ArtifactStore", "LocalArtifactStore"]
