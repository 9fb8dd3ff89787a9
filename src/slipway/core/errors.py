"""Slipway error taxonomy — every stage failure maps to one of these."""

from __future__ import annotations


class SlipwayError(Exception):
    """Base class for all Slipway errors."""

    code = "error"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"code": self.code, "type": type(self).__name__, "message": self.message}


# ─── Admission ───


class AdmissionError(SlipwayError):
    """Trigger event was malformed or does not target the configured branch."""

    code = "admission_rejected"


# ─── Build ───


class BuildError(SlipwayError):
    code = "build_failed"


class RenderFailedError(BuildError):
    """Renderer exited non-zero, could not be started, or timed out."""

    code = "render_failed"

    def __init__(self, message: str, exit_code: int | None = None, output: str | None = None):
        self.exit_code = exit_code
        self.output = output
        super().__init__(message)


class EmptyOutputError(BuildError):
    """Renderer reported success but left nothing publishable behind."""

    code = "empty_output"


class ArtifactUploadError(BuildError):
    code = "upload_failed"


# ─── Deploy ───


class DeployError(SlipwayError):
    code = "deploy_failed"


class DependencyNotSatisfiedError(DeployError):
    code = "dependency_not_satisfied"


class ArtifactNotFoundError(DeployError):
    """Artifact was never uploaded or its retention window has elapsed."""

    code = "artifact_not_found"


class ArtifactCorruptedError(DeployError):
    """Stored artifact no longer matches the digest recorded at upload."""

    code = "artifact_corrupted"


class PublishRejectedError(DeployError):
    """Hosting platform refused the write (e.g. insufficient authorization)."""

    code = "publish_rejected"

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class PublishError(DeployError):
    """Hosting platform unreachable or returned an unusable response."""

    code = "publish_failed"


# ─── Access control ───


class AuthorizationError(SlipwayError):
    """A stage tried to exercise a capability outside its permission scope."""

    code = "unauthorized"
