"""The two pipeline stages: build the site, then deploy it."""

from slipway.stages.build import BuildStage
from slipway.stages.deploy import DeployStage

__all__ = ["BuildStage", "DeployStage"]
