"""Slipway — two-stage build → deploy pipeline runner for static document sites."""

__version__ = "0.1.0"

from slipway.pipeline.trigger import PushEvent, TriggerEvaluator
from slipway.pipeline.context import StageContext

__all__ = ["PushEvent", "TriggerEvaluator", "StageContext", "__version__"]
