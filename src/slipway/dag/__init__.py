"""Stage graph resolution and execution."""

from slipway.dag.resolver import CycleError, StageGraph
from slipway.dag.runner import StageDefinition, StageRunner

__all__ = ["CycleError", "StageGraph", "StageDefinition", "StageRunner"]
