"""Sandboxed dev-server orchestration with a live preview and execution log."""

from .runner.orchestrator import Orchestrator
from .types import ExecutionStep, FileArtifact, RunnerView, StepStatus

__all__ = [
    "ExecutionStep",
    "FileArtifact",
    "Orchestrator",
    "RunnerView",
    "StepStatus",
]
