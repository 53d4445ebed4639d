"""Workflow orchestration engine."""

from blockflow.orchestrator.cancellation import CancellationToken
from blockflow.orchestrator.engine import WorkflowOrchestrator
from blockflow.orchestrator.runner import NodeRunner

__all__ = ["CancellationToken", "NodeRunner", "WorkflowOrchestrator"]
