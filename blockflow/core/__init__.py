"""Core domain models and graph logic."""

from blockflow.core.models import (
    BlockType,
    Condition,
    EdgeDefinition,
    ErrorHandlingStrategy,
    ExecutionMode,
    ExecutionPlan,
    ExecutionResult,
    ExecutionStatus,
    NodeDefinition,
    RetryPolicy,
    TimelineEvent,
    WorkflowDefinition,
    WorkflowExecutionResult,
    WorkflowGlobals,
    WorkflowMetadata,
)
from blockflow.core.state_machine import (
    InvalidStateTransitionError,
    NodeStateMachine,
    WorkflowStateMachine,
)
from blockflow.core.dag import WorkflowGraph, build_execution_plan

__all__ = [
    "BlockType",
    "Condition",
    "EdgeDefinition",
    "ErrorHandlingStrategy",
    "ExecutionMode",
    "ExecutionPlan",
    "ExecutionResult",
    "ExecutionStatus",
    "NodeDefinition",
    "RetryPolicy",
    "TimelineEvent",
    "WorkflowDefinition",
    "WorkflowExecutionResult",
    "WorkflowGlobals",
    "WorkflowMetadata",
    "InvalidStateTransitionError",
    "NodeStateMachine",
    "WorkflowStateMachine",
    "WorkflowGraph",
    "build_execution_plan",
]
