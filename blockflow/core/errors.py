"""
Exception hierarchy for the workflow engine.

Node-level failures are normally recorded on an ExecutionResult rather than
raised; these exceptions travel inside the orchestrator and across the public
API where raising is the right signal.
"""

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from blockflow.validation.validator import ValidationResult


class BlockflowError(Exception):
    """Base class for all engine errors."""


class WorkflowValidationError(BlockflowError):
    """Raised when a definition fails validation and must not run."""

    def __init__(self, result: "ValidationResult"):
        self.result = result
        messages = [f"{e.type}: {e.message}" for e in result.errors]
        super().__init__(f"Workflow validation failed: {messages}")


class InvalidGraphError(BlockflowError):
    """Raised when an execution plan cannot be built from the edge set."""


class CycleDetectedError(InvalidGraphError):
    """Raised at plan time when the graph contains a directed cycle."""

    def __init__(self, remaining_nodes: list[str]):
        self.remaining_nodes = remaining_nodes
        super().__init__(
            f"Cycle detected in workflow DAG involving nodes: {sorted(remaining_nodes)}"
        )


class BlockNotRegisteredError(BlockflowError):
    """Raised when no executor is registered for a block type."""

    def __init__(self, block_type: str):
        self.block_type = block_type
        super().__init__(f"Unknown block type: {block_type}. Block not registered in registry.")


class BlockAlreadyRegisteredError(BlockflowError):
    """Raised when a block type key is registered twice."""

    def __init__(self, block_type: str):
        self.block_type = block_type
        super().__init__(f"Block type already registered: {block_type}")


class NodeExecutionError(BlockflowError):
    """Failure of a single node, with the node it belongs to."""

    def __init__(self, message: str, node_id: Optional[str] = None, block_type: Optional[str] = None):
        self.node_id = node_id
        self.block_type = block_type
        super().__init__(message)


class NodeTimeoutError(NodeExecutionError):
    """Raised when a node exceeds its timeout."""

    def __init__(self, timeout: float, node_id: Optional[str] = None):
        self.timeout = timeout
        super().__init__(f"Execution timeout after {timeout}s", node_id=node_id)


class SchemaMismatchError(NodeExecutionError):
    """Raised when node input or output does not match its declared schema."""

    def __init__(self, direction: str, node_id: str):
        self.direction = direction
        super().__init__(f"{direction.capitalize()} validation failed for node {node_id}", node_id=node_id)


class WorkflowCancelledError(BlockflowError):
    """Raised at a layer boundary when the run's cancellation token is set."""

    def __init__(self, reason: Optional[str] = None):
        self.reason = reason
        super().__init__("Workflow execution cancelled" + (f": {reason}" if reason else ""))
