"""
Domain models for the workflow orchestration engine.

All models use Pydantic for validation and serialization. Python attributes are
snake_case; the JSON transport form of a workflow definition is camelCase
(``workflowId``, ``retryConfig``, ``sourcePort`` ...), and both spellings are
accepted when parsing.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    """Timezone-aware current time."""
    return datetime.now(timezone.utc)


DEFAULT_PORT = "out"


class BlockType(str, Enum):
    """Built-in block categories. Node types are matched on their category prefix."""

    INPUT = "input"
    API = "api"
    AI = "ai"
    TRANSFORM = "transform"
    FILTER = "filter"
    BRANCH = "branch"
    MERGE = "merge"
    OUTPUT = "output"


class ExecutionStatus(str, Enum):
    """Status of a node or workflow execution."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    SKIPPED = "skipped"


class ErrorHandlingStrategy(str, Enum):
    """What the orchestrator does after an unrecovered node failure."""

    STOP = "stop"
    CONTINUE = "continue"


class ExecutionMode(str, Enum):
    """Run mode; blocks may use it to choose simulated vs. real behavior."""

    PRODUCTION = "production"
    DEMO = "demo"
    TEST = "test"


def block_category(block_type: str) -> str:
    """Category of a block type string: ``"api.hunter"`` -> ``"api"``."""
    return block_type.split(".", 1)[0] if block_type else ""


class CamelModel(BaseModel):
    """Base for transport models serialized with camelCase keys."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


class RetryPolicy(CamelModel):
    """Configuration for retry behavior."""

    max_retries: int = Field(default=3, description="Maximum retry attempts after the first")
    backoff_multiplier: float = Field(default=2.0, description="Exponential backoff base")
    initial_delay: float = Field(default=1.0, description="Initial delay in seconds")
    max_delay: Optional[float] = Field(default=None, description="Upper bound on a single delay (seconds)")
    retryable_errors: list[str] = Field(
        default_factory=list,
        description="Error type names that may be retried; empty means every error",
    )

    def delay_for_attempt(self, attempt: int) -> float:
        """Backoff before retry ``attempt + 1``: initial_delay * multiplier ** attempt."""
        delay = self.initial_delay * (self.backoff_multiplier ** attempt)
        if self.max_delay is not None:
            delay = min(delay, self.max_delay)
        return delay

    def is_retryable(self, error_type: Optional[str]) -> bool:
        """Check whether an error of the given type may be retried."""
        if not self.retryable_errors:
            return True
        return error_type in self.retryable_errors


class Condition(CamelModel):
    """Routing condition attached to an edge."""

    field: Optional[str] = Field(default=None, description="Dotted path into the source output")
    operator: str = Field(..., description="Comparison or logical operator")
    value: Any = Field(default=None)
    conditions: list["Condition"] = Field(default_factory=list, description="Operands for and/or")


class NodeDefinition(CamelModel):
    """Definition of a single block node in the workflow DAG."""

    id: str = Field(..., min_length=1, max_length=255, description="Unique node identifier")
    type: str = Field(..., min_length=1, description="Registered block type key")
    name: str = Field(..., description="Human readable name")
    description: Optional[str] = Field(default=None)
    config: dict[str, Any] = Field(default_factory=dict, description="Block-specific configuration")
    input_schema: Optional[dict[str, Any]] = Field(default=None)
    output_schema: Optional[dict[str, Any]] = Field(default=None)
    timeout: Optional[float] = Field(default=None, description="Node timeout in seconds")
    retry_config: Optional[RetryPolicy] = Field(default=None, description="Override retry settings")
    is_input: bool = Field(default=False, description="Explicit entry-node flag")
    is_output: bool = Field(default=False, description="Explicit terminal-node flag")

    @property
    def category(self) -> str:
        return block_category(self.type)

    @property
    def is_input_node(self) -> bool:
        return self.is_input or self.category == BlockType.INPUT.value

    @property
    def is_output_node(self) -> bool:
        return self.is_output or self.category == BlockType.OUTPUT.value


class EdgeDefinition(CamelModel):
    """Connection between two nodes."""

    id: str = Field(..., min_length=1)
    source: str = Field(..., description="Source node ID")
    target: str = Field(..., description="Target node ID")
    source_port: Optional[str] = Field(default=None, description="Output port name (default: 'out')")
    target_port: Optional[str] = Field(default=None, description="Input port name")
    condition: Optional[Condition] = Field(default=None, description="Conditional routing")

    @property
    def port_key(self) -> str:
        return self.source_port or DEFAULT_PORT


class WorkflowMetadata(CamelModel):
    """Authoring metadata."""

    author: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    tags: list[str] = Field(default_factory=list)


class WorkflowGlobals(CamelModel):
    """Global workflow policy."""

    timeout: Optional[float] = Field(default=None, description="Default per-node timeout in seconds")
    retry_policy: Optional[RetryPolicy] = Field(default=None)
    error_handling: Optional[ErrorHandlingStrategy] = Field(
        default=None,
        description="Failure strategy; falls back to engine settings (stop) when absent",
    )
    max_parallel_nodes: Optional[int] = Field(default=None, ge=1)


class WorkflowDefinition(CamelModel):
    """
    Complete, JSON-serializable workflow definition.

    Graph invariants (unique ids, existing endpoints, acyclicity, reachability)
    are checked by the validator rather than at parse time, so a single pass can
    report every problem.
    """

    workflow_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=255)
    version: Union[int, str] = Field(default=1)
    description: Optional[str] = Field(default=None)
    metadata: WorkflowMetadata = Field(default_factory=WorkflowMetadata)
    globals: WorkflowGlobals = Field(default_factory=WorkflowGlobals)
    nodes: list[NodeDefinition] = Field(default_factory=list)
    edges: list[EdgeDefinition] = Field(default_factory=list)
    schemas: Optional[dict[str, dict[str, Any]]] = Field(default=None)

    @model_validator(mode="before")
    @classmethod
    def drop_null_globals(cls, data: Any) -> Any:
        """Treat an explicit ``"globals": null`` as absent."""
        if isinstance(data, dict) and data.get("globals") is None:
            data = {k: v for k, v in data.items() if k != "globals"}
        return data

    def get_node(self, node_id: str) -> Optional[NodeDefinition]:
        """Get node by ID."""
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def incoming_edges(self, node_id: str) -> list[EdgeDefinition]:
        return [e for e in self.edges if e.target == node_id]

    def outgoing_edges(self, node_id: str) -> list[EdgeDefinition]:
        return [e for e in self.edges if e.source == node_id]

    def entry_nodes(self) -> list[NodeDefinition]:
        """Input-role nodes, or every node without incoming edges when none are flagged."""
        inputs = [n for n in self.nodes if n.is_input_node]
        if inputs:
            return inputs
        targets = {e.target for e in self.edges}
        return [n for n in self.nodes if n.id not in targets]

    def output_nodes(self) -> list[NodeDefinition]:
        return [n for n in self.nodes if n.is_output_node]


class TimelineEvent(CamelModel):
    """Structured record of something that happened during a run."""

    timestamp: datetime = Field(default_factory=utcnow)
    event: str
    details: dict[str, Any] = Field(default_factory=dict)
    node_id: Optional[str] = None
    block_type: Optional[str] = None
    error: Optional[str] = None


class ExecutionResult(CamelModel):
    """Result of a single node execution. One per node per run."""

    node_id: str
    status: ExecutionStatus
    input: Any = None
    output: Any = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    execution_time: float = Field(default=0.0, ge=0, description="Seconds")
    retry_count: int = Field(default=0, ge=0)
    start_time: datetime = Field(default_factory=utcnow)
    end_time: datetime = Field(default_factory=utcnow)
    metadata: dict[str, Any] = Field(default_factory=dict)
    logs: list[TimelineEvent] = Field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.status == ExecutionStatus.COMPLETED


class NodeExecutionState(CamelModel):
    """Per-node orchestration bookkeeping."""

    node_id: str
    status: ExecutionStatus = ExecutionStatus.PENDING
    dependencies: list[str] = Field(default_factory=list)
    dependents: list[str] = Field(default_factory=list)
    retry_count: int = 0
    result: Optional[ExecutionResult] = None


class ExecutionPlan(CamelModel):
    """Layered execution order, computed fresh for every run."""

    execution_order: list[list[str]]
    node_states: dict[str, NodeExecutionState]
    estimated_time: float = 0.0

    @property
    def total_layers(self) -> int:
        return len(self.execution_order)


class ExecutionSummary(CamelModel):
    """Summary counts of a workflow run."""

    total_nodes: int = 0
    completed_nodes: int = 0
    failed_nodes: int = 0
    skipped_nodes: int = 0


class WorkflowExecutionResult(CamelModel):
    """Final, aggregated result of a workflow run."""

    execution_id: str
    workflow_id: str
    status: ExecutionStatus
    input: Any = None
    output: Any = None
    error: Optional[str] = None
    start_time: datetime
    end_time: datetime
    execution_time: float = Field(default=0.0, description="Seconds")
    node_results: dict[str, ExecutionResult] = Field(default_factory=dict)
    timeline: list[TimelineEvent] = Field(default_factory=list)
    metadata: ExecutionSummary = Field(default_factory=ExecutionSummary)
