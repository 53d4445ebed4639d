"""
State machine definitions for node and workflow execution states.

Implements explicit state transitions with guards and validation.
"""

from datetime import datetime
from typing import Callable, ClassVar, Optional

from pydantic import BaseModel, Field

from blockflow.core.models import ErrorHandlingStrategy, ExecutionStatus, utcnow


class StateTransition(BaseModel):
    """Represents a state transition event."""

    from_state: str
    to_state: str
    timestamp: datetime = Field(default_factory=utcnow)
    reason: Optional[str] = None
    metadata: dict = Field(default_factory=dict)


class InvalidStateTransitionError(Exception):
    """Raised when an invalid state transition is attempted."""

    def __init__(self, from_state: str, to_state: str, message: str = ""):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(
            f"Invalid state transition from {from_state} to {to_state}"
            + (f": {message}" if message else "")
        )


# Type alias for transition guards
TransitionGuard = Callable[[], bool]


class _StateMachine:
    """Shared transition bookkeeping; subclasses provide the transition table."""

    VALID_TRANSITIONS: ClassVar[dict[ExecutionStatus, set[ExecutionStatus]]] = {}
    TERMINAL_STATES: ClassVar[set[ExecutionStatus]] = set()
    SUCCESS_STATES: ClassVar[set[ExecutionStatus]] = {ExecutionStatus.COMPLETED}

    def __init__(self, initial_state: ExecutionStatus = ExecutionStatus.PENDING):
        self._state = initial_state
        self._history: list[StateTransition] = []

    @property
    def state(self) -> ExecutionStatus:
        """Get current state."""
        return self._state

    @property
    def history(self) -> list[StateTransition]:
        """Get state transition history."""
        return self._history.copy()

    @property
    def is_terminal(self) -> bool:
        """Check if current state is terminal."""
        return self._state in self.TERMINAL_STATES

    @property
    def is_success(self) -> bool:
        return self._state in self.SUCCESS_STATES

    def can_transition_to(self, to_state: ExecutionStatus) -> bool:
        """Check if transition to given state is valid."""
        return to_state in self.VALID_TRANSITIONS.get(self._state, set())

    def get_valid_transitions(self) -> set[ExecutionStatus]:
        """Get all valid transitions from current state."""
        return self.VALID_TRANSITIONS.get(self._state, set()).copy()

    def transition(
        self,
        to_state: ExecutionStatus,
        reason: Optional[str] = None,
        guard: Optional[TransitionGuard] = None,
        metadata: Optional[dict] = None,
    ) -> StateTransition:
        """
        Transition to a new state.

        Args:
            to_state: Target state
            reason: Reason for transition
            guard: Optional guard function that must return True
            metadata: Additional metadata for the transition

        Returns:
            StateTransition record

        Raises:
            InvalidStateTransitionError: If transition is not valid
        """
        if not self.can_transition_to(to_state):
            raise InvalidStateTransitionError(
                self._state.value,
                to_state.value,
                f"Valid transitions: {sorted(s.value for s in self.get_valid_transitions())}",
            )

        if guard is not None and not guard():
            raise InvalidStateTransitionError(
                self._state.value,
                to_state.value,
                "Guard condition failed",
            )

        transition = StateTransition(
            from_state=self._state.value,
            to_state=to_state.value,
            reason=reason,
            metadata=metadata or {},
        )

        self._history.append(transition)
        self._state = to_state

        return transition


class NodeStateMachine(_StateMachine):
    """
    State machine for a node within one run.

    State transitions:
    - PENDING -> RUNNING -> COMPLETED | FAILED | SKIPPED
    - PENDING -> SKIPPED (upstream failed or no active incoming edge)
    - PENDING -> FAILED (executor could not be resolved)

    Retries happen inside RUNNING; a node never returns to PENDING.
    """

    VALID_TRANSITIONS = {
        ExecutionStatus.PENDING: {
            ExecutionStatus.RUNNING,
            ExecutionStatus.SKIPPED,
            ExecutionStatus.FAILED,
        },
        ExecutionStatus.RUNNING: {
            ExecutionStatus.COMPLETED,
            ExecutionStatus.FAILED,
            ExecutionStatus.SKIPPED,
        },
        ExecutionStatus.COMPLETED: set(),  # Terminal state
        ExecutionStatus.FAILED: set(),     # Terminal state
        ExecutionStatus.SKIPPED: set(),    # Terminal state
    }

    TERMINAL_STATES = {
        ExecutionStatus.COMPLETED,
        ExecutionStatus.FAILED,
        ExecutionStatus.SKIPPED,
    }

    @property
    def is_failure(self) -> bool:
        """Check if node failed."""
        return self._state == ExecutionStatus.FAILED


class WorkflowStateMachine(_StateMachine):
    """
    State machine for a workflow run.

    State transitions:
    - PENDING -> RUNNING -> COMPLETED | FAILED | CANCELLED
    - PENDING -> CANCELLED
    """

    VALID_TRANSITIONS = {
        ExecutionStatus.PENDING: {ExecutionStatus.RUNNING, ExecutionStatus.CANCELLED},
        ExecutionStatus.RUNNING: {
            ExecutionStatus.COMPLETED,
            ExecutionStatus.FAILED,
            ExecutionStatus.CANCELLED,
        },
        ExecutionStatus.COMPLETED: set(),  # Terminal state
        ExecutionStatus.FAILED: set(),     # Terminal state
        ExecutionStatus.CANCELLED: set(),  # Terminal state
    }

    TERMINAL_STATES = {
        ExecutionStatus.COMPLETED,
        ExecutionStatus.FAILED,
        ExecutionStatus.CANCELLED,
    }

    @property
    def is_active(self) -> bool:
        """Check if workflow is actively processing."""
        return self._state == ExecutionStatus.RUNNING


def compute_workflow_state_from_nodes(
    node_states: dict[str, ExecutionStatus],
    all_nodes: set[str],
    error_handling: ErrorHandlingStrategy = ErrorHandlingStrategy.STOP,
) -> ExecutionStatus:
    """
    Compute the overall workflow state based on individual node states.

    Under ``stop`` any failed node fails the workflow. Under ``continue``
    failures stay local to their nodes, so a run in which every node settled
    is COMPLETED.

    Args:
        node_states: Mapping of node_id to its current state
        all_nodes: Set of all node IDs in the workflow
        error_handling: Failure strategy of the run

    Returns:
        Computed workflow state
    """
    if not node_states:
        return ExecutionStatus.PENDING

    states = set(node_states.values())

    if ExecutionStatus.FAILED in states and error_handling == ErrorHandlingStrategy.STOP:
        return ExecutionStatus.FAILED

    active_states = {ExecutionStatus.PENDING, ExecutionStatus.RUNNING}
    if states & active_states or not all_nodes.issubset(node_states):
        return ExecutionStatus.RUNNING

    return ExecutionStatus.COMPLETED
