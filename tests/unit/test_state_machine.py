"""
Unit tests for state machine transitions.
"""

import pytest

from blockflow.core.models import ErrorHandlingStrategy, ExecutionStatus
from blockflow.core.state_machine import (
    InvalidStateTransitionError,
    NodeStateMachine,
    WorkflowStateMachine,
    compute_workflow_state_from_nodes,
)


class TestNodeStateMachine:
    """Tests for node state machine."""

    def test_initial_state(self):
        """Test default initial state is PENDING."""
        sm = NodeStateMachine()
        assert sm.state == ExecutionStatus.PENDING

    def test_valid_transition_pending_to_running(self):
        """Test valid transition from PENDING to RUNNING."""
        sm = NodeStateMachine()

        transition = sm.transition(ExecutionStatus.RUNNING, reason="Predecessors settled")

        assert sm.state == ExecutionStatus.RUNNING
        assert transition.from_state == "pending"
        assert transition.to_state == "running"
        assert transition.reason == "Predecessors settled"

    def test_valid_transition_running_to_completed(self):
        """Test valid transition from RUNNING to COMPLETED."""
        sm = NodeStateMachine(ExecutionStatus.RUNNING)

        sm.transition(ExecutionStatus.COMPLETED)

        assert sm.state == ExecutionStatus.COMPLETED
        assert sm.is_terminal
        assert sm.is_success

    def test_valid_transition_running_to_failed(self):
        """Test valid transition from RUNNING to FAILED."""
        sm = NodeStateMachine(ExecutionStatus.RUNNING)

        sm.transition(ExecutionStatus.FAILED, reason="Block error")

        assert sm.state == ExecutionStatus.FAILED
        assert sm.is_terminal
        assert sm.is_failure

    def test_pending_to_skipped(self):
        """Test a node can be skipped without running."""
        sm = NodeStateMachine()

        sm.transition(ExecutionStatus.SKIPPED, reason="Upstream failed")

        assert sm.is_terminal
        assert not sm.is_success

    def test_never_returns_to_pending(self):
        """Test no state leads back to PENDING."""
        for state in ExecutionStatus:
            if state in NodeStateMachine.VALID_TRANSITIONS:
                assert ExecutionStatus.PENDING not in NodeStateMachine.VALID_TRANSITIONS[state]

    def test_invalid_transition_from_terminal(self):
        """Test that transitions from terminal states are rejected."""
        sm = NodeStateMachine(ExecutionStatus.COMPLETED)

        with pytest.raises(InvalidStateTransitionError):
            sm.transition(ExecutionStatus.RUNNING)

    def test_invalid_direct_transition(self):
        """Test that PENDING cannot jump to COMPLETED."""
        sm = NodeStateMachine()

        with pytest.raises(InvalidStateTransitionError):
            sm.transition(ExecutionStatus.COMPLETED)

    def test_transition_with_guard(self):
        """Test transition with guard condition."""
        sm = NodeStateMachine()

        with pytest.raises(InvalidStateTransitionError) as exc_info:
            sm.transition(ExecutionStatus.RUNNING, guard=lambda: False)

        assert "Guard condition failed" in str(exc_info.value)
        assert sm.state == ExecutionStatus.PENDING  # State unchanged

    def test_history_tracking(self):
        """Test that transition history is tracked."""
        sm = NodeStateMachine()

        sm.transition(ExecutionStatus.RUNNING)
        sm.transition(ExecutionStatus.COMPLETED)

        history = sm.history
        assert len(history) == 2
        assert history[0].to_state == "running"
        assert history[1].to_state == "completed"

    def test_get_valid_transitions(self):
        """Test getting valid transitions from a state."""
        sm = NodeStateMachine(ExecutionStatus.RUNNING)

        valid = sm.get_valid_transitions()

        assert valid == {ExecutionStatus.COMPLETED, ExecutionStatus.FAILED, ExecutionStatus.SKIPPED}


class TestWorkflowStateMachine:
    """Tests for workflow state machine."""

    def test_run_to_completion(self):
        """Test PENDING -> RUNNING -> COMPLETED."""
        sm = WorkflowStateMachine()

        sm.transition(ExecutionStatus.RUNNING)
        assert sm.is_active

        sm.transition(ExecutionStatus.COMPLETED)
        assert sm.is_terminal
        assert not sm.is_active

    def test_cancel_before_start(self):
        """Test a pending run can be cancelled."""
        sm = WorkflowStateMachine()

        sm.transition(ExecutionStatus.CANCELLED)

        assert sm.is_terminal

    def test_cannot_skip_workflow(self):
        """Test SKIPPED is not a workflow state."""
        sm = WorkflowStateMachine(ExecutionStatus.RUNNING)

        with pytest.raises(InvalidStateTransitionError):
            sm.transition(ExecutionStatus.SKIPPED)


class TestComputeWorkflowState:
    """Tests for deriving workflow state from node states."""

    def test_all_completed(self):
        """Test all completed nodes complete the workflow."""
        states = {"a": ExecutionStatus.COMPLETED, "b": ExecutionStatus.SKIPPED}

        assert compute_workflow_state_from_nodes(states, {"a", "b"}) == ExecutionStatus.COMPLETED

    def test_failure_under_stop(self):
        """Test a failed node fails the workflow under stop."""
        states = {"a": ExecutionStatus.COMPLETED, "b": ExecutionStatus.FAILED, "c": ExecutionStatus.PENDING}

        assert compute_workflow_state_from_nodes(states, {"a", "b", "c"}) == ExecutionStatus.FAILED

    def test_failure_under_continue(self):
        """Test failures stay local under continue."""
        states = {"a": ExecutionStatus.FAILED, "b": ExecutionStatus.COMPLETED}

        result = compute_workflow_state_from_nodes(states, {"a", "b"}, ErrorHandlingStrategy.CONTINUE)

        assert result == ExecutionStatus.COMPLETED

    def test_unsettled_nodes_keep_running(self):
        """Test pending or missing nodes mean the run is still going."""
        states = {"a": ExecutionStatus.COMPLETED, "b": ExecutionStatus.RUNNING}

        assert compute_workflow_state_from_nodes(states, {"a", "b"}) == ExecutionStatus.RUNNING
        assert compute_workflow_state_from_nodes({"a": ExecutionStatus.COMPLETED}, {"a", "b"}) == ExecutionStatus.RUNNING

    def test_empty(self):
        """Test no node states means PENDING."""
        assert compute_workflow_state_from_nodes({}, set()) == ExecutionStatus.PENDING
