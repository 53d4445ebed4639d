"""
Unit tests for domain models and settings.
"""

import pytest
from pydantic import ValidationError

from blockflow.config import EngineSettings, Environment, Settings
from blockflow.core.models import (
    EdgeDefinition,
    ErrorHandlingStrategy,
    ExecutionResult,
    ExecutionStatus,
    NodeDefinition,
    RetryPolicy,
    WorkflowDefinition,
    block_category,
)


class TestWorkflowDefinition:
    """Tests for parsing workflow definitions."""

    def test_parses_camel_case_document(self, linear_workflow):
        """Test that the camelCase transport form parses."""
        definition = WorkflowDefinition.model_validate(linear_workflow)

        assert definition.workflow_id == "wf-test"
        assert [n.id for n in definition.nodes] == ["input", "process", "output"]
        assert definition.metadata.tags == ["test"]

    def test_accepts_snake_case_names(self):
        """Test that Python attribute names are accepted too."""
        definition = WorkflowDefinition(
            workflow_id="wf-1",
            name="Snake",
            nodes=[NodeDefinition(id="a", type="input.static", name="A", is_input=True)],
        )

        assert definition.nodes[0].is_input_node

    def test_dumps_camel_case(self, linear_workflow):
        """Test that serialization by alias produces camelCase keys."""
        definition = WorkflowDefinition.model_validate(linear_workflow)
        doc = definition.model_dump(mode="json", by_alias=True)

        assert "workflowId" in doc
        assert "createdAt" in doc["metadata"]
        assert "retryConfig" in doc["nodes"][0]

    def test_null_globals_treated_as_absent(self, linear_workflow):
        """Test explicit null globals fall back to defaults."""
        linear_workflow["globals"] = None
        definition = WorkflowDefinition.model_validate(linear_workflow)

        assert definition.globals.timeout is None
        assert definition.globals.error_handling is None

    def test_error_handling_parsed(self, make_workflow):
        """Test globals.errorHandling parses into the enum."""
        doc = make_workflow([{"id": "a", "type": "input.mock"}], errorHandling="continue")
        definition = WorkflowDefinition.model_validate(doc)

        assert definition.globals.error_handling == ErrorHandlingStrategy.CONTINUE

    def test_invalid_max_parallel_rejected(self, make_workflow):
        """Test maxParallelNodes must be at least 1."""
        doc = make_workflow([{"id": "a", "type": "input.mock"}], maxParallelNodes=0)

        with pytest.raises(ValidationError):
            WorkflowDefinition.model_validate(doc)

    def test_edge_helpers(self, diamond_workflow):
        """Test incoming/outgoing edge lookups and role helpers."""
        definition = WorkflowDefinition.model_validate(diamond_workflow)

        assert {e.source for e in definition.incoming_edges("output")} == {"a", "b"}
        assert {e.target for e in definition.outgoing_edges("input")} == {"a", "b"}
        assert [n.id for n in definition.entry_nodes()] == ["input"]
        assert [n.id for n in definition.output_nodes()] == ["output"]
        assert definition.get_node("missing") is None

    def test_entry_nodes_fall_back_to_roots(self, make_workflow):
        """Test entry nodes are zero in-degree nodes when no input role exists."""
        doc = make_workflow(
            [{"id": "x", "type": "transform.process"}, {"id": "y", "type": "transform.process"}],
            [("x", "y")],
        )
        definition = WorkflowDefinition.model_validate(doc)

        assert [n.id for n in definition.entry_nodes()] == ["x"]


class TestNodeAndEdge:
    """Tests for node and edge helpers."""

    def test_block_category(self):
        """Test category is the prefix of the block type."""
        assert block_category("api.hunter") == "api"
        assert block_category("output") == "output"
        assert block_category("") == ""

    def test_role_flags(self):
        """Test role is derived from category or explicit flags."""
        output = NodeDefinition(id="o", type="output.logger", name="O")
        flagged = NodeDefinition(id="t", type="transform.x", name="T", isOutput=True)
        plain = NodeDefinition(id="p", type="transform.x", name="P")

        assert output.is_output_node
        assert flagged.is_output_node
        assert not plain.is_output_node
        assert not plain.is_input_node

    def test_default_port_key(self):
        """Test edges without a source port use the default key."""
        edge = EdgeDefinition(id="e", source="a", target="b")
        named = EdgeDefinition(id="e2", source="a", target="b", sourcePort="left")

        assert edge.port_key == "out"
        assert named.port_key == "left"


class TestRetryPolicy:
    """Tests for retry backoff computation."""

    def test_exponential_backoff(self):
        """Test delay grows by the multiplier per attempt."""
        policy = RetryPolicy(max_retries=3, initial_delay=1.0, backoff_multiplier=2.0)

        assert [policy.delay_for_attempt(i) for i in range(3)] == [1.0, 2.0, 4.0]

    def test_max_delay_caps_backoff(self):
        """Test max_delay bounds a single delay."""
        policy = RetryPolicy(initial_delay=1.0, backoff_multiplier=10.0, max_delay=5.0)

        assert policy.delay_for_attempt(3) == 5.0

    def test_retryable_errors(self):
        """Test retryable error filtering."""
        open_policy = RetryPolicy()
        narrow = RetryPolicy(retryable_errors=["ConnectionError"])

        assert open_policy.is_retryable("AnythingError")
        assert narrow.is_retryable("ConnectionError")
        assert not narrow.is_retryable("ValueError")
        assert not narrow.is_retryable(None)


class TestExecutionResult:
    """Tests for node results."""

    def test_succeeded(self):
        """Test succeeded reflects completed status."""
        assert ExecutionResult(node_id="a", status=ExecutionStatus.COMPLETED).succeeded
        assert not ExecutionResult(node_id="a", status=ExecutionStatus.FAILED).succeeded

    def test_serializes_camel_case(self):
        """Test results use camelCase on the wire."""
        doc = ExecutionResult(node_id="a", status=ExecutionStatus.COMPLETED).model_dump(by_alias=True)

        assert "nodeId" in doc
        assert "retryCount" in doc
        assert "executionTime" in doc


class TestSettings:
    """Tests for environment-driven settings."""

    def test_defaults(self):
        """Test engine defaults."""
        settings = EngineSettings()

        assert settings.default_node_timeout == 60.0
        assert settings.default_error_handling == "stop"
        assert settings.max_parallel_nodes is None
        assert "REGION" in settings.env_whitelist

    def test_environment_from_env(self, monkeypatch):
        """Test environment variables override defaults."""
        monkeypatch.setenv("ENGINE_DEFAULT_NODE_TIMEOUT", "5")
        monkeypatch.setenv("ENGINE_DEFAULT_ERROR_HANDLING", "CONTINUE")

        settings = EngineSettings()

        assert settings.default_node_timeout == 5.0
        assert settings.default_error_handling == "continue"

    def test_invalid_error_handling(self):
        """Test unknown strategies are rejected."""
        with pytest.raises(ValidationError):
            EngineSettings(default_error_handling="retry-forever")

    def test_environment_properties(self):
        """Test environment helpers."""
        settings = Settings(environment="TEST")

        assert settings.environment == Environment.TEST
        assert settings.is_testing
        assert not settings.is_production
