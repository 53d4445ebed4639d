"""
Pytest fixtures and configuration for tests.
"""

import asyncio
from typing import Any, Callable, Optional

import pytest

from blockflow.blocks import BaseBlockExecutor, BlockRegistry, register_builtin_blocks
from blockflow.config import Environment, Settings
from blockflow.context import ContextFactory, ExecutionContext
from blockflow.core.models import ExecutionResult
from blockflow.orchestrator import WorkflowOrchestrator


# ==================== Mock blocks ====================

class MockInputBlock(BaseBlockExecutor):
    """Sleeps, then emits the workflow input (or a default payload)."""

    async def execute(self, config: dict, input_data: Any, context: ExecutionContext) -> ExecutionResult:
        await self.sleep(config.get("delay", 0.05))
        data = input_data if input_data is not None else {"items": [1, 2, 3]}
        return self.success(data, input_data)


class MockProcessBlock(BaseBlockExecutor):
    """Sleeps, then marks its input as processed."""

    async def execute(self, config: dict, input_data: Any, context: ExecutionContext) -> ExecutionResult:
        await self.sleep(config.get("delay", 0.05))
        payload = dict(input_data) if isinstance(input_data, dict) else {"value": input_data}
        payload["processed"] = True
        if "label" in config:
            payload["label"] = config["label"]
        return self.success(payload, input_data)


class MockOutputBlock(BaseBlockExecutor):
    """Sleeps, then wraps its input."""

    async def execute(self, config: dict, input_data: Any, context: ExecutionContext) -> ExecutionResult:
        await self.sleep(config.get("delay", 0.05))
        return self.success({"result": input_data}, input_data)


class FailingBlock(BaseBlockExecutor):
    """Always returns a failed result."""

    async def execute(self, config: dict, input_data: Any, context: ExecutionContext) -> ExecutionResult:
        await self.sleep(config.get("delay", 0.01))
        return self.failure(config.get("message", "Intentional failure"), "IntentionalError", input_data)


class RaisingBlock(BaseBlockExecutor):
    """Always raises."""

    async def execute(self, config: dict, input_data: Any, context: ExecutionContext) -> ExecutionResult:
        raise RuntimeError(config.get("message", "boom"))


class FlakyBlock(BaseBlockExecutor):
    """Fails until attempt number ``succeed_on`` (counted per node and run)."""

    async def execute(self, config: dict, input_data: Any, context: ExecutionContext) -> ExecutionResult:
        key = f"attempts:{self.node_id}"
        attempts = context.get_metadata(key, 0) + 1
        context.set_metadata(key, attempts)
        if attempts < config.get("succeed_on", 3):
            raise ConnectionError(f"Transient failure on attempt {attempts}")
        return self.success({"attempts": attempts}, input_data)


class SlowBlock(BaseBlockExecutor):
    """Sleeps for ``config.delay`` seconds."""

    async def execute(self, config: dict, input_data: Any, context: ExecutionContext) -> ExecutionResult:
        await asyncio.sleep(config.get("delay", 1.0))
        return self.success({"slept": config.get("delay", 1.0)}, input_data)


class EchoConfigBlock(BaseBlockExecutor):
    """Returns its resolved config as output."""

    async def execute(self, config: dict, input_data: Any, context: ExecutionContext) -> ExecutionResult:
        return self.success(config, input_data)


class ConcurrencyProbeBlock(BaseBlockExecutor):
    """Records the peak number of concurrently running probes in the run metadata."""

    async def execute(self, config: dict, input_data: Any, context: ExecutionContext) -> ExecutionResult:
        running = context.get_metadata("probe_running", 0) + 1
        context.set_metadata("probe_running", running)
        context.set_metadata("probe_peak", max(running, context.get_metadata("probe_peak", 0)))
        await self.sleep(config.get("delay", 0.03))
        context.set_metadata("probe_running", context.get_metadata("probe_running") - 1)
        return self.success({"peak": context.get_metadata("probe_peak")}, input_data)


MOCK_BLOCKS = {
    "input.mock": MockInputBlock,
    "transform.process": MockProcessBlock,
    "output.mock": MockOutputBlock,
    "transform.fail": FailingBlock,
    "transform.raise": RaisingBlock,
    "transform.flaky": FlakyBlock,
    "transform.slow": SlowBlock,
    "transform.echo": EchoConfigBlock,
    "transform.probe": ConcurrencyProbeBlock,
}


# ==================== Fixtures ====================

@pytest.fixture
def test_settings() -> Settings:
    """Create test settings."""
    return Settings(
        environment=Environment.TEST,
        debug=True,
        log_level="DEBUG",
    )


@pytest.fixture
def registry() -> BlockRegistry:
    """Registry with the built-in blocks and the mock test blocks."""
    registry = register_builtin_blocks(BlockRegistry())
    for block_type, executor_cls in MOCK_BLOCKS.items():
        registry.register(block_type, executor_cls, supports_mock=True)
    return registry


@pytest.fixture
def orchestrator(registry, test_settings) -> WorkflowOrchestrator:
    """Orchestrator over the test registry."""
    return WorkflowOrchestrator(registry, test_settings)


@pytest.fixture
def context_factory(test_settings) -> Callable[..., ExecutionContext]:
    """Build test-mode contexts with an empty environment."""

    def create(workflow_id: str = "wf-test", **kwargs: Any) -> ExecutionContext:
        kwargs.setdefault("env", {})
        kwargs.setdefault("settings", test_settings)
        return ContextFactory.create_test_context(workflow_id, **kwargs)

    return create


@pytest.fixture
def make_workflow() -> Callable[..., dict]:
    """Build a camelCase workflow document from node and edge shorthands."""

    def build(
        nodes: list[dict],
        edges: Optional[list[tuple]] = None,
        workflow_id: str = "wf-test",
        **globals_: Any,
    ) -> dict:
        node_docs = []
        for node in nodes:
            doc = {"name": node["id"].title(), "config": {}}
            doc.update(node)
            node_docs.append(doc)

        edge_docs = []
        for i, edge in enumerate(edges or []):
            if isinstance(edge, dict):
                edge_docs.append({"id": f"e{i}", **edge})
            else:
                edge_docs.append({"id": f"e{i}", "source": edge[0], "target": edge[1]})

        return {
            "workflowId": workflow_id,
            "name": "Test Workflow",
            "version": 1,
            "metadata": {"createdAt": "2024-01-01T00:00:00Z", "tags": ["test"]},
            "globals": globals_,
            "nodes": node_docs,
            "edges": edge_docs,
        }

    return build


@pytest.fixture
def linear_workflow(make_workflow) -> dict:
    """Linear chain: input -> process -> output."""
    return make_workflow(
        nodes=[
            {"id": "input", "type": "input.mock"},
            {"id": "process", "type": "transform.process"},
            {"id": "output", "type": "output.mock"},
        ],
        edges=[("input", "process"), ("process", "output")],
    )


@pytest.fixture
def diamond_workflow(make_workflow) -> dict:
    """Diamond: input -> (a, b) -> output."""
    return make_workflow(
        nodes=[
            {"id": "input", "type": "input.mock"},
            {"id": "a", "type": "transform.process", "config": {"label": "a"}},
            {"id": "b", "type": "transform.process", "config": {"label": "b"}},
            {"id": "output", "type": "output.mock"},
        ],
        edges=[
            ("input", "a"),
            ("input", "b"),
            {"source": "a", "target": "output", "sourcePort": "left"},
            {"source": "b", "target": "output", "sourcePort": "right"},
        ],
    )


@pytest.fixture
def failing_workflow(make_workflow) -> dict:
    """input -> fail -> output, with the default stop policy."""
    return make_workflow(
        nodes=[
            {"id": "input", "type": "input.mock"},
            {"id": "fail", "type": "transform.fail"},
            {"id": "output", "type": "output.mock"},
        ],
        edges=[("input", "fail"), ("fail", "output")],
        errorHandling="stop",
    )


@pytest.fixture
def cyclic_workflow(make_workflow) -> dict:
    """Invalid workflow with a cycle: a -> b -> c -> a, fed by input."""
    return make_workflow(
        nodes=[
            {"id": "input", "type": "input.mock"},
            {"id": "a", "type": "transform.process"},
            {"id": "b", "type": "transform.process"},
            {"id": "c", "type": "transform.process"},
        ],
        edges=[("input", "a"), ("a", "b"), ("b", "c"), ("c", "a")],
    )
