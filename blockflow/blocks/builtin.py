"""
Generic built-in blocks.

These carry no business semantics; they move data into, through and out of a
workflow and are handy for wiring and testing graphs.
"""

from typing import Any

from blockflow.blocks.registry import BaseBlockExecutor, BlockRegistry
from blockflow.context.context import ExecutionContext
from blockflow.core.models import ExecutionResult


class StaticInputBlock(BaseBlockExecutor):
    """Emits ``config.data`` when set, otherwise the workflow input."""

    async def execute(self, config: dict[str, Any], input_data: Any, context: ExecutionContext) -> ExecutionResult:
        output = config["data"] if "data" in config else input_data
        return self.success(output, input_data)


class PassThroughBlock(BaseBlockExecutor):
    """Returns its input unchanged."""

    async def execute(self, config: dict[str, Any], input_data: Any, context: ExecutionContext) -> ExecutionResult:
        return self.success(input_data, input_data)


class CollectOutputBlock(BaseBlockExecutor):
    """Records its input as the workflow output."""

    async def execute(self, config: dict[str, Any], input_data: Any, context: ExecutionContext) -> ExecutionResult:
        size = len(input_data) if isinstance(input_data, (list, dict)) else 1
        context.logger.node(self.node_id, "Collected output", items=size)
        return self.success(input_data, input_data, items=size)


BUILTIN_BLOCKS: dict[str, tuple[type[BaseBlockExecutor], dict[str, Any]]] = {
    "input.static": (
        StaticInputBlock,
        {
            "name": "Static Input",
            "description": "Emits configured data or the workflow input",
            "supports_mock": True,
            "tags": ["input", "builtin"],
        },
    ),
    "transform.pass_through": (
        PassThroughBlock,
        {
            "name": "Pass Through",
            "description": "Forwards its input unchanged",
            "supports_mock": True,
            "tags": ["transform", "builtin"],
        },
    ),
    "output.collect": (
        CollectOutputBlock,
        {
            "name": "Collect Output",
            "description": "Records its input as workflow output",
            "supports_mock": True,
            "tags": ["output", "builtin"],
        },
    ),
}


def register_builtin_blocks(registry: BlockRegistry) -> BlockRegistry:
    """Register the generic blocks that are not already present."""
    for block_type, (executor_cls, metadata) in BUILTIN_BLOCKS.items():
        if not registry.has(block_type):
            registry.register(block_type, executor_cls, **metadata)
    return registry
