"""
Unit tests for the block registry and executor base class.
"""

import pytest

from blockflow.blocks import (
    BaseBlockExecutor,
    BlockRegistry,
    CollectOutputBlock,
    PassThroughBlock,
    StaticInputBlock,
    register_builtin_blocks,
)
from blockflow.core.errors import BlockAlreadyRegisteredError, BlockNotRegisteredError
from blockflow.core.models import ExecutionStatus


class NoopBlock(BaseBlockExecutor):
    async def execute(self, config, input_data, context):
        return self.success(None)


class TestBlockRegistry:
    """Tests for registration and lookup."""

    def test_register_and_create(self):
        """Test a registered type yields a fresh executor per call."""
        registry = BlockRegistry()
        registry.register("api.lookup", NoopBlock, name="Lookup")

        first = registry.create_executor("api.lookup", node_id="n1")
        second = registry.create_executor("api.lookup")

        assert isinstance(first, NoopBlock)
        assert first is not second
        assert first.block_type == "api.lookup"
        assert first.node_id == "n1"

    def test_duplicate_registration(self):
        """Test registering a type twice raises."""
        registry = BlockRegistry()
        registry.register("api.lookup", NoopBlock)

        with pytest.raises(BlockAlreadyRegisteredError):
            registry.register("api.lookup", NoopBlock)

    def test_unknown_type(self):
        """Test creating an unregistered type raises."""
        with pytest.raises(BlockNotRegisteredError, match="Unknown block type: ai.missing"):
            BlockRegistry().create_executor("ai.missing")

    def test_category_from_type(self):
        """Test category is derived from the type prefix, else custom."""
        registry = BlockRegistry()
        registry.register("ai.enrich", NoopBlock)
        registry.register("acme.special", NoopBlock)

        assert registry.get_metadata("ai.enrich").category == "ai"
        assert registry.get_metadata("acme.special").category == "custom"
        assert [m.type for m in registry.get_by_category("ai")] == ["ai.enrich"]

    def test_metadata_defaults(self):
        """Test name defaults to the type key."""
        registry = BlockRegistry()
        registry.register("transform.x", NoopBlock, tags=["t"])

        metadata = registry.get_metadata("transform.x")

        assert metadata.name == "transform.x"
        assert metadata.tags == ["t"]
        assert metadata.model_dump(by_alias=True)["supportsMock"] is False

    def test_unregister_and_clear(self):
        """Test removal helpers."""
        registry = BlockRegistry()
        registry.register("transform.x", NoopBlock)
        registry.register("transform.y", NoopBlock)

        assert registry.unregister("transform.x")
        assert not registry.unregister("transform.x")
        assert registry.list() == ["transform.y"]
        assert "transform.y" in registry
        assert len(registry) == 1

        registry.clear()
        assert len(registry) == 0
        assert registry.get_all_metadata() == []

    def test_builtin_blocks(self):
        """Test built-ins register once and skip existing keys."""
        registry = BlockRegistry()
        registry.register("output.collect", NoopBlock)

        register_builtin_blocks(registry)
        register_builtin_blocks(registry)

        assert set(registry.list()) == {"output.collect", "input.static", "transform.pass_through"}
        assert isinstance(registry.create_executor("output.collect"), NoopBlock)


class TestBaseBlockExecutor:
    """Tests for schema validation and result builders."""

    @pytest.mark.asyncio
    async def test_validate_with_json_schema(self):
        """Test values are checked against JSON Schema."""
        block = NoopBlock()
        schema = {
            "type": "object",
            "properties": {"email": {"type": "string"}},
            "required": ["email"],
        }

        assert await block.validate_input({"email": "a@b.c"}, schema)
        assert not await block.validate_input({"email": 5}, schema)
        assert not await block.validate_output({}, schema)

    @pytest.mark.asyncio
    async def test_no_schema_passes(self):
        """Test an absent schema accepts anything."""
        assert await NoopBlock().validate_input(object(), None)

    @pytest.mark.asyncio
    async def test_broken_schema_fails_closed(self):
        """Test an invalid schema rejects the value."""
        assert not await NoopBlock().validate_output({}, {"type": 12})

    def test_result_builders(self):
        """Test success and failure results."""
        block = NoopBlock()
        block.node_id = "n1"

        ok = block.success({"x": 1}, {"in": 1}, rows=1)
        bad = block.failure("nope", "LookupError")

        assert ok.status == ExecutionStatus.COMPLETED
        assert ok.node_id == "n1"
        assert ok.metadata == {"rows": 1}
        assert bad.status == ExecutionStatus.FAILED
        assert bad.error == "nope"
        assert bad.error_type == "LookupError"


class TestBuiltinExecutors:
    """Tests for the generic built-in blocks."""

    @pytest.mark.asyncio
    async def test_static_input(self, context_factory):
        """Test configured data wins over the workflow input."""
        context = context_factory()

        configured = await StaticInputBlock().execute({"data": [1, 2]}, {"ignored": True}, context)
        passthrough = await StaticInputBlock().execute({}, {"x": 1}, context)

        assert configured.output == [1, 2]
        assert passthrough.output == {"x": 1}

    @pytest.mark.asyncio
    async def test_pass_through(self, context_factory):
        """Test input is forwarded unchanged."""
        result = await PassThroughBlock().execute({}, {"a": 1}, context_factory())

        assert result.output == {"a": 1}

    @pytest.mark.asyncio
    async def test_collect_output(self, context_factory):
        """Test output collection records its item count."""
        block = CollectOutputBlock()
        block.node_id = "out"

        result = await block.execute({}, [1, 2, 3], context_factory())

        assert result.output == [1, 2, 3]
        assert result.metadata == {"items": 3}

    @pytest.mark.asyncio
    async def test_collect_output_sizes(self, context_factory):
        """Test mappings count their keys and scalars count as one item."""
        context = context_factory()

        mapping = await CollectOutputBlock().execute({}, {"a": 1, "b": 2}, context)
        scalar = await CollectOutputBlock().execute({}, "done", context)

        assert mapping.metadata == {"items": 2}
        assert scalar.metadata == {"items": 1}
