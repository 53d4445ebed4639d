"""
Block executor contract and registry.

A block type key (``"api.hunter"``, ``"output.collect"``) maps to an executor
class. The orchestrator asks the registry for a fresh executor instance for
every node invocation.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Optional

from jsonschema import Draft202012Validator
from jsonschema.exceptions import SchemaError
from pydantic import Field

from blockflow.core.errors import BlockAlreadyRegisteredError, BlockNotRegisteredError
from blockflow.core.models import (
    BlockType,
    CamelModel,
    ExecutionResult,
    ExecutionStatus,
    block_category,
    utcnow,
)

if TYPE_CHECKING:
    from blockflow.context.context import ExecutionContext

logger = logging.getLogger(__name__)


class BlockExecutor(ABC):
    """
    Contract every block implements.

    Expected failures are returned as a result with ``status=failed``; an
    exception escaping ``execute`` is treated by the orchestrator as a failed
    attempt.
    """

    block_type: str = ""
    node_id: str = ""

    @abstractmethod
    async def execute(
        self,
        config: dict[str, Any],
        input_data: Any,
        context: "ExecutionContext",
    ) -> ExecutionResult:
        """Run the block once and return its result."""
        pass

    @abstractmethod
    async def validate_input(self, value: Any, schema: Optional[dict[str, Any]]) -> bool:
        pass

    @abstractmethod
    async def validate_output(self, value: Any, schema: Optional[dict[str, Any]]) -> bool:
        pass


class BaseBlockExecutor(BlockExecutor):
    """
    Convenience base for block implementations.

    Provides:
    - JSON Schema (Draft 2020-12) input/output validation
    - success() / failure() result builders
    - An async sleep helper
    """

    async def validate_input(self, value: Any, schema: Optional[dict[str, Any]]) -> bool:
        return self._validate_against_schema(value, schema, "input")

    async def validate_output(self, value: Any, schema: Optional[dict[str, Any]]) -> bool:
        return self._validate_against_schema(value, schema, "output")

    def _validate_against_schema(self, value: Any, schema: Optional[dict[str, Any]], phase: str) -> bool:
        if not schema:
            return True

        try:
            Draft202012Validator.check_schema(schema)
        except SchemaError as e:
            logger.warning(f"[Block:{self.block_type}] Invalid {phase} schema: {e.message}")
            return False

        validator = Draft202012Validator(schema)
        errors = sorted(validator.iter_errors(value), key=lambda e: e.json_path)
        if errors:
            logger.debug(
                f"[Block:{self.block_type}] {phase.capitalize()} validation failed: "
                f"{[e.message for e in errors]}"
            )
            return False
        return True

    def success(self, output: Any, input_data: Any = None, **metadata: Any) -> ExecutionResult:
        """Build a completed result for this node."""
        now = utcnow()
        return ExecutionResult(
            node_id=self.node_id,
            status=ExecutionStatus.COMPLETED,
            input=input_data,
            output=output,
            start_time=now,
            end_time=now,
            metadata=metadata,
        )

    def failure(
        self,
        error: str,
        error_type: str = "BlockError",
        input_data: Any = None,
        **metadata: Any,
    ) -> ExecutionResult:
        """Build a failed result for this node."""
        now = utcnow()
        return ExecutionResult(
            node_id=self.node_id,
            status=ExecutionStatus.FAILED,
            input=input_data,
            error=error,
            error_type=error_type,
            start_time=now,
            end_time=now,
            metadata=metadata,
        )

    @staticmethod
    async def sleep(seconds: float) -> None:
        await asyncio.sleep(seconds)


class BlockMetadata(CamelModel):
    """Descriptive information about a registered block type."""

    type: str
    name: str
    description: str = ""
    category: str = "custom"
    version: str = "1.0.0"
    supports_mock: bool = False
    tags: list[str] = Field(default_factory=list)
    config_schema: Optional[dict[str, Any]] = None


class BlockRegistry:
    """
    Maps block type keys to executor classes.

    Each orchestrator owns an explicit registry instance; there is no
    process-wide registry.
    """

    def __init__(self) -> None:
        self._executors: dict[str, type[BlockExecutor]] = {}
        self._metadata: dict[str, BlockMetadata] = {}

    def register(self, block_type: str, executor_cls: type[BlockExecutor], **metadata: Any) -> None:
        """
        Register an executor class for a block type.

        Args:
            block_type: Type key used in node definitions
            executor_cls: BlockExecutor subclass, instantiated per invocation
            **metadata: BlockMetadata fields (name, description, category, ...)

        Raises:
            BlockAlreadyRegisteredError: The type key is already taken
        """
        if block_type in self._executors:
            raise BlockAlreadyRegisteredError(block_type)

        category = block_category(block_type)
        if category not in {t.value for t in BlockType}:
            category = "custom"

        self._executors[block_type] = executor_cls
        self._metadata[block_type] = BlockMetadata(
            **{"type": block_type, "name": block_type, "category": category, **metadata}
        )
        logger.debug(f"Registered block type: {block_type}")

    def unregister(self, block_type: str) -> bool:
        """Remove a block type. Returns False if it was not registered."""
        self._metadata.pop(block_type, None)
        return self._executors.pop(block_type, None) is not None

    def has(self, block_type: str) -> bool:
        return block_type in self._executors

    def get_metadata(self, block_type: str) -> Optional[BlockMetadata]:
        return self._metadata.get(block_type)

    def get_all_metadata(self) -> list[BlockMetadata]:
        return list(self._metadata.values())

    def get_by_category(self, category: str) -> list[BlockMetadata]:
        return [m for m in self._metadata.values() if m.category == category]

    def clear(self) -> None:
        self._executors.clear()
        self._metadata.clear()

    def create_executor(self, block_type: str, node_id: Optional[str] = None) -> BlockExecutor:
        """
        Instantiate a fresh executor for one node invocation.

        Raises:
            BlockNotRegisteredError: No executor is registered for the type
        """
        executor_cls = self._executors.get(block_type)
        if executor_cls is None:
            raise BlockNotRegisteredError(block_type)

        executor = executor_cls()
        executor.block_type = block_type
        if node_id is not None:
            executor.node_id = node_id
        return executor

    def __len__(self) -> int:
        return len(self._executors)

    def __contains__(self, block_type: object) -> bool:
        return block_type in self._executors

    def list(self) -> list[str]:
        """Registered block type keys, in registration order."""
        return list(self._executors)
