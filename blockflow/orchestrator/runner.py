"""
Guarded node invocation.

Wraps a single executor call with schema checks, template resolution, a
timeout race and retries with exponential backoff. Every outcome, including
executor exceptions, comes back as an ExecutionResult.
"""

import asyncio
import logging
import time
from typing import Any, Optional

from blockflow.blocks.registry import BlockExecutor, BlockRegistry
from blockflow.config import Settings, get_settings
from blockflow.context.context import ExecutionContext
from blockflow.core.errors import (
    BlockNotRegisteredError,
    NodeExecutionError,
    NodeTimeoutError,
    SchemaMismatchError,
)
from blockflow.core.models import (
    ExecutionResult,
    ExecutionStatus,
    NodeDefinition,
    RetryPolicy,
    WorkflowDefinition,
    utcnow,
)
from blockflow.template.resolver import resolve_node_config
from blockflow.validation.validator import resolve_schema_refs

logger = logging.getLogger(__name__)

_SETTLED_STATES = {ExecutionStatus.COMPLETED, ExecutionStatus.FAILED, ExecutionStatus.SKIPPED}


def _discard_outcome(task: "asyncio.Task[Any]") -> None:
    """Retrieve the outcome of an abandoned task so it is not reported as unhandled."""
    if not task.cancelled():
        task.exception()


class NodeRunner:
    """Invokes one node's executor under its timeout and retry policy."""

    def __init__(self, registry: BlockRegistry, settings: Optional[Settings] = None):
        self.registry = registry
        self.settings = settings or get_settings()

    def resolve_timeout(self, node: NodeDefinition, definition: WorkflowDefinition) -> float:
        """Node timeout, else the workflow default, else the engine default."""
        if node.timeout:
            return node.timeout
        if definition.globals.timeout:
            return definition.globals.timeout
        return self.settings.engine.default_node_timeout

    @staticmethod
    def resolve_retry_policy(node: NodeDefinition, definition: WorkflowDefinition) -> Optional[RetryPolicy]:
        return node.retry_config or definition.globals.retry_policy

    async def invoke(
        self,
        node: NodeDefinition,
        definition: WorkflowDefinition,
        input_data: Any,
        context: ExecutionContext,
    ) -> ExecutionResult:
        """
        Run a node to a settled result.

        Input schema mismatch fails the node before any attempt. Failed
        attempts are retried from scratch while the policy allows; output
        schema mismatch fails the node after the final attempt.
        """
        start_time = utcnow()
        started = time.monotonic()

        def settle(result: ExecutionResult, retry_count: int = 0) -> ExecutionResult:
            return result.model_copy(update={
                "node_id": node.id,
                "input": input_data,
                "retry_count": retry_count,
                "start_time": start_time,
                "end_time": utcnow(),
                "execution_time": time.monotonic() - started,
            })

        try:
            executor = self.registry.create_executor(node.type, node.id)
        except BlockNotRegisteredError as e:
            return settle(self._failed(node.id, e))

        input_schema = resolve_schema_refs(node.input_schema, definition.schemas)
        if input_schema and not await executor.validate_input(input_data, input_schema):
            return settle(self._failed(node.id, SchemaMismatchError("input", node.id)))

        config = resolve_node_config(node.config, context, input_data)
        timeout = self.resolve_timeout(node, definition)
        policy = self.resolve_retry_policy(node, definition)
        max_retries = max(policy.max_retries, 0) if policy else 0

        attempt = 0
        while True:
            result = await self._attempt(executor, node, config, input_data, context, timeout)
            if result.status != ExecutionStatus.FAILED:
                break
            if attempt >= max_retries or not policy.is_retryable(result.error_type):
                break

            delay = policy.delay_for_attempt(attempt)
            context.logger.warning(
                f"[{node.id}] Attempt {attempt + 1} failed, retrying in {delay}s: {result.error}",
                extra={"node_id": node.id, "meta": {"attempt": attempt + 1, "max_retries": max_retries}},
            )
            await asyncio.sleep(delay)
            attempt += 1

        if result.status == ExecutionStatus.COMPLETED:
            output_schema = resolve_schema_refs(node.output_schema, definition.schemas)
            if output_schema and not await executor.validate_output(result.output, output_schema):
                result = self._failed(node.id, SchemaMismatchError("output", node.id))

        return settle(result, attempt)

    async def _attempt(
        self,
        executor: BlockExecutor,
        node: NodeDefinition,
        config: dict[str, Any],
        input_data: Any,
        context: ExecutionContext,
        timeout: float,
    ) -> ExecutionResult:
        """
        One attempt, raced against the timeout.

        On timeout the executor task is cancelled but not awaited, so a call
        that ignores cancellation cannot hold the layer past its deadline.
        """
        task = asyncio.ensure_future(executor.execute(config, input_data, context))
        try:
            done, _ = await asyncio.wait({task}, timeout=timeout)
        except asyncio.CancelledError:
            task.cancel()
            raise

        if not done:
            task.cancel()
            task.add_done_callback(_discard_outcome)
            context.logger.warning(f"[{node.id}] Timed out after {timeout}s", extra={"node_id": node.id})
            return self._failed(node.id, NodeTimeoutError(timeout, node.id))

        try:
            outcome = task.result()
        except Exception as e:
            logger.debug(f"Executor for node {node.id} raised {type(e).__name__}: {e}")
            return self._failed(node.id, e)

        if isinstance(outcome, ExecutionResult):
            if outcome.status not in _SETTLED_STATES:
                return self._failed(
                    node.id,
                    NodeExecutionError(f"Executor returned non-terminal status: {outcome.status.value}", node.id),
                )
            return outcome
        return ExecutionResult(node_id=node.id, status=ExecutionStatus.COMPLETED, output=outcome)

    @staticmethod
    def _failed(node_id: str, error: BaseException) -> ExecutionResult:
        return ExecutionResult(
            node_id=node_id,
            status=ExecutionStatus.FAILED,
            error=str(error),
            error_type=type(error).__name__,
        )
