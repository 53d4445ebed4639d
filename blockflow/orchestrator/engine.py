"""
Workflow orchestrator engine.

Manages the lifecycle of a workflow run:
- Execution plan construction (Kahn layering)
- Layer-synchronous parallel execution
- Input gathering and edge routing conditions
- Failure policy (stop / continue)
- Progress emission and cooperative cancellation
- Result aggregation
"""

import asyncio
import logging
import time
from collections import Counter
from datetime import datetime
from typing import Any, Mapping, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from blockflow.blocks.registry import BlockRegistry
from blockflow.config import Settings, get_settings
from blockflow.context.context import ExecutionContext
from blockflow.core.conditions import evaluate_condition
from blockflow.core.dag import build_execution_plan
from blockflow.core.errors import InvalidGraphError, WorkflowCancelledError
from blockflow.core.models import (
    EdgeDefinition,
    ErrorHandlingStrategy,
    ExecutionPlan,
    ExecutionResult,
    ExecutionStatus,
    ExecutionSummary,
    NodeDefinition,
    TimelineEvent,
    WorkflowDefinition,
    WorkflowExecutionResult,
    utcnow,
)
from blockflow.core.state_machine import (
    NodeStateMachine,
    WorkflowStateMachine,
    compute_workflow_state_from_nodes,
)
from blockflow.orchestrator.cancellation import CancellationToken
from blockflow.orchestrator.runner import NodeRunner

logger = logging.getLogger(__name__)


class _RunState:
    """Bookkeeping for one run."""

    def __init__(self, definition: WorkflowDefinition, plan: ExecutionPlan, error_handling: ErrorHandlingStrategy):
        self.definition = definition
        self.plan = plan
        self.error_handling = error_handling
        self.node_machines = {node_id: NodeStateMachine() for node_id in plan.node_states}

    def statuses(self) -> dict[str, ExecutionStatus]:
        return {node_id: sm.state for node_id, sm in self.node_machines.items()}


class WorkflowOrchestrator:
    """
    Executes workflow definitions.

    Responsibilities:
    - Build a fresh layered plan per run
    - Run every node of a layer concurrently, bounded by max_parallel_nodes
    - Guard each invocation with timeout and retries (NodeRunner)
    - Apply the failure policy and edge conditions
    - Emit progress after each layer and aggregate the final result
    """

    def __init__(self, registry: BlockRegistry, settings: Optional[Settings] = None):
        self.registry = registry
        self.settings = settings or get_settings()
        self.runner = NodeRunner(registry, self.settings)

        self._active_tokens: dict[str, CancellationToken] = {}

    # ==================== Public API ====================

    async def execute(
        self,
        definition: Union[WorkflowDefinition, Mapping[str, Any]],
        context: ExecutionContext,
        input_data: Any = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> WorkflowExecutionResult:
        """
        Execute a workflow to completion.

        Unparseable documents, node failures, plan errors and cancellation
        are reported on the returned result rather than raised. The context is
        cleaned up exactly once, after the result has been assembled.

        Args:
            definition: Workflow definition (model or JSON document)
            context: Context created for this run
            input_data: Input handed to entry nodes
            cancel_token: Optional token the caller can use to stop the run

        Returns:
            WorkflowExecutionResult with per-node results, timeline and summary
        """
        if not isinstance(definition, WorkflowDefinition):
            try:
                definition = WorkflowDefinition.model_validate(definition)
            except PydanticValidationError as e:
                return self._rejected_result(definition, context, input_data, e)

        token = cancel_token or CancellationToken()
        context.cancel_token = token
        self._active_tokens[context.execution_id] = token

        workflow_sm = WorkflowStateMachine()
        run: Optional[_RunState] = None
        error: Optional[str] = None
        start_time = utcnow()
        started = time.monotonic()

        context.set_metadata("workflow_input", input_data)
        workflow_sm.transition(ExecutionStatus.RUNNING, reason="execution started")
        context.logger.info(f"Starting workflow execution: {definition.workflow_id}")
        context.add_timeline_event(TimelineEvent(
            event="workflow_started",
            details={"workflow_id": definition.workflow_id, "mode": context.mode.value},
        ))

        try:
            plan = build_execution_plan(definition, self.settings.engine.estimated_node_time)
            run = _RunState(definition, plan, self._error_handling(definition))

            context.logger.info(
                f"Execution plan created: {plan.total_layers} layers, estimated {plan.estimated_time:.2f}s"
            )
            context.add_timeline_event(TimelineEvent(
                event="plan_created",
                details={
                    "layers": plan.total_layers,
                    "execution_order": plan.execution_order,
                    "estimated_time": plan.estimated_time,
                },
            ))

            await self._execute_layers(run, context, input_data, token)

            if run.node_machines:
                status = compute_workflow_state_from_nodes(
                    run.statuses(), set(run.node_machines), run.error_handling
                )
            else:
                status = ExecutionStatus.COMPLETED
            if status == ExecutionStatus.FAILED:
                error = self._first_failure(context, plan)
            workflow_sm.transition(status, reason=error)

        except WorkflowCancelledError as e:
            error = str(e)
            workflow_sm.transition(ExecutionStatus.CANCELLED, reason=e.reason)
            context.logger.warning(f"Workflow execution cancelled: {e.reason or 'no reason given'}")

        except InvalidGraphError as e:
            error = str(e)
            workflow_sm.transition(ExecutionStatus.FAILED, reason=error)
            context.logger.error(f"Execution plan rejected: {e}")

        except Exception as e:
            error = str(e)
            workflow_sm.transition(ExecutionStatus.FAILED, reason=error)
            context.logger.error(f"Workflow execution failed: {e}", exc_info=True)

        finally:
            self._active_tokens.pop(context.execution_id, None)

        try:
            result = self._build_result(
                definition, context, workflow_sm.state, input_data, error, start_time, started
            )
        finally:
            context.cleanup()

        context.logger.info(
            f"Workflow execution {result.status.value}: "
            f"{result.metadata.completed_nodes}/{result.metadata.total_nodes} nodes completed "
            f"in {result.execution_time:.3f}s"
        )
        return result

    def cancel(self, execution_id: Optional[str] = None, reason: Optional[str] = None) -> bool:
        """
        Request cancellation of an active run.

        Without an execution id every active run is cancelled. Returns False if
        no matching run is active.
        """
        if execution_id is not None:
            token = self._active_tokens.get(execution_id)
            if token is None:
                return False
            token.cancel(reason)
            return True

        for token in list(self._active_tokens.values()):
            token.cancel(reason)
        return bool(self._active_tokens)

    @property
    def active_executions(self) -> list[str]:
        return list(self._active_tokens)

    # ==================== Layers ====================

    async def _execute_layers(
        self,
        run: _RunState,
        context: ExecutionContext,
        input_data: Any,
        token: CancellationToken,
    ) -> None:
        """Run layers in order; stop early on cancellation or a failure under ``stop``."""
        layers = run.plan.execution_order
        total = len(layers)
        limit = run.definition.globals.max_parallel_nodes or self.settings.engine.max_parallel_nodes
        semaphore = asyncio.Semaphore(limit) if limit else None

        for index, layer in enumerate(layers):
            token.raise_if_cancelled()

            context.logger.info(f"Executing layer {index + 1}/{total}: {layer}")
            results = await asyncio.gather(
                *(self._execute_node(run, node_id, context, input_data, semaphore) for node_id in layer)
            )

            failed = [r.node_id for r in results if r.status == ExecutionStatus.FAILED]

            progress = round((index + 1) / total * 100)
            if index + 1 < total:
                progress = min(progress, 99)
            context.update_progress(progress, TimelineEvent(
                event="layer_completed",
                details={
                    "layer": index,
                    "total_layers": total,
                    "node_count": len(layer),
                    "progress": progress,
                    "failed_nodes": failed,
                },
            ))

            if failed and run.error_handling == ErrorHandlingStrategy.STOP:
                context.logger.error(f"Stopping after layer {index + 1}: failed nodes {failed}")
                return

    async def _execute_node(
        self,
        run: _RunState,
        node_id: str,
        context: ExecutionContext,
        workflow_input: Any,
        semaphore: Optional[asyncio.Semaphore],
    ) -> ExecutionResult:
        """Settle one node: skip it, or run it through the guarded runner."""
        node = run.definition.get_node(node_id)
        node_sm = run.node_machines[node_id]
        incoming = run.definition.incoming_edges(node_id)

        skip_reason: Optional[str] = None
        active_edges: list[EdgeDefinition] = []

        if incoming:
            upstream_failed = sorted({e.source for e in incoming if not self._settled_ok(e.source, context)})
            active_edges = [e for e in incoming if self._edge_is_active(e, context)]

            if upstream_failed:
                skip_reason = f"Upstream node(s) did not complete: {upstream_failed}"
            elif not active_edges:
                skip_reason = "No active incoming edge"

        if skip_reason is not None:
            return self._skip(node, node_sm, context, skip_reason)

        input_data = self._gather_input(active_edges, context, workflow_input) if incoming else workflow_input

        node_sm.transition(ExecutionStatus.RUNNING)
        context.logger.node(node_id, f"Executing node ({node.type})")

        try:
            if semaphore is None:
                result = await self.runner.invoke(node, run.definition, input_data, context)
            else:
                async with semaphore:
                    result = await self.runner.invoke(node, run.definition, input_data, context)
        except Exception as e:
            context.logger.error(f"[{node_id}] Unexpected error: {e}", exc_info=True)
            result = ExecutionResult(
                node_id=node_id,
                status=ExecutionStatus.FAILED,
                input=input_data,
                error=str(e),
                error_type=type(e).__name__,
            )

        node_sm.transition(result.status, reason=result.error)
        context.set_node_result(node_id, result)
        context.add_timeline_event(TimelineEvent(
            event=f"node_{result.status.value}",
            node_id=node_id,
            block_type=node.type,
            error=result.error,
            details={"execution_time": result.execution_time, "retry_count": result.retry_count},
        ))

        if result.status == ExecutionStatus.FAILED:
            context.logger.error(f"[{node_id}] Node failed: {result.error}")
        else:
            context.logger.node(
                node_id,
                f"Node {result.status.value}",
                execution_time=result.execution_time,
                retry_count=result.retry_count,
            )
        return result

    def _skip(
        self,
        node: NodeDefinition,
        node_sm: NodeStateMachine,
        context: ExecutionContext,
        reason: str,
    ) -> ExecutionResult:
        node_sm.transition(ExecutionStatus.SKIPPED, reason=reason)
        now = utcnow()
        result = ExecutionResult(
            node_id=node.id,
            status=ExecutionStatus.SKIPPED,
            start_time=now,
            end_time=now,
            metadata={"reason": reason},
        )
        context.set_node_result(node.id, result)
        context.add_timeline_event(TimelineEvent(
            event="node_skipped",
            node_id=node.id,
            block_type=node.type,
            details={"reason": reason},
        ))
        context.logger.node(node.id, f"Node skipped: {reason}")
        return result

    # ==================== Inputs ====================

    @staticmethod
    def _settled_ok(node_id: str, context: ExecutionContext) -> bool:
        """Whether a predecessor settled without failing (completed or skipped)."""
        result = context.get_node_result(node_id)
        return result is not None and result.status != ExecutionStatus.FAILED

    @staticmethod
    def _edge_is_active(edge: EdgeDefinition, context: ExecutionContext) -> bool:
        """An edge carries data when its source completed and its condition holds."""
        source = context.get_node_result(edge.source)
        if source is None or source.status != ExecutionStatus.COMPLETED:
            return False
        if edge.condition is None:
            return True
        return evaluate_condition(edge.condition, source.output)

    @staticmethod
    def _gather_input(edges: list[EdgeDefinition], context: ExecutionContext, workflow_input: Any) -> Any:
        """
        Build a node's input from its active incoming edges.

        A single edge passes the predecessor output through unchanged. Several
        edges produce a dict keyed by source port; ports shared by more than
        one edge are keyed by source node id instead.
        """
        if not edges:
            return workflow_input
        if len(edges) == 1:
            return context.get_node_output(edges[0].source)

        port_counts = Counter(e.port_key for e in edges)
        source_counts = Counter(e.source for e in edges if port_counts[e.port_key] > 1)
        merged: dict[str, Any] = {}
        for edge in edges:
            if port_counts[edge.port_key] == 1:
                key = edge.port_key
            elif source_counts[edge.source] == 1:
                key = edge.source
            else:
                key = f"{edge.source}.{edge.port_key}.{edge.id}"
            merged[key] = context.get_node_output(edge.source)
        return merged

    # ==================== Results ====================

    def _error_handling(self, definition: WorkflowDefinition) -> ErrorHandlingStrategy:
        if definition.globals.error_handling is not None:
            return definition.globals.error_handling
        return ErrorHandlingStrategy(self.settings.engine.default_error_handling)

    @staticmethod
    def _first_failure(context: ExecutionContext, plan: ExecutionPlan) -> Optional[str]:
        for layer in plan.execution_order:
            for node_id in layer:
                result = context.get_node_result(node_id)
                if result is not None and result.status == ExecutionStatus.FAILED:
                    return f"Node {node_id} failed: {result.error}"
        return None

    @staticmethod
    def _rejected_result(
        document: Any,
        context: ExecutionContext,
        input_data: Any,
        exc: PydanticValidationError,
    ) -> WorkflowExecutionResult:
        """Failed result for a document that does not parse; no node runs."""
        workflow_id = document.get("workflowId") if isinstance(document, Mapping) else None
        if not isinstance(workflow_id, str):
            workflow_id = ""
        error = f"Invalid workflow definition: {exc.error_count()} validation error(s)"

        context.logger.error(f"{error}: {exc.errors()[0]['msg']}" if exc.error_count() else error)
        context.add_timeline_event(TimelineEvent(
            event="workflow_failed",
            error=error,
            details={"workflow_id": workflow_id},
        ))

        now = utcnow()
        try:
            return WorkflowExecutionResult(
                execution_id=context.execution_id,
                workflow_id=workflow_id,
                status=ExecutionStatus.FAILED,
                input=input_data,
                output={},
                error=error,
                start_time=now,
                end_time=now,
                timeline=context.get_timeline(),
            )
        finally:
            context.cleanup()

    @staticmethod
    def _build_result(
        definition: WorkflowDefinition,
        context: ExecutionContext,
        status: ExecutionStatus,
        input_data: Any,
        error: Optional[str],
        start_time: datetime,
        started: float,
    ) -> WorkflowExecutionResult:
        node_results = context.get_all_node_results()

        outputs = {
            node.id: node_results[node.id].output
            for node in definition.output_nodes()
            if node.id in node_results and node_results[node.id].status == ExecutionStatus.COMPLETED
        }

        counts = Counter(r.status for r in node_results.values())
        context.add_timeline_event(TimelineEvent(
            event=f"workflow_{status.value}",
            error=error,
            details={"workflow_id": definition.workflow_id},
        ))

        return WorkflowExecutionResult(
            execution_id=context.execution_id,
            workflow_id=definition.workflow_id,
            status=status,
            input=input_data,
            output=outputs,
            error=error,
            start_time=start_time,
            end_time=utcnow(),
            execution_time=time.monotonic() - started,
            node_results=node_results,
            timeline=context.get_timeline(),
            metadata=ExecutionSummary(
                total_nodes=len(definition.nodes),
                completed_nodes=counts[ExecutionStatus.COMPLETED],
                failed_nodes=counts[ExecutionStatus.FAILED],
                skipped_nodes=counts[ExecutionStatus.SKIPPED],
            ),
        )
