"""
Execution context for a single workflow run.

Holds the per-run mutable state shared by all nodes: variables, secrets,
node results, metadata, timeline, logger and progress callback. Nodes of one
layer write to it concurrently, so every store is lock-guarded.
"""

import logging
import os
import threading
import time
import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable, MutableMapping, Optional, Union

from blockflow.config import Settings, get_settings
from blockflow.core.models import ExecutionMode, ExecutionResult, TimelineEvent, utcnow

if TYPE_CHECKING:
    from blockflow.orchestrator.cancellation import CancellationToken

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, TimelineEvent], None]


class RunLogger(logging.LoggerAdapter):
    """
    Logger adapter that tags every record with the run's execution id.

    Structured metadata passed as keyword arguments is attached to the record
    under ``meta``.
    """

    def __init__(self, base: logging.Logger, execution_id: str):
        super().__init__(base, {"execution_id": execution_id})

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        extra = dict(self.extra or {})
        extra.update(kwargs.pop("extra", None) or {})
        kwargs["extra"] = extra
        return f"[Workflow:{extra['execution_id']}] {msg}", kwargs

    def node(self, node_id: str, message: str, **meta: Any) -> None:
        """Log an info message scoped to a node."""
        self.info(f"[{node_id}] {message}", extra={"node_id": node_id, "meta": meta})


class ExecutionContext:
    """
    Per-run state container.

    Created by ContextFactory at run start and cleaned up exactly once after
    the run concludes. Child contexts copy, never alias, parent variables and
    secrets.
    """

    def __init__(
        self,
        workflow_id: str,
        execution_id: str,
        mode: ExecutionMode = ExecutionMode.PRODUCTION,
        variables: Optional[dict[str, Any]] = None,
        secrets: Optional[dict[str, str]] = None,
        env: Optional[dict[str, str]] = None,
        parent_context: Optional["ExecutionContext"] = None,
        run_logger: Union[logging.Logger, logging.LoggerAdapter, None] = None,
        progress: Optional[ProgressCallback] = None,
        disable_cache: bool = False,
    ):
        self.workflow_id = workflow_id
        self.execution_id = execution_id
        self.mode = ExecutionMode(mode)
        self.parent_context = parent_context
        self.progress = progress
        self.disable_cache = disable_cache
        self.start_time: datetime = utcnow()

        if run_logger is None:
            run_logger = logging.getLogger("blockflow.run")
        if isinstance(run_logger, logging.LoggerAdapter) and not isinstance(run_logger, RunLogger):
            run_logger = run_logger.logger
        if not isinstance(run_logger, RunLogger):
            run_logger = RunLogger(run_logger, execution_id)
        self.logger: RunLogger = run_logger

        self._lock = threading.RLock()
        self._variables: dict[str, Any] = dict(variables or {})
        self._secrets: dict[str, str] = dict(secrets or {})
        self._env: dict[str, str] = dict(env or {})
        self._node_results: dict[str, ExecutionResult] = {}
        self._metadata: dict[str, Any] = {}
        self._timeline: list[TimelineEvent] = []
        self._start_monotonic = time.monotonic()
        self._cleaned_up = False
        self.cancel_token: Optional["CancellationToken"] = None

        if self.disable_cache:
            self.logger.info("Cache disabled: blocks should fetch fresh data")

    # ==================== Variables ====================

    @property
    def variables(self) -> dict[str, Any]:
        """Snapshot of the run variables."""
        with self._lock:
            return dict(self._variables)

    def set_variable(self, key: str, value: Any) -> None:
        with self._lock:
            self._variables[key] = value
        self.logger.debug(f"Variable set: {key}")

    def get_variable(self, key: str, default: Any = None) -> Any:
        with self._lock:
            return self._variables.get(key, default)

    def set_variables(self, values: dict[str, Any]) -> None:
        with self._lock:
            self._variables.update(values)
        self.logger.debug(f"Variables updated: {len(values)}")

    # ==================== Secrets & environment ====================

    @property
    def secrets(self) -> dict[str, str]:
        """Snapshot of the run secrets. Never log this."""
        with self._lock:
            return dict(self._secrets)

    def get_secret(self, key: str) -> Optional[str]:
        with self._lock:
            return self._secrets.get(key)

    def set_secret(self, key: str, value: str) -> None:
        """Set a runtime-only secret. The value is never logged."""
        with self._lock:
            self._secrets[key] = value

    @property
    def env(self) -> dict[str, str]:
        return dict(self._env)

    def get_env(self, key: str) -> Optional[str]:
        return self._env.get(key)

    # ==================== Node results ====================

    def set_node_result(self, node_id: str, result: ExecutionResult) -> None:
        """Store a node's result. Retries overwrite the same slot."""
        with self._lock:
            self._node_results[node_id] = result
        self.logger.debug(
            f"Node result stored: {node_id}",
            extra={"meta": {"status": result.status.value, "execution_time": result.execution_time}},
        )

    def get_node_result(self, node_id: str) -> Optional[ExecutionResult]:
        with self._lock:
            return self._node_results.get(node_id)

    def has_node_result(self, node_id: str) -> bool:
        with self._lock:
            return node_id in self._node_results

    def get_all_node_results(self) -> dict[str, ExecutionResult]:
        with self._lock:
            return dict(self._node_results)

    def get_node_output(self, node_id: str) -> Any:
        result = self.get_node_result(node_id)
        return result.output if result is not None else None

    # ==================== Metadata & timeline ====================

    def set_metadata(self, key: str, value: Any) -> None:
        with self._lock:
            self._metadata[key] = value

    def get_metadata(self, key: str, default: Any = None) -> Any:
        with self._lock:
            return self._metadata.get(key, default)

    def add_timeline_event(self, event: TimelineEvent) -> None:
        with self._lock:
            self._timeline.append(event)

    def get_timeline(self) -> list[TimelineEvent]:
        with self._lock:
            return list(self._timeline)

    def get_elapsed_time(self) -> float:
        """Seconds since the context was created."""
        return time.monotonic() - self._start_monotonic

    # ==================== Progress ====================

    def update_progress(self, progress: int, event: TimelineEvent) -> None:
        """
        Record a timeline event and notify the progress callback.

        The callback runs inline; an exception from it is logged and does not
        fail the run.
        """
        self.add_timeline_event(event)
        if self.progress is None:
            return
        try:
            self.progress(progress, event)
        except Exception as e:
            self.logger.error(f"Progress callback failed: {e}", exc_info=True)

    # ==================== Lifecycle ====================

    def create_child_context(self, child_execution_id: Optional[str] = None) -> "ExecutionContext":
        """Create a context for a nested run. Variables and secrets are copied."""
        child = ExecutionContext(
            workflow_id=self.workflow_id,
            execution_id=child_execution_id or ContextFactory.generate_execution_id(),
            mode=self.mode,
            variables=self.variables,
            secrets=self.secrets,
            env=self.env,
            parent_context=self,
            run_logger=self.logger.logger,
            progress=self.progress,
            disable_cache=self.disable_cache,
        )
        child.cancel_token = self.cancel_token
        return child

    def get_summary(self) -> dict[str, Any]:
        """Context summary for logging."""
        with self._lock:
            return {
                "workflow_id": self.workflow_id,
                "execution_id": self.execution_id,
                "mode": self.mode.value,
                "elapsed_time": self.get_elapsed_time(),
                "nodes_completed": len(self._node_results),
                "variables_count": len(self._variables),
            }

    @property
    def is_cancelled(self) -> bool:
        """Whether the run this context belongs to has been asked to stop."""
        return self.cancel_token is not None and self.cancel_token.cancelled

    def is_mock_mode(self) -> bool:
        """Check if blocks should simulate external calls (demo or test)."""
        return self.mode in (ExecutionMode.DEMO, ExecutionMode.TEST)

    @property
    def is_cleaned_up(self) -> bool:
        return self._cleaned_up

    def cleanup(self) -> None:
        """Release per-run buffers. Safe to call more than once."""
        with self._lock:
            if self._cleaned_up:
                return
            self._node_results.clear()
            self._metadata.clear()
            self._timeline.clear()
            self._cleaned_up = True


class ContextFactory:
    """Creates execution contexts with fresh execution ids."""

    @staticmethod
    def generate_execution_id() -> str:
        return f"exec_{uuid.uuid4().hex}"

    @staticmethod
    def load_environment(settings: Optional[Settings] = None) -> dict[str, str]:
        """Collect the whitelisted environment variables exposed to templates."""
        settings = settings or get_settings()
        return {
            key: os.environ[key]
            for key in settings.engine.env_whitelist
            if key in os.environ
        }

    @classmethod
    def create(
        cls,
        workflow_id: str,
        execution_id: Optional[str] = None,
        mode: ExecutionMode = ExecutionMode.PRODUCTION,
        variables: Optional[dict[str, Any]] = None,
        secrets: Optional[dict[str, str]] = None,
        env: Optional[dict[str, str]] = None,
        run_logger: Union[logging.Logger, logging.LoggerAdapter, None] = None,
        progress: Optional[ProgressCallback] = None,
        disable_cache: bool = False,
        settings: Optional[Settings] = None,
    ) -> ExecutionContext:
        """Create a context for one run."""
        return ExecutionContext(
            workflow_id=workflow_id,
            execution_id=execution_id or cls.generate_execution_id(),
            mode=mode,
            variables=variables,
            secrets=secrets,
            env=env if env is not None else cls.load_environment(settings),
            run_logger=run_logger,
            progress=progress,
            disable_cache=disable_cache,
        )

    @classmethod
    def create_demo_context(cls, workflow_id: str, mock_data: Optional[dict[str, Any]] = None) -> ExecutionContext:
        return cls.create(
            workflow_id=workflow_id,
            mode=ExecutionMode.DEMO,
            variables={"mock": True, **(mock_data or {})},
        )

    @classmethod
    def create_test_context(cls, workflow_id: str, **kwargs: Any) -> ExecutionContext:
        return cls.create(workflow_id=workflow_id, mode=ExecutionMode.TEST, **kwargs)
