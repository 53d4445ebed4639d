"""Per-run execution context."""

from blockflow.context.context import (
    ContextFactory,
    ExecutionContext,
    ProgressCallback,
    RunLogger,
)

__all__ = [
    "ContextFactory",
    "ExecutionContext",
    "ProgressCallback",
    "RunLogger",
]
