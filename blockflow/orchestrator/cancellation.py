"""
Cooperative cancellation for workflow runs.

The orchestrator checks the token at layer boundaries only; nodes already
running in the current layer are allowed to finish. Long-running executors
may poll ``context.is_cancelled`` to stop early.
"""

import asyncio
from typing import Optional

from blockflow.core.errors import WorkflowCancelledError


class CancellationToken:
    """A one-way cancellation flag shared between a caller and a run."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def cancel(self, reason: Optional[str] = None) -> None:
        """Request cancellation. Later calls keep the first reason."""
        if self._event.is_set():
            return
        self._reason = reason
        self._event.set()

    def raise_if_cancelled(self) -> None:
        """
        Raises:
            WorkflowCancelledError: Cancellation was requested
        """
        if self.cancelled:
            raise WorkflowCancelledError(self._reason)

    async def wait(self) -> None:
        """Block until cancellation is requested."""
        await self._event.wait()
