"""
FastAPI routes for the workflow engine API.

Implements the core API endpoints:
- POST /v1/workflows/validate - Validate a definition without running it
- POST /v1/workflows/execute - Validate and run a definition
- GET /v1/blocks - List registered block types
- GET /v1/blocks/:type - Block type metadata
- GET /v1/health - Health check

Definitions are passed inline; nothing is persisted.
"""

from dataclasses import asdict
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, ConfigDict, Field

from blockflow.blocks.registry import BlockMetadata, BlockRegistry
from blockflow.context.context import ContextFactory
from blockflow.core.models import (
    BlockType,
    CamelModel,
    ExecutionMode,
    WorkflowDefinition,
    WorkflowExecutionResult,
    block_category,
)
from blockflow.orchestrator.engine import WorkflowOrchestrator
from blockflow.validation.validator import ValidationResult, WorkflowValidator

router = APIRouter(prefix="/v1", tags=["workflows"])


# ==================== Request/Response Models ====================

class WorkflowValidateRequest(CamelModel):
    """Request body for workflow validation."""

    workflow: dict[str, Any] = Field(..., description="Workflow definition (camelCase JSON)")
    check_blocks: bool = Field(
        default=True,
        description="Also require every node type to be registered",
    )


class ValidationIssue(CamelModel):
    """A validation error or warning as returned over HTTP."""

    type: str
    message: str
    node_id: Optional[str] = None
    path: Optional[str] = None
    suggestion: Optional[str] = None


class WorkflowValidateResponse(CamelModel):
    """Response for workflow validation."""

    valid: bool
    errors: list[ValidationIssue] = Field(default_factory=list)
    warnings: list[ValidationIssue] = Field(default_factory=list)
    unavailable_blocks: list[str] = Field(default_factory=list)
    missing_blocks: list[str] = Field(default_factory=list)


class WorkflowExecuteRequest(BaseModel):
    """Request body for executing a workflow."""

    workflow: dict[str, Any] = Field(..., description="Workflow definition (camelCase JSON)")
    input: Any = Field(default=None, description="Input handed to entry nodes")
    mode: ExecutionMode = Field(default=ExecutionMode.TEST)
    variables: dict[str, Any] = Field(default_factory=dict)
    secrets: dict[str, str] = Field(default_factory=dict)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "workflow": {
                    "workflowId": "wf-demo",
                    "name": "Demo",
                    "version": 1,
                    "metadata": {"createdAt": "2024-01-01T00:00:00Z"},
                    "nodes": [
                        {"id": "in", "type": "input.static", "name": "Input", "config": {}},
                        {"id": "out", "type": "output.collect", "name": "Output", "config": {}},
                    ],
                    "edges": [{"id": "e1", "source": "in", "target": "out"}],
                },
                "input": {"leads": []},
                "mode": "test",
            }
        }
    )


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    services: dict[str, str]


# ==================== Dependency Injection ====================

async def get_orchestrator(request: Request) -> WorkflowOrchestrator:
    """Get orchestrator from app state."""
    return request.app.state.orchestrator


async def get_registry(request: Request) -> BlockRegistry:
    """Get block registry from app state."""
    return request.app.state.registry


def _serialize_validation(result: ValidationResult) -> tuple[list[ValidationIssue], list[ValidationIssue]]:
    return (
        [ValidationIssue(**asdict(e)) for e in result.errors],
        [ValidationIssue(**asdict(w)) for w in result.warnings],
    )


def _check_blocks(workflow: dict[str, Any], registry: BlockRegistry) -> tuple[list[str], list[str]]:
    """Node types missing from the registry, and required categories with no node."""
    types = [
        node.get("type") for node in workflow.get("nodes") or []
        if isinstance(node, dict) and isinstance(node.get("type"), str)
    ]
    unavailable = sorted({t for t in types if not registry.has(t)})
    categories = {block_category(t) for t in types}
    missing = [c.value for c in (BlockType.INPUT, BlockType.OUTPUT) if c.value not in categories]
    return unavailable, missing


# ==================== Routes ====================

@router.post(
    "/workflows/validate",
    response_model=WorkflowValidateResponse,
    summary="Validate a workflow",
    description="Validate a workflow definition without executing it. Returns every error and warning.",
)
async def validate_workflow(
    request: WorkflowValidateRequest,
    registry: BlockRegistry = Depends(get_registry),
) -> WorkflowValidateResponse:
    """Validate a workflow definition."""
    result = WorkflowValidator(registry).validate(request.workflow)
    errors, warnings = _serialize_validation(result)

    unavailable: list[str] = []
    missing: list[str] = []
    if request.check_blocks and result.valid:
        unavailable, missing = _check_blocks(request.workflow, registry)

    return WorkflowValidateResponse(
        valid=result.valid and not unavailable and not missing,
        errors=errors,
        warnings=warnings,
        unavailable_blocks=unavailable,
        missing_blocks=missing,
    )


@router.post(
    "/workflows/execute",
    response_model=WorkflowExecutionResult,
    summary="Execute a workflow",
    description="Validate and run a workflow definition, returning the aggregated result.",
)
async def execute_workflow(
    request: WorkflowExecuteRequest,
    orchestrator: WorkflowOrchestrator = Depends(get_orchestrator),
) -> WorkflowExecutionResult:
    """Run a workflow inline and return its result."""
    result = WorkflowValidator(orchestrator.registry).validate(request.workflow)
    if not result.valid:
        errors, warnings = _serialize_validation(result)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "message": "Workflow validation failed",
                "errors": [e.model_dump(by_alias=True) for e in errors],
                "warnings": [w.model_dump(by_alias=True) for w in warnings],
            },
        )

    definition = WorkflowDefinition.model_validate(request.workflow)
    context = ContextFactory.create(
        workflow_id=definition.workflow_id,
        mode=request.mode,
        variables=request.variables,
        secrets=request.secrets,
        settings=orchestrator.settings,
    )
    return await orchestrator.execute(definition, context, request.input)


@router.get(
    "/blocks",
    response_model=list[BlockMetadata],
    summary="List block types",
    description="List metadata of every registered block type, optionally filtered by category.",
)
async def list_blocks(
    category: Optional[str] = None,
    registry: BlockRegistry = Depends(get_registry),
) -> list[BlockMetadata]:
    """List registered blocks."""
    if category:
        return registry.get_by_category(category)
    return registry.get_all_metadata()


@router.get(
    "/blocks/{block_type}",
    response_model=BlockMetadata,
    summary="Get block type",
)
async def get_block(
    block_type: str,
    registry: BlockRegistry = Depends(get_registry),
) -> BlockMetadata:
    """Get metadata for a single block type."""
    metadata = registry.get_metadata(block_type)
    if metadata is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Block type not found: {block_type}",
        )
    return metadata


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Check the health status of the workflow engine.",
)
async def health_check(request: Request) -> HealthResponse:
    """Check health of the engine components."""
    from blockflow import __version__

    services = {}

    try:
        registry = request.app.state.registry
        services["registry"] = "healthy" if len(registry) > 0 else "empty"
    except AttributeError:
        services["registry"] = "unhealthy"

    try:
        orchestrator = request.app.state.orchestrator
        services["orchestrator"] = "healthy"
        services["active_executions"] = str(len(orchestrator.active_executions))
    except AttributeError:
        services["orchestrator"] = "unhealthy"

    overall = "healthy" if all(
        v != "unhealthy" for k, v in services.items() if k != "active_executions"
    ) else "degraded"

    return HealthResponse(status=overall, version=__version__, services=services)
