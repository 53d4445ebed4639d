"""Workflow definition validation."""

from blockflow.validation.validator import (
    ValidationError,
    ValidationResult,
    ValidationWarning,
    WorkflowValidator,
    find_schema_refs,
    is_valid_json_schema,
    resolve_schema_refs,
    schema_ref_id,
    validate_workflow,
)

__all__ = [
    "ValidationError",
    "ValidationResult",
    "ValidationWarning",
    "WorkflowValidator",
    "find_schema_refs",
    "is_valid_json_schema",
    "resolve_schema_refs",
    "schema_ref_id",
    "validate_workflow",
]
