"""
Workflow definition validation.

Checks run against the raw JSON form of a definition so that a malformed
document is reported, not raised. Every check runs on whatever parts of the
document are present; a single pass reports every problem found.
"""

import copy
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Iterator, Mapping, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from blockflow.core.dag import WorkflowGraph
from blockflow.core.errors import WorkflowValidationError
from blockflow.core.models import BlockType, WorkflowDefinition, block_category

if TYPE_CHECKING:
    from blockflow.blocks.registry import BlockRegistry

logger = logging.getLogger(__name__)

VALID_SCHEMA_TYPES = {"object", "array", "string", "number", "integer", "boolean", "null"}

# JSON pointers into the schema itself rather than the workflow schema table
_LOCAL_REF_PREFIXES = ("#/definitions/", "#/$defs/")


@dataclass
class ValidationError:
    """A problem that prevents the workflow from running."""

    type: str  # schema | dag | connection | config
    message: str
    node_id: Optional[str] = None
    path: Optional[str] = None


@dataclass
class ValidationWarning:
    """An advisory finding; the workflow may still run."""

    type: str  # performance | cost | best_practice
    message: str
    node_id: Optional[str] = None
    suggestion: Optional[str] = None


@dataclass
class ValidationResult:
    """Outcome of validating a workflow definition."""

    valid: bool = True
    errors: list[ValidationError] = field(default_factory=list)
    warnings: list[ValidationWarning] = field(default_factory=list)

    def add_error(
        self,
        type: str,
        message: str,
        node_id: Optional[str] = None,
        path: Optional[str] = None,
    ) -> None:
        """Add a validation error."""
        self.errors.append(ValidationError(type, message, node_id, path))
        self.valid = False

    def add_warning(
        self,
        type: str,
        message: str,
        node_id: Optional[str] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """Add a validation warning."""
        self.warnings.append(ValidationWarning(type, message, node_id, suggestion))

    def raise_for_errors(self) -> None:
        """Raise WorkflowValidationError if any error was recorded."""
        if not self.valid:
            raise WorkflowValidationError(self)


class WorkflowValidator:
    """
    Validates workflow definitions.

    Covers document structure, nodes, edges, DAG shape (cycles and
    reachability), schema references and advisory configuration checks.
    When a registry is given, node types are checked against it; otherwise
    against the built-in block categories.
    """

    def __init__(self, registry: Optional["BlockRegistry"] = None):
        self.registry = registry

    def validate(self, definition: Union[WorkflowDefinition, Mapping[str, Any]]) -> ValidationResult:
        """
        Validate a definition.

        Args:
            definition: A WorkflowDefinition or its JSON document form

        Returns:
            ValidationResult with every error and warning found
        """
        result = ValidationResult()

        if isinstance(definition, WorkflowDefinition):
            doc = definition.model_dump(mode="json", by_alias=True)
        elif isinstance(definition, Mapping):
            doc = dict(definition)
        else:
            result.add_error("schema", "Workflow definition must be an object")
            return result

        self._validate_structure(doc, result)

        nodes = doc.get("nodes") if isinstance(doc.get("nodes"), list) else []
        edges = doc.get("edges") if isinstance(doc.get("edges"), list) else []
        node_entries = [n for n in nodes if isinstance(n, Mapping)]
        edge_entries = [e for e in edges if isinstance(e, Mapping)]

        self._validate_nodes(nodes, result)
        self._validate_edges(edges, node_entries, result)
        self._validate_dag(node_entries, edge_entries, result)
        self._validate_schemas(doc, node_entries, result)
        self._validate_configurations(doc, node_entries, result)

        # The raw checks passed; make sure the document also parses
        if result.valid and not isinstance(definition, WorkflowDefinition):
            self._validate_model(doc, result)

        logger.debug(
            f"Validated workflow {doc.get('workflowId')}: "
            f"{len(result.errors)} errors, {len(result.warnings)} warnings"
        )
        return result

    # ==================== Structure ====================

    def _validate_structure(self, doc: dict[str, Any], result: ValidationResult) -> None:
        if not _non_empty_str(_get(doc, "workflowId", "workflow_id")):
            result.add_error("schema", "Missing required field: workflowId", path="workflowId")

        if not _non_empty_str(doc.get("name")):
            result.add_error("schema", "Missing required field: name", path="name")

        version = doc.get("version")
        if isinstance(version, bool) or not (
            isinstance(version, int) or _non_empty_str(version)
        ):
            result.add_error(
                "schema",
                "Missing or invalid field: version (must be number or string)",
                path="version",
            )

        if not isinstance(doc.get("nodes"), list):
            result.add_error("schema", "Missing or invalid field: nodes (must be array)", path="nodes")

        if not isinstance(doc.get("edges"), list):
            result.add_error("schema", "Missing or invalid field: edges (must be array)", path="edges")

        metadata = doc.get("metadata")
        if not isinstance(metadata, Mapping):
            result.add_error("schema", "Missing required field: metadata", path="metadata")
        elif not _get(metadata, "createdAt", "created_at"):
            result.add_error(
                "schema", "Missing required field: metadata.createdAt", path="metadata.createdAt"
            )

        globals_ = doc.get("globals")
        if globals_ is not None and not isinstance(globals_, Mapping):
            result.add_error("schema", "Invalid field: globals (must be object)", path="globals")

    # ==================== Nodes ====================

    def _validate_nodes(self, nodes: list[Any], result: ValidationResult) -> None:
        seen: set[str] = set()

        for i, node in enumerate(nodes):
            node_path = f"nodes[{i}]"

            if not isinstance(node, Mapping):
                result.add_error("schema", "Invalid node definition (must be object)", path=node_path)
                continue

            node_id = node.get("id")
            if not _non_empty_str(node_id):
                result.add_error("schema", "Invalid or missing node ID", path=f"{node_path}.id")
                node_id = None
            elif node_id in seen:
                result.add_error("schema", f"Duplicate node ID: {node_id}", node_id, node_path)
            else:
                seen.add(node_id)

            block_type = node.get("type")
            if not _non_empty_str(block_type):
                result.add_error("schema", "Missing node type", node_id, f"{node_path}.type")
            else:
                self._check_block_type(block_type, node_id, result)

            if not _non_empty_str(node.get("name")):
                result.add_error("schema", "Invalid or missing node name", node_id, f"{node_path}.name")

            if not isinstance(node.get("config"), Mapping):
                result.add_error("config", "Invalid or missing node config", node_id, f"{node_path}.config")

            for key, label in (("inputSchema", "input"), ("outputSchema", "output")):
                schema = _get(node, key, _snake(key))
                if schema is not None and not is_valid_json_schema(schema):
                    result.add_error("schema", f"Invalid {label} schema", node_id, f"{node_path}.{key}")

            timeout = node.get("timeout")
            if timeout is not None and (not _is_number(timeout) or timeout <= 0):
                result.add_error(
                    "config", "Invalid timeout (must be positive number)", node_id, f"{node_path}.timeout"
                )

            retry = _get(node, "retryConfig", "retry_config")
            if retry is not None:
                self._validate_retry(retry, node_id, f"{node_path}.retryConfig", result)

            for flag in ("isInput", "isOutput"):
                value = _get(node, flag, _snake(flag))
                if value is not None and not isinstance(value, bool):
                    result.add_error("schema", f"Invalid {flag} (must be boolean)", node_id, f"{node_path}.{flag}")

    def _check_block_type(self, block_type: str, node_id: Optional[str], result: ValidationResult) -> None:
        if self.registry is not None:
            if not self.registry.has(block_type):
                result.add_warning(
                    "best_practice",
                    f"Unknown block type: {block_type}. Block not registered in registry.",
                    node_id,
                    "Register the block type before executing this workflow",
                )
            return

        if block_category(block_type) not in {t.value for t in BlockType}:
            result.add_warning(
                "best_practice",
                f"Unknown block type: {block_type}. Using custom type.",
                node_id,
                "Ensure custom block is registered in BlockRegistry",
            )

    @staticmethod
    def _validate_retry(retry: Any, node_id: Optional[str], path: str, result: ValidationResult) -> None:
        if not isinstance(retry, Mapping):
            result.add_error("config", "Invalid retryConfig (must be object)", node_id, path)
            return

        max_retries = _get(retry, "maxRetries", "max_retries")
        if max_retries is not None and (
            isinstance(max_retries, bool) or not isinstance(max_retries, int) or max_retries < 0
        ):
            result.add_error("config", "Invalid retryConfig.maxRetries", node_id, f"{path}.maxRetries")

        multiplier = _get(retry, "backoffMultiplier", "backoff_multiplier")
        if multiplier is not None and (not _is_number(multiplier) or multiplier < 1):
            result.add_error(
                "config",
                "Invalid retryConfig.backoffMultiplier (must be >= 1)",
                node_id,
                f"{path}.backoffMultiplier",
            )

        delay = _get(retry, "initialDelay", "initial_delay")
        if delay is not None and (not _is_number(delay) or delay < 0):
            result.add_error(
                "config", "Invalid retryConfig.initialDelay (must be >= 0)", node_id, f"{path}.initialDelay"
            )

    # ==================== Edges ====================

    def _validate_edges(
        self,
        edges: list[Any],
        nodes: list[Mapping[str, Any]],
        result: ValidationResult,
    ) -> None:
        node_ids = {n.get("id") for n in nodes if _non_empty_str(n.get("id"))}
        seen: set[str] = set()

        for i, edge in enumerate(edges):
            edge_path = f"edges[{i}]"

            if not isinstance(edge, Mapping):
                result.add_error("schema", "Invalid edge definition (must be object)", path=edge_path)
                continue

            edge_id = edge.get("id")
            if not _non_empty_str(edge_id):
                result.add_error("schema", "Invalid or missing edge ID", path=f"{edge_path}.id")
            elif edge_id in seen:
                result.add_error("schema", f"Duplicate edge ID: {edge_id}", path=edge_path)
            else:
                seen.add(edge_id)

            source = edge.get("source")
            target = edge.get("target")

            if not source:
                result.add_error("connection", "Missing edge source", path=f"{edge_path}.source")
            elif not isinstance(source, str):
                result.add_error("connection", "Invalid edge source (must be string)", path=f"{edge_path}.source")
            elif source not in node_ids:
                result.add_error("connection", f"Source node not found: {source}", path=f"{edge_path}.source")

            if not target:
                result.add_error("connection", "Missing edge target", path=f"{edge_path}.target")
            elif not isinstance(target, str):
                result.add_error("connection", "Invalid edge target (must be string)", path=f"{edge_path}.target")
            elif target not in node_ids:
                result.add_error("connection", f"Target node not found: {target}", path=f"{edge_path}.target")

            if _non_empty_str(source) and source == target:
                result.add_error("dag", "Self-loops are not allowed", source, edge_path)

            for port in ("sourcePort", "targetPort"):
                value = _get(edge, port, _snake(port))
                if value is not None and not isinstance(value, str):
                    result.add_error("connection", f"Invalid {port} (must be string)", path=f"{edge_path}.{port}")

            condition = edge.get("condition")
            if condition is not None and not (isinstance(condition, Mapping) and condition.get("operator")):
                result.add_error(
                    "config", "Invalid edge condition (operator required)", path=f"{edge_path}.condition"
                )

    # ==================== DAG ====================

    def _validate_dag(
        self,
        nodes: list[Mapping[str, Any]],
        edges: list[Mapping[str, Any]],
        result: ValidationResult,
    ) -> None:
        node_ids = [n.get("id") for n in nodes if _non_empty_str(n.get("id"))]
        graph = WorkflowGraph(
            node_ids,
            (
                (e.get("source"), e.get("target"))
                for e in edges
                if _non_empty_str(e.get("source"))
                and _non_empty_str(e.get("target"))
                and e.get("source") != e.get("target")
            ),
        )

        for cycle in graph.find_cycles():
            result.add_error("dag", f"Cycle detected: {' → '.join(cycle)}", path="edges")

        input_ids = [
            n.get("id") for n in nodes
            if _non_empty_str(n.get("id")) and _is_input_node(n)
        ]
        reachable = graph.reachable_from(input_ids or graph.roots())

        for node_id in node_ids:
            if node_id not in reachable:
                result.add_error(
                    "dag", "Node is unreachable from any input node", node_id, f"nodes.{node_id}"
                )

    # ==================== Schemas ====================

    def _validate_schemas(
        self,
        doc: Mapping[str, Any],
        nodes: list[Mapping[str, Any]],
        result: ValidationResult,
    ) -> None:
        table = doc.get("schemas")
        if table is not None and not isinstance(table, Mapping):
            result.add_error("schema", "Invalid field: schemas (must be object)", path="schemas")
            table = None

        for schema_id, schema in (table or {}).items():
            if not is_valid_json_schema(schema):
                result.add_error("schema", f"Invalid schema definition: {schema_id}", path=f"schemas.{schema_id}")

        for node in nodes:
            node_id = node.get("id")
            for key in ("inputSchema", "outputSchema"):
                for ref in find_schema_refs(_get(node, key, _snake(key))):
                    if ref.startswith(_LOCAL_REF_PREFIXES):
                        continue
                    if not table or schema_ref_id(ref) not in table:
                        result.add_error(
                            "schema", f"Schema reference not found: {ref}", node_id, f"nodes.{node_id}.{key}"
                        )

    # ==================== Advisory ====================

    def _validate_configurations(
        self,
        doc: Mapping[str, Any],
        nodes: list[Mapping[str, Any]],
        result: ValidationResult,
    ) -> None:
        inputs = [n for n in nodes if _is_input_node(n)]
        if not inputs:
            result.add_warning(
                "best_practice",
                "No input blocks found. Workflow may not have data source.",
                suggestion="Add an input block to define the data source",
            )
        elif len(inputs) > 1:
            result.add_warning(
                "best_practice",
                f"Multiple input blocks found ({len(inputs)}). Ensure this is intentional.",
                suggestion="Consider using merge block to combine multiple sources",
            )

        outputs = [
            n for n in nodes
            if _get(n, "isOutput", "is_output") is True or _category(n) == BlockType.OUTPUT.value
        ]
        if not outputs:
            result.add_warning(
                "best_practice",
                "No output blocks found. Workflow may not produce results.",
                suggestion="Add an output block to store or return results",
            )

        ai_blocks = [n for n in nodes if _category(n) == BlockType.AI.value]
        if ai_blocks:
            result.add_warning(
                "cost",
                f"{len(ai_blocks)} AI block(s) detected. This may incur significant costs.",
                suggestion="Consider using cost limits and batch sizes to control costs",
            )

        for node in nodes:
            if _category(node) != BlockType.API.value:
                continue
            config = node.get("config") if isinstance(node.get("config"), Mapping) else {}
            if config.get("batchMode") is False and config.get("batchSize") is None:
                result.add_warning(
                    "performance",
                    "API block with batch mode disabled may be slow for large datasets.",
                    node.get("id"),
                    "Consider enabling batch mode or setting appropriate batch size",
                )

        globals_ = doc.get("globals") if isinstance(doc.get("globals"), Mapping) else {}
        if not globals_.get("timeout"):
            result.add_warning(
                "best_practice",
                "No global timeout configured. Workflows may run indefinitely.",
                suggestion="Set a global timeout in workflow.globals.timeout",
            )
        if not _get(globals_, "retryPolicy", "retry_policy"):
            result.add_warning(
                "best_practice",
                "No global retry policy configured. Transient failures may fail the workflow.",
                suggestion="Set a retry policy in workflow.globals.retryPolicy",
            )

    # ==================== Model ====================

    @staticmethod
    def _validate_model(doc: dict[str, Any], result: ValidationResult) -> None:
        try:
            WorkflowDefinition.model_validate(doc)
        except PydanticValidationError as e:
            for err in e.errors():
                path = ".".join(str(p) for p in err["loc"])
                result.add_error("schema", f"{path}: {err['msg']}", path=path or None)


def validate_workflow(
    definition: Union[WorkflowDefinition, Mapping[str, Any]],
    registry: Optional["BlockRegistry"] = None,
) -> ValidationResult:
    """Validate a definition with a one-off validator."""
    return WorkflowValidator(registry).validate(definition)


def is_valid_json_schema(schema: Any) -> bool:
    """
    Shallow sanity check of a declared schema.

    A schema must be an object naming a recognised primitive type (or a list of
    them), or be a ``$ref``. Object properties and array items must be objects.
    """
    if not isinstance(schema, Mapping):
        return False

    if "$ref" in schema and "type" not in schema:
        return isinstance(schema["$ref"], str)

    schema_type = schema.get("type")
    types = schema_type if isinstance(schema_type, list) else [schema_type]
    if not types or not all(t in VALID_SCHEMA_TYPES for t in types):
        return False

    if "object" in types and "properties" in schema and not isinstance(schema["properties"], Mapping):
        return False
    if "array" in types and "items" in schema and not isinstance(schema["items"], (Mapping, bool)):
        return False

    return True


def find_schema_refs(schema: Any) -> list[str]:
    """Collect every ``$ref`` string in a schema, depth first."""
    return list(_iter_refs(schema))


def _iter_refs(value: Any) -> Iterator[str]:
    stack = [value]
    while stack:
        current = stack.pop()
        if isinstance(current, Mapping):
            ref = current.get("$ref")
            if isinstance(ref, str):
                yield ref
            stack.extend(reversed([v for v in current.values() if isinstance(v, (Mapping, list))]))
        elif isinstance(current, list):
            stack.extend(reversed([v for v in current if isinstance(v, (Mapping, list))]))


def schema_ref_id(ref: str) -> str:
    """Table key for a reference: ``#/Lead`` and ``#/schemas/Lead`` both map to ``Lead``."""
    key = ref.lstrip("#").lstrip("/")
    if key.startswith("schemas/"):
        key = key[len("schemas/"):]
    return key


def resolve_schema_refs(
    schema: Optional[dict[str, Any]],
    table: Optional[Mapping[str, Any]],
) -> Optional[dict[str, Any]]:
    """
    Inline references into the workflow schema table.

    Local pointers (``#/definitions/...``, ``#/$defs/...``) and references that
    are already being expanded are left untouched. Returns a new schema.
    """
    if schema is None or not table:
        return schema

    def expand(value: Any, active: frozenset[str]) -> Any:
        if isinstance(value, Mapping):
            ref = value.get("$ref")
            if isinstance(ref, str) and not ref.startswith(_LOCAL_REF_PREFIXES):
                key = schema_ref_id(ref)
                if key in table and key not in active:
                    siblings = {k: v for k, v in value.items() if k != "$ref"}
                    return {**expand(table[key], active | {key}), **expand(siblings, active)}
            return {k: expand(v, active) for k, v in value.items()}
        if isinstance(value, list):
            return [expand(v, active) for v in value]
        return copy.deepcopy(value)

    return expand(schema, frozenset())


def _get(mapping: Mapping[str, Any], camel: str, snake: str) -> Any:
    """Read a key in either transport spelling."""
    value = mapping.get(camel)
    return mapping.get(snake) if value is None else value


def _snake(name: str) -> str:
    return "".join(f"_{c.lower()}" if c.isupper() else c for c in name)


def _non_empty_str(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _category(node: Mapping[str, Any]) -> str:
    block_type = node.get("type")
    return block_category(block_type) if isinstance(block_type, str) else ""


def _is_input_node(node: Mapping[str, Any]) -> bool:
    return _get(node, "isInput", "is_input") is True or _category(node) == BlockType.INPUT.value
