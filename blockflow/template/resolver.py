"""
Sandboxed template resolution engine.

Resolves {{ path.to.value }} syntax safely without eval/exec.
"""

import json
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Optional, Union

if TYPE_CHECKING:
    from blockflow.context.context import ExecutionContext

# Distinguishes "not found" from a stored None
_UNRESOLVED = object()

NodeOutputLookup = Callable[[str], Any]


@dataclass
class TemplateReference:
    """Represents a parsed template reference."""

    full_match: str
    root: str
    path: list[Union[str, int]]  # Path to the value (e.g., ["data", "items", 0])
    start_pos: int
    end_pos: int


class TemplateResolver:
    """
    Resolves template expressions safely.

    Supports:
    - {{ input.field }} - Node input data
    - {{ variables.name }} / {{ var.name }} - Run variables
    - {{ secrets.api_key }} - Caller-supplied secrets
    - {{ env.REGION }} - Whitelisted environment variables
    - {{ nodes.node_id.path }} - Output of an already executed node
    - {{ workflow.id }} - Run metadata (id, executionId, mode)
    - {{ field }} - Anything else resolves against the node input

    Security:
    - No eval/exec
    - Path traversal only through dict keys and list indices

    References that cannot be resolved are left in place as literal text.
    """

    # Pattern to match {{ reference }}
    TEMPLATE_PATTERN = re.compile(r"\{\{\s*([^}]+?)\s*\}\}")

    # Pattern to validate reference format
    REFERENCE_PATTERN = re.compile(r"^[A-Za-z_][\w\-]*(?:\.[\w\-]+|\[\d+\])*$")

    SEGMENT_PATTERN = re.compile(r"\[(\d+)\]|([\w\-]+)")

    def __init__(
        self,
        input_data: Any = None,
        variables: Optional[dict[str, Any]] = None,
        secrets: Optional[dict[str, str]] = None,
        env_vars: Optional[dict[str, str]] = None,
        node_outputs: Union[dict[str, Any], NodeOutputLookup, None] = None,
        workflow: Optional[dict[str, Any]] = None,
    ):
        """
        Initialize resolver.

        Args:
            input_data: Input of the node whose config is being resolved
            variables: Run variables
            secrets: Run secrets
            env_vars: Safe environment variables (whitelist only)
            node_outputs: Mapping of node_id to output, or a lookup callable
            workflow: Run metadata exposed under ``workflow``
        """
        self.input_data = input_data
        self.variables = variables or {}
        self.secrets = secrets or {}
        self.env_vars = env_vars or {}
        self.workflow = workflow or {}
        if callable(node_outputs):
            self._node_output = node_outputs
        else:
            outputs = node_outputs or {}
            self._node_output = lambda node_id: outputs.get(node_id, _UNRESOLVED)

    @classmethod
    def from_context(cls, context: "ExecutionContext", input_data: Any = None) -> "TemplateResolver":
        """Build a resolver over a run's variables, secrets and node results."""

        def lookup(node_id: str) -> Any:
            if not context.has_node_result(node_id):
                return _UNRESOLVED
            return context.get_node_output(node_id)

        return cls(
            input_data=input_data,
            variables=context.variables,
            secrets=context.secrets,
            env_vars=context.env,
            node_outputs=lookup,
            workflow={
                "id": context.workflow_id,
                "executionId": context.execution_id,
                "mode": context.mode.value,
            },
        )

    def resolve(self, template: Any) -> Any:
        """
        Resolve all template expressions in a value.

        Handles strings, dicts, and lists recursively. Never mutates the input.
        """
        if isinstance(template, str):
            return self._resolve_string(template)
        elif isinstance(template, dict):
            return {k: self.resolve(v) for k, v in template.items()}
        elif isinstance(template, list):
            return [self.resolve(v) for v in template]
        else:
            return template

    def _resolve_string(self, template: str) -> Any:
        """Resolve template expressions in a string."""
        references = self.find_references(template)

        if not references:
            return template

        # A string that is exactly one reference keeps the referenced type
        if len(references) == 1 and references[0].full_match == template.strip():
            value = self._resolve_reference(references[0])
            return template if value is _UNRESOLVED else value

        result = template
        for ref in reversed(references):  # Reverse to maintain positions
            value = self._resolve_reference(ref)
            if value is _UNRESOLVED:
                continue
            result = result[:ref.start_pos] + self._format_value(value) + result[ref.end_pos:]

        return result

    def find_references(self, template: str) -> list[TemplateReference]:
        """Find all well-formed template references in a string."""
        references = []

        for match in self.TEMPLATE_PATTERN.finditer(template):
            parsed = self._parse_reference(match.group(1).strip())
            if parsed:
                references.append(TemplateReference(
                    full_match=match.group(0),
                    root=parsed[0],
                    path=parsed[1],
                    start_pos=match.start(),
                    end_pos=match.end(),
                ))

        return references

    def _parse_reference(self, reference: str) -> Optional[tuple[str, list[Union[str, int]]]]:
        """
        Parse a reference string into (root, path).

        Examples:
            "input.user_id" -> ("input", ["user_id"])
            "nodes.fetch.items[0].id" -> ("nodes", ["fetch", "items", 0, "id"])
        """
        if not self.REFERENCE_PATTERN.match(reference):
            return None

        segments: list[Union[str, int]] = []
        for index, name in self.SEGMENT_PATTERN.findall(reference):
            segments.append(int(index) if index else name)

        return str(segments[0]), segments[1:]

    def _resolve_reference(self, ref: TemplateReference) -> Any:
        """Resolve a single reference to its value, or _UNRESOLVED."""
        root, path = ref.root, ref.path

        if root == "input":
            return self._navigate_path(self.input_data, path)
        if root in ("variables", "var"):
            return self._navigate_path(self.variables, path)
        if root == "secrets":
            return self._navigate_path(self.secrets, path)
        if root == "env":
            return self._navigate_path(self.env_vars, path)
        if root == "workflow":
            return self._navigate_path(self.workflow, path)
        if root == "nodes":
            if not path:
                return _UNRESOLVED
            output = self._node_output(str(path[0]))
            if output is _UNRESOLVED:
                return _UNRESOLVED
            return self._navigate_path(output, path[1:])

        # Bare paths resolve against the node input
        return self._navigate_path(self.input_data, [root, *path])

    def _navigate_path(self, value: Any, path: list) -> Any:
        """
        Navigate a path through nested data structures.

        Only dict keys and list indices are followed; attribute access is never
        used, so object methods and private attributes stay unreachable.
        """
        current = value

        for key in path:
            if isinstance(key, int):
                if isinstance(current, list) and 0 <= key < len(current):
                    current = current[key]
                else:
                    return _UNRESOLVED
            elif isinstance(current, dict) and key in current:
                current = current[key]
            elif isinstance(current, list) and key.isdigit() and int(key) < len(current):
                current = current[int(key)]
            else:
                return _UNRESOLVED

        return current

    @staticmethod
    def _format_value(value: Any) -> str:
        """Format a value for embedding in a larger string."""
        if value is None:
            return ""
        if isinstance(value, (dict, list)):
            return json.dumps(value, default=str)
        if isinstance(value, bool):
            return "true" if value else "false"
        return str(value)


def extract_variables(template: str) -> list[str]:
    """List the raw expressions referenced by a template string."""
    return [m.group(1).strip() for m in TemplateResolver.TEMPLATE_PATTERN.finditer(template)]


def resolve_node_config(
    node_config: dict[str, Any],
    context: "ExecutionContext",
    input_data: Any = None,
) -> dict[str, Any]:
    """
    Resolve all templates in a node's configuration.

    Convenience function for the orchestrator.
    """
    return TemplateResolver.from_context(context, input_data).resolve(node_config)
