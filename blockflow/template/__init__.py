"""Template interpolation for node configuration."""

from blockflow.template.resolver import (
    TemplateReference,
    TemplateResolver,
    extract_variables,
    resolve_node_config,
)

__all__ = ["TemplateReference", "TemplateResolver", "extract_variables", "resolve_node_config"]
