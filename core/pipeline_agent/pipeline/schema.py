"""Pipeline node schemas and JSON-schema validation of pipeline candidates.

A pipeline is a mapping of step name to step definition::

    {
        "goto1": {
            "node": "page::goto",
            "inputs": {"url": {"type": "constant", "value": "https://example.com"}},
            "outputs": {},
            "dependsOn": [],
        }
    }

Inputs are either constants or references to a variable published by an
earlier step's ``outputs`` mapping (output name -> variable name).
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from typing import Any

import jsonschema
import jsonschema.exceptions

logger = logging.getLogger(__name__)


def _value_schema(ref_type: str) -> dict[str, Any]:
    if ref_type == "any":
        return {}
    return {"type": ref_type}


def input_schema(ref_type: str, description: str = "") -> dict[str, Any]:
    """Schema of one input slot: a typed constant or a variable reference."""
    schema: dict[str, Any] = {
        "x-ref-type": ref_type,
        "anyOf": [
            {
                "type": "object",
                "properties": {
                    "type": {"const": "constant"},
                    "value": _value_schema(ref_type),
                },
                "required": ["type", "value"],
                "additionalProperties": False,
            },
            {
                "type": "object",
                "properties": {
                    "type": {"const": "reference"},
                    "name": {"type": "string", "minLength": 1},
                },
                "required": ["type", "name"],
                "additionalProperties": False,
            },
        ],
    }
    if description:
        schema["description"] = description
    return schema


def output_schema(ref_type: str, description: str = "") -> dict[str, Any]:
    """Schema of one output slot: the variable name the value is published as."""
    schema: dict[str, Any] = {"type": "string", "minLength": 1, "x-ref-type": ref_type}
    if description:
        schema["description"] = description
    return schema


@dataclass
class NodeDefinition:
    """A pipeline node type: its inputs and outputs by value type."""

    node_type: str
    description: str = ""
    inputs: dict[str, str] = field(default_factory=dict)
    outputs: dict[str, str] = field(default_factory=dict)
    required_inputs: list[str] | None = None
    # functions::call style nodes publish arbitrary output names
    open_outputs: bool = False

    def to_schema(self) -> dict[str, Any]:
        required = self.required_inputs if self.required_inputs is not None else list(self.inputs)
        outputs: dict[str, Any] = {
            "type": "object",
            "properties": {name: output_schema(t) for name, t in self.outputs.items()},
        }
        if self.open_outputs:
            outputs["additionalProperties"] = output_schema("any")
        else:
            outputs["additionalProperties"] = False
        return {
            "type": "object",
            "description": self.description,
            "properties": {
                "node": {"const": self.node_type},
                "inputs": {
                    "type": "object",
                    "properties": {name: input_schema(t) for name, t in self.inputs.items()},
                    "required": required,
                    "additionalProperties": False,
                },
                "outputs": outputs,
                "dependsOn": {"type": "array", "items": {"type": "string"}},
            },
            "required": ["node", "inputs", "outputs", "dependsOn"],
            "additionalProperties": False,
        }


DEFAULT_NODES: tuple[NodeDefinition, ...] = (
    NodeDefinition("page::goto", "Navigate to a URL", {"url": "string", "waitUntil": "string"}, {}, ["url"]),
    NodeDefinition("page::click", "Click the element matching a selector", {"selector": "string"}),
    NodeDefinition(
        "page::type",
        "Type text into the element matching a selector",
        {"selector": "string", "text": "string"},
    ),
    NodeDefinition("page::url", "Read the current page URL", {}, {"url": "string"}),
    NodeDefinition("page::title", "Read the current page title", {}, {"title": "string"}),
    NodeDefinition(
        "page::querySelector",
        "Read a single element matching a selector",
        {"selector": "string"},
        {"element": "object"},
    ),
    NodeDefinition(
        "page::querySelectorAll",
        "Read every element matching a selector",
        {"selector": "string"},
        {"elements": "array"},
    ),
    NodeDefinition(
        "functions::call",
        "Call a reusable function by identifier",
        {"identifier": "string", "args": "object"},
        {"result": "any"},
        ["identifier"],
        open_outputs=True,
    ),
)


class NodeCatalog:
    """Built-in node types known to the pipeline schema."""

    def __init__(self, nodes: list[NodeDefinition] | tuple[NodeDefinition, ...] = DEFAULT_NODES):
        self._nodes: dict[str, NodeDefinition] = {n.node_type: n for n in nodes}

    def __contains__(self, node_type: str) -> bool:
        return node_type in self._nodes

    @property
    def node_types(self) -> list[str]:
        return list(self._nodes)

    def get(self, node_type: str) -> NodeDefinition | None:
        return self._nodes.get(node_type)

    def get_schema(self, node_type: str) -> dict[str, Any] | None:
        node = self._nodes.get(node_type)
        return node.to_schema() if node else None

    def pipeline_schema(self) -> dict[str, Any]:
        """JSON schema of a whole pipeline (step name -> any known node)."""
        return {
            "type": "object",
            "additionalProperties": {
                "anyOf": [node.to_schema() for node in self._nodes.values()],
            },
        }

    def format_nodes(self) -> str:
        """Markdown list of node types for the system prompt."""
        lines = []
        for node in self._nodes.values():
            io = []
            if node.inputs:
                io.append(
                    "**Inputs**: `{ "
                    + ", ".join(f"{k}: {v}" for k, v in node.inputs.items())
                    + " }`"
                )
            if node.outputs:
                io.append(
                    "**Outputs**: `{ "
                    + ", ".join(f"{k}: {v}" for k, v in node.outputs.items())
                    + " }`"
                )
            detail = f". {'. '.join(io)}" if io else ""
            lines.append(f"- `{node.node_type}` → {node.description}{detail}")
        return "\n".join(lines)


# Generic step shape used in tool argument schemas; node-specific checks
# happen in the validator, not in the model's function declaration.
GENERIC_STEP_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "node": {"type": "string", "description": "Node type, e.g. 'page::goto'"},
        "inputs": {"type": "object"},
        "outputs": {"type": "object"},
        "dependsOn": {"type": "array", "items": {"type": "string"}},
    },
    "required": ["node", "inputs", "outputs", "dependsOn"],
}


def create_pipeline_tool_schema() -> dict[str, Any]:
    """Argument schema for tools that receive a pipeline. Exposes no ``$defs``."""
    return {
        "type": "object",
        "properties": {
            "pipeline": {
                "type": "object",
                "properties": {},
                "additionalProperties": copy.deepcopy(GENERIC_STEP_SCHEMA),
            },
            "label": {
                "type": "string",
                "description": "Optional label to describe the attempt.",
            },
            "final": {
                "type": "boolean",
                "description": "Set true to mark the pipeline/output as ready for delivery.",
            },
            "reason": {
                "type": "string",
                "description": "Optional reason or summary for the action.",
            },
        },
        "required": ["pipeline"],
        "additionalProperties": False,
    }


@dataclass
class ValidationResult:
    """Result of validating a pipeline candidate."""

    success: bool
    errors: list[str]

    @property
    def error(self) -> str:
        return "; ".join(self.errors) if self.errors else ""


class SchemaValidator:
    """Validates pipeline candidates against a catalog's pipeline schema."""

    def __init__(self, catalog: NodeCatalog | None = None, schema: dict[str, Any] | None = None):
        self.schema = schema if schema is not None else (catalog or NodeCatalog()).pipeline_schema()
        jsonschema.Draft7Validator.check_schema(self.schema)
        self._validator = jsonschema.Draft7Validator(self.schema)

    def validate(self, candidate: Any) -> ValidationResult:
        errors = []
        found = sorted(self._validator.iter_errors(candidate), key=lambda e: [str(p) for p in e.path])
        for error in found:
            path = ".".join(str(p) for p in error.path) if error.path else "root"
            errors.append(f"{path}: {error.message}")
            # anyOf failures hide the useful detail in the closest sub-error
            best = jsonschema.exceptions.best_match(error.context or [])
            if best is not None:
                sub_path = ".".join(str(p) for p in best.absolute_path) or "root"
                errors.append(f"{sub_path}: {best.message}")
        if errors:
            logger.debug("Candidate failed schema validation: %s", errors)
        return ValidationResult(success=not errors, errors=errors)
