"""Two-stage generation: analysis output shape and structured-output helpers.

The analysis stage browses the live page and reports the selectors the
pipeline will need; the generation stage turns that report into a
pipeline without touching the browser again.
"""

from __future__ import annotations

import copy
import json
import logging
from dataclasses import dataclass, field
from typing import Any

from pipeline_agent.agent.conversation import Message
from pipeline_agent.errors import ModelOutputError
from pipeline_agent.pipeline.schema import GENERIC_STEP_SCHEMA, SchemaValidator

logger = logging.getLogger(__name__)

SELECTOR_STATES = ("guess", "tested-valid", "tested-fail")

ANALYZE_OUTPUT_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "metadata": {
            "description": "This array should include information about non-obvious part of the analysis",
            "type": "array",
            "items": {"type": "string"},
        },
        "selectors": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "selector": {"type": "string"},
                    "locatedAtUrl": {"type": "string"},
                    "description": {"type": "string"},
                    "type": {"anyOf": [{"type": "string", "const": state} for state in SELECTOR_STATES]},
                },
                "required": ["selector", "locatedAtUrl", "description", "type"],
                "additionalProperties": False,
            },
        },
    },
    "required": ["selectors", "metadata"],
    "additionalProperties": False,
}


def json_schema_format(name: str, schema: dict[str, Any], strict: bool = True) -> dict[str, Any]:
    """``response_format`` constraining the model's text to *schema*."""
    return {
        "type": "json_schema",
        "json_schema": {"name": name, "schema": copy.deepcopy(schema), "strict": strict},
    }


def analysis_response_format() -> dict[str, Any]:
    return json_schema_format("analysis", ANALYZE_OUTPUT_SCHEMA)


def pipeline_response_format() -> dict[str, Any]:
    # node-specific checks run in the validator after the fact
    schema = {"type": "object", "additionalProperties": GENERIC_STEP_SCHEMA}
    return json_schema_format("pipeline", schema, strict=False)


def parse_structured_output(text: str | None, validator: SchemaValidator) -> Any:
    """Decode *text* as JSON and check it against *validator*.

    Raises ``ModelOutputError`` carrying the decode or validation errors.
    """
    try:
        value = json.loads(text or "")
    except json.JSONDecodeError as e:
        raise ModelOutputError("Model output is not valid JSON", [str(e)]) from e
    validation = validator.validate(value)
    if not validation.success:
        raise ModelOutputError("Model output does not match the requested schema", validation.errors)
    return value


@dataclass
class AnalysisResult:
    """Outcome of the analysis stage.

    ``analysis`` is ``None`` when the stage ended without a usable report
    (vetoed, round bound hit, or output that failed to parse or validate).
    """

    prompt: str
    history: list[Message]
    analysis: dict[str, Any] | None = None
    stop_reason: str | None = None
    errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.analysis is not None
