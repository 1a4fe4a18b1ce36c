"""Function catalog: reusable functions callable from a pipeline via ``functions::call``."""

from __future__ import annotations

import json
import re
from dataclasses import asdict, dataclass, field
from typing import Any, Protocol, runtime_checkable


@dataclass
class FunctionParameter:
    name: str
    ref_type: str
    description: str = ""


@dataclass
class FunctionDescriptor:
    namespace: str
    name: str
    inputs: list[FunctionParameter] = field(default_factory=list)
    outputs: list[FunctionParameter] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def identifier(self) -> str:
        return f"{self.namespace}::{self.name}"

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["identifier"] = self.identifier
        return data


@runtime_checkable
class FunctionCatalog(Protocol):
    """Optional external collaborator listing reusable functions."""

    async def list_namespaces(self) -> list[str]: ...

    async def list_functions(self, namespace: str) -> list[FunctionDescriptor]: ...

    async def get_function(self, namespace: str, name: str) -> FunctionDescriptor | None: ...


class InMemoryFunctionCatalog:
    """FunctionCatalog over a fixed list of descriptors."""

    def __init__(self, functions: list[FunctionDescriptor] | None = None):
        self._functions: dict[tuple[str, str], FunctionDescriptor] = {
            (f.namespace, f.name): f for f in functions or []
        }

    async def list_namespaces(self) -> list[str]:
        return sorted({namespace for namespace, _ in self._functions})

    async def list_functions(self, namespace: str) -> list[FunctionDescriptor]:
        return [f for (ns, _), f in self._functions.items() if ns == namespace]

    async def get_function(self, namespace: str, name: str) -> FunctionDescriptor | None:
        return self._functions.get((namespace, name))


# ---------------------------------------------------------------------------
# Prompt sections
# ---------------------------------------------------------------------------


@dataclass
class FunctionPromptSections:
    index: str
    example: str | None = None


def _format_parameters(parameters: list[FunctionParameter]) -> str | None:
    if not parameters:
        return None
    entries = []
    for param in parameters:
        suffix = f" ({param.description})" if param.description else ""
        entries.append(f"{param.name}: {param.ref_type}{suffix}")
    return ", ".join(entries)


def _format_descriptor(fn: FunctionDescriptor) -> str:
    detail_parts = [
        part for part in (fn.metadata.get("title"), fn.metadata.get("description")) if part
    ]

    io_parts = []
    inputs = _format_parameters(fn.inputs)
    if inputs:
        io_parts.append(f"**Inputs**: `{{ {inputs} }}`")
    outputs = _format_parameters(fn.outputs)
    if outputs:
        io_parts.append(f"**Outputs**: `{{ {outputs} }}`")
    if io_parts:
        detail_parts.append(". ".join(io_parts))

    detail = f" - {'. '.join(detail_parts)}" if detail_parts else ""
    return f"- `{fn.identifier}`{detail}"


def _sanitize_segment(value: str) -> str:
    sanitized = re.sub(r"[^a-zA-Z0-9]+", "_", value).strip("_")
    return sanitized or "function"


def _build_example(fn: FunctionDescriptor) -> str:
    step = f"call_{_sanitize_segment(fn.namespace)}_{_sanitize_segment(fn.name)}"
    outputs = {out.name: f"{step}_{_sanitize_segment(out.name)}" for out in fn.outputs}
    outputs.setdefault("result", f"{step}_result")

    example = {
        step: {
            "node": "functions::call",
            "inputs": {
                "identifier": {"type": "constant", "value": fn.identifier},
                "args": {
                    "type": "constant",
                    "value": {param.name: f"<{param.ref_type}>" for param in fn.inputs},
                },
            },
            "outputs": outputs,
            "dependsOn": [],
        }
    }
    return (
        "## Function call example\n"
        "Use `functions::call` to execute a reusable function.\n"
        f"```json\n{json.dumps(example, indent=2)}\n```"
    )


async def build_function_prompt_sections(
    catalog: FunctionCatalog | None,
) -> FunctionPromptSections | None:
    """Index of all catalog functions (sorted by namespace, then name) plus an example."""
    if catalog is None:
        return None

    descriptors: list[FunctionDescriptor] = []
    for namespace in sorted(await catalog.list_namespaces()):
        functions = await catalog.list_functions(namespace)
        descriptors.extend(sorted(functions, key=lambda f: f.name))

    if not descriptors:
        return None

    index = "## Available functions:\n" + "\n".join(_format_descriptor(d) for d in descriptors)
    return FunctionPromptSections(index=index, example=_build_example(descriptors[0]))
