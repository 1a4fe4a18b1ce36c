"""Pipeline compilation.

The compiler turns a schema-valid raw pipeline into a ``CompiledPipeline``
or a list of errors. Compilation is deterministic: identical raw input
always yields an identical result.
"""

from __future__ import annotations

import heapq
import logging
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from pipeline_agent.pipeline.artifact import canonicalize

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CompiledStep:
    name: str
    node: str
    inputs: dict[str, Any]
    outputs: dict[str, str]
    depends_on: tuple[str, ...]

    def to_json(self) -> dict[str, Any]:
        return {
            "node": self.node,
            "inputs": self.inputs,
            "outputs": self.outputs,
            "dependsOn": list(self.depends_on),
        }


@dataclass
class CompiledPipeline:
    """A compiled pipeline: steps plus a dependency-respecting execution order."""

    steps: dict[str, CompiledStep]
    order: list[str]

    def to_json(self) -> dict[str, Any]:
        """Raw pipeline form (step name -> step definition), canonical key order."""
        return canonicalize({name: step.to_json() for name, step in self.steps.items()})

    def stats(self) -> dict[str, Any]:
        return {
            "steps": len(self.steps),
            "nodes": sorted({step.node for step in self.steps.values()}),
            "order": list(self.order),
        }


@dataclass
class CompileResult:
    pipeline: CompiledPipeline | None = None
    errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.pipeline is not None and not self.errors


@runtime_checkable
class PipelineCompiler(Protocol):
    """External collaborator: compiles a raw pipeline."""

    def compile(self, raw: Any) -> CompileResult: ...


class StepGraphCompiler:
    """Reference compiler for the step-graph pipeline format.

    Checks that every ``dependsOn`` entry names an existing step, that
    every reference input resolves to a variable published by a declared
    (transitive) dependency, and that the dependency graph is acyclic.
    The execution order is a topological sort with ties broken by step
    name.
    """

    def compile(self, raw: Any) -> CompileResult:
        if not isinstance(raw, dict):
            return CompileResult(errors=["Pipeline must be an object of steps"])
        if not raw:
            return CompileResult(errors=["Pipeline must contain at least one step"])

        errors: list[str] = []
        steps: dict[str, CompiledStep] = {}
        for name in sorted(raw):
            step = raw[name]
            if not isinstance(step, dict) or not isinstance(step.get("node"), str):
                errors.append(f"{name}: step must be an object with a 'node' type")
                continue
            depends_on = step.get("dependsOn") or []
            if not isinstance(depends_on, list) or not all(isinstance(d, str) for d in depends_on):
                errors.append(f"{name}: dependsOn must be a list of step names")
                continue
            steps[name] = CompiledStep(
                name=name,
                node=step["node"],
                inputs=dict(step.get("inputs") or {}),
                outputs=dict(step.get("outputs") or {}),
                depends_on=tuple(depends_on),
            )

        for step in steps.values():
            for dep in step.depends_on:
                if dep == step.name:
                    errors.append(f"{step.name}: step cannot depend on itself")
                elif dep not in steps and dep not in raw:
                    errors.append(f"{step.name}: unknown dependency '{dep}'")

        if errors:
            return CompileResult(errors=errors)

        order, cycle = self._topological_order(steps)
        if cycle:
            return CompileResult(
                errors=[f"Dependency cycle detected between steps: {', '.join(cycle)}"]
            )

        errors.extend(self._check_references(steps))
        if errors:
            return CompileResult(errors=errors)

        logger.debug("Compiled pipeline with %d steps", len(steps))
        return CompileResult(pipeline=CompiledPipeline(steps=steps, order=order))

    @staticmethod
    def _topological_order(steps: dict[str, CompiledStep]) -> tuple[list[str], list[str]]:
        remaining = {name: set(step.depends_on) for name, step in steps.items()}
        dependents: dict[str, list[str]] = {name: [] for name in steps}
        for name, step in steps.items():
            for dep in step.depends_on:
                dependents[dep].append(name)

        ready = [name for name, deps in remaining.items() if not deps]
        heapq.heapify(ready)
        order: list[str] = []
        while ready:
            name = heapq.heappop(ready)
            order.append(name)
            for dependent in dependents[name]:
                remaining[dependent].discard(name)
                if not remaining[dependent]:
                    heapq.heappush(ready, dependent)

        cycle = sorted(name for name in steps if name not in order)
        return order, cycle

    @staticmethod
    def _check_references(steps: dict[str, CompiledStep]) -> list[str]:
        publishers: dict[str, str] = {}
        for name, step in steps.items():
            for variable in step.outputs.values():
                if isinstance(variable, str):
                    publishers.setdefault(variable, name)

        def ancestors(name: str) -> set[str]:
            seen: set[str] = set()
            stack = list(steps[name].depends_on)
            while stack:
                current = stack.pop()
                if current in seen:
                    continue
                seen.add(current)
                stack.extend(steps[current].depends_on)
            return seen

        errors = []
        for name, step in steps.items():
            for input_name, value in step.inputs.items():
                if not isinstance(value, dict) or value.get("type") != "reference":
                    continue
                variable = value.get("name")
                publisher = publishers.get(variable)
                if publisher is None:
                    errors.append(f"{name}.{input_name}: unknown variable '{variable}'")
                elif publisher not in ancestors(name):
                    errors.append(
                        f"{name}.{input_name}: variable '{variable}' is published by "
                        f"'{publisher}', which is not listed in dependsOn"
                    )
        return errors
