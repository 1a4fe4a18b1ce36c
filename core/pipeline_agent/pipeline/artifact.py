"""Structural comparison of pipeline artifacts."""

from typing import Any

from pipeline_agent.pipeline.json_value import from_python


def canonicalize(value: Any) -> Any:
    """Return *value* with object keys sorted recursively.

    Arrays keep their order: a reordered ``dependsOn`` list counts as a
    change.
    """
    if isinstance(value, dict):
        return {key: canonicalize(value[key]) for key in sorted(value)}
    if isinstance(value, (list, tuple)):
        return [canonicalize(item) for item in value]
    return value


def artifacts_equal(left: Any, right: Any) -> bool:
    """Deep, key-order-independent equality of two JSON artifacts.

    ``None`` and an empty mapping are both "no artifact" and compare equal.
    """
    left = left or {}
    right = right or {}
    return from_python(left) == from_python(right)
