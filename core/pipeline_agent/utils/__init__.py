"""Small shared helpers."""

from pipeline_agent.utils.aio import maybe_await
from pipeline_agent.utils.io import atomic_write

__all__ = ["atomic_write", "maybe_await"]
