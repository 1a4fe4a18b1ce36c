"""Retry-until-valid: drive a conversation until its terminal text is a valid pipeline."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from pipeline_agent.agent.conversation import Message
from pipeline_agent.agent.dispatcher import check_pipeline, parse_artifact_text
from pipeline_agent.agent.engine import Conversation
from pipeline_agent.errors import ArtifactError
from pipeline_agent.pipeline.compiler import CompiledPipeline, PipelineCompiler
from pipeline_agent.pipeline.schema import SchemaValidator

logger = logging.getLogger(__name__)


@dataclass
class GenerationResult:
    """Outcome of the retry workflow. ``pipeline`` is None when no valid output was produced."""

    history: list[Message]
    pipeline: CompiledPipeline | None = None
    raw: Any = None
    attempts: int = 0
    last_error: ArtifactError | None = None

    @property
    def ok(self) -> bool:
        return self.pipeline is not None


async def generate_until_valid(
    conversation: Conversation,
    *,
    validator: SchemaValidator,
    compiler: PipelineCompiler,
    max_retries: int,
    should_stop: Callable[[], bool] | None = None,
) -> GenerationResult:
    """Parse, validate and compile the terminal output, retrying on failure.

    Every failure is fed back to the model as a system diagnostic before
    the next round. After ``max_retries`` failed outputs the workflow gives
    up and returns the history without a pipeline; a ceiling below 1
    never accepts an output. Transport errors and cancellation propagate.
    """
    attempts = 0
    last_error: ArtifactError | None = None
    while True:
        if not conversation.is_complete:
            await conversation.run()
        if should_stop is not None and should_stop():
            return GenerationResult(history=conversation.history, attempts=attempts)
        if conversation.halted:
            logger.info("Conversation halted (%s) before a valid pipeline", conversation.stop_reason)
            return GenerationResult(history=conversation.history, attempts=attempts)
        if attempts >= max_retries:
            logger.error(
                "Exceeded maximum retries (%d) while validating pipeline response", max_retries
            )
            return GenerationResult(
                history=conversation.history, attempts=attempts, last_error=last_error
            )

        attempts += 1
        try:
            raw = parse_artifact_text(conversation.output)
            pipeline = check_pipeline(raw, validator, compiler)
        except ArtifactError as e:
            logger.warning(
                "Pipeline attempt %d rejected (%s): %s",
                attempts,
                e.diagnostic_type,
                e.errors or str(e),
            )
            last_error = e
            if attempts < max_retries:
                conversation.add(Message(seq=0, role="system", content=json.dumps(e.to_diagnostic())))
                conversation.clear_output()
            continue

        logger.info("Generation successful after %d attempt(s)", attempts)
        return GenerationResult(
            history=conversation.history, pipeline=pipeline, raw=raw, attempts=attempts
        )
