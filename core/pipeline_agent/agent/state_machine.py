"""Resumable pipeline agent.

``PipelineAgent`` sits above the conversation engine. Each call to
``start_exchange`` / ``resume_exchange`` applies the caller's control
requests, runs at most one exchange, and returns a fresh
``ConversationSnapshot`` that can be persisted and fed back later,
possibly in another process.

Phases::

    idle -> acting -> awaiting-user | paused | complete | error

``paused`` resumes into the phase it interrupted. ``awaiting-user`` only
moves on through ``add-instructions`` (the user's answer), which routes
back through ``idle``.

``analyze`` and ``generate`` offer a two-stage flow outside the
snapshot lifecycle: a browsing-only analysis that reports selectors, then
a generation stage that may only look up node schemas.

Running two exchanges against the same snapshot at once is not supported
and not guarded against: each call works on its own copy, so the caller
decides which resulting snapshot wins.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from pipeline_agent.agent.analysis import (
    ANALYZE_OUTPUT_SCHEMA,
    AnalysisResult,
    analysis_response_format,
    parse_structured_output,
    pipeline_response_format,
)
from pipeline_agent.agent.cancellation import CancelSignal
from pipeline_agent.agent.conversation import Message
from pipeline_agent.agent.dispatcher import ActionExecutor, ExchangeRecord, ToolDispatcher
from pipeline_agent.agent.engine import Conversation, ModelSettings, ToolSet
from pipeline_agent.agent.prompts import (
    ANALYZE_PROMPT,
    CONTINUE_PROMPT,
    build_prompt_messages,
    compose_agent_prompt,
    compose_generation_prompt,
)
from pipeline_agent.agent.retry import GenerationResult, generate_until_valid
from pipeline_agent.agent.tools import (
    BROWSING_TOOL_NAMES,
    build_browsing_tools,
    build_communication_tools,
    build_node_schema_tool,
    build_pipeline_tools,
)
from pipeline_agent.config import AgentConfig
from pipeline_agent.errors import MissingPromptError, MisuseError, ModelOutputError
from pipeline_agent.llm.litellm import LiteLLMProvider
from pipeline_agent.llm.provider import LLMProvider
from pipeline_agent.llm.usage import UsageGate
from pipeline_agent.observability import clear_trace_context, set_trace_context
from pipeline_agent.pipeline.artifact import artifacts_equal
from pipeline_agent.pipeline.compiler import PipelineCompiler, StepGraphCompiler
from pipeline_agent.pipeline.functions import FunctionCatalog, build_function_prompt_sections
from pipeline_agent.pipeline.schema import NodeCatalog, SchemaValidator
from pipeline_agent.schemas.snapshot import (
    AddInstructionsRequest,
    AgentPhase,
    ArtifactState,
    ChatEntry,
    ConversationSnapshot,
    OutputPayload,
    PauseRequest,
    ResumeRequest,
    parse_control_request,
)
from pipeline_agent.storage.snapshot_store import generate_conversation_id
from pipeline_agent.utils import maybe_await

logger = logging.getLogger(__name__)

STATUS_PAUSED = "Conversation paused"
STATUS_AWAITING_USER = "Awaiting user input"
STATUS_COMPLETE = "Conversation complete"
STATUS_PIPELINE_UPDATED = "Pipeline updated"
STATUS_PIPELINE_UNCHANGED = "Pipeline unchanged"
STATUS_OUTPUT_READY = "Output ready"
STATUS_IN_PROGRESS = "Agent needs another exchange to finish"
STATUS_BLOCKED = "blocked by usage policy"
STATUS_ROUND_LIMIT = "Round limit reached without a result"
STATUS_GENERATION_FAILED = "Failed to produce a valid pipeline"


@dataclass
class ExchangeCallbacks:
    """Per-exchange notifications. Sync or async callables; all are awaited."""

    on_artifact_update: Callable[[dict[str, Any]], Any] | None = None
    on_status: Callable[[str], Any] | None = None
    on_raw_messages: Callable[[list[Message]], Any] | None = None
    on_chat: Callable[[ChatEntry], Any] | None = None
    on_output: Callable[[OutputPayload], Any] | None = None


def _now() -> str:
    return datetime.now(UTC).isoformat()


def apply_control_request(
    snapshot: ConversationSnapshot,
    request: PauseRequest | ResumeRequest | AddInstructionsRequest | dict[str, Any],
) -> ConversationSnapshot:
    """Return a copy of *snapshot* with one control request applied."""
    request = parse_control_request(request)

    if isinstance(request, PauseRequest):
        if snapshot.phase == AgentPhase.PAUSED:
            return snapshot.model_copy(deep=True)
        return snapshot.model_copy(
            deep=True,
            update={
                "phase": AgentPhase.PAUSED,
                "resume_phase": snapshot.phase,
                "pause_reason": request.reason,
            },
        )

    if isinstance(request, ResumeRequest):
        if snapshot.phase != AgentPhase.PAUSED:
            return snapshot.model_copy(deep=True)
        return snapshot.model_copy(
            deep=True,
            update={
                "phase": snapshot.resume_phase or AgentPhase.IDLE,
                "resume_phase": None,
                "pause_reason": None,
            },
        )

    # add-instructions: the stored exchange state no longer matches the request
    return snapshot.model_copy(
        deep=True,
        update={
            "instructions": [*snapshot.instructions, *request.messages],
            "phase": AgentPhase.IDLE,
            "resume_phase": None,
            "pause_reason": None,
            "artifact": None,
            "messages": None,
            "pending_question": None,
            "output": None,
            "chat_messages": [],
            "retry_count": 0,
        },
    )


class PipelineAgent:
    """Drives resumable exchanges that produce automation pipelines."""

    def __init__(
        self,
        provider: LLMProvider,
        *,
        executor: ActionExecutor | None = None,
        compiler: PipelineCompiler | None = None,
        validator: SchemaValidator | None = None,
        node_catalog: NodeCatalog | None = None,
        function_catalog: FunctionCatalog | None = None,
        config: AgentConfig | None = None,
        usage_gate: UsageGate | None = None,
    ):
        self.provider = provider
        self.executor = executor
        self.config = config or AgentConfig()
        self.node_catalog = node_catalog or NodeCatalog()
        self.validator = validator or SchemaValidator(self.node_catalog)
        self.compiler = compiler or StepGraphCompiler()
        self.function_catalog = function_catalog
        self.usage_gate = usage_gate

        self.tools = build_pipeline_tools() + build_communication_tools()
        if executor is not None:
            self.tools = build_browsing_tools() + self.tools
        self._analysis_validator = SchemaValidator(schema=ANALYZE_OUTPUT_SCHEMA)

    @classmethod
    def from_config(cls, config: AgentConfig | None = None, **kwargs: Any) -> PipelineAgent:
        """Agent backed by ``LiteLLMProvider`` configured from *config*."""
        config = config or AgentConfig()
        provider = LiteLLMProvider(model=config.model, api_key=config.api_key, api_base=config.api_base)
        return cls(provider, config=config, **kwargs)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def start_exchange(
        self,
        prompt: str,
        previous_artifact: dict[str, Any] | None = None,
        control_requests: list[Any] | None = None,
        cancel: CancelSignal | None = None,
        callbacks: ExchangeCallbacks | None = None,
        *,
        conversation_id: str | None = None,
    ) -> ConversationSnapshot:
        """Start a new conversation handle from a fresh prompt."""
        if not prompt:
            raise MissingPromptError(conversation_id)
        snapshot = ConversationSnapshot(
            conversation_id=conversation_id or generate_conversation_id(),
            prompt=prompt,
        )
        return await self._exchange(snapshot, previous_artifact, control_requests, cancel, callbacks)

    async def resume_exchange(
        self,
        snapshot: ConversationSnapshot,
        previous_artifact: dict[str, Any] | None = None,
        control_requests: list[Any] | None = None,
        cancel: CancelSignal | None = None,
        callbacks: ExchangeCallbacks | None = None,
    ) -> ConversationSnapshot:
        """Continue a conversation from a snapshot returned by an earlier exchange."""
        if not snapshot.prompt:
            raise MissingPromptError(snapshot.conversation_id)
        return await self._exchange(
            snapshot.model_copy(deep=True), previous_artifact, control_requests, cancel, callbacks
        )

    # ------------------------------------------------------------------
    # Two-stage generation
    # ------------------------------------------------------------------

    async def analyze(
        self,
        prompt: str,
        previous_artifact: dict[str, Any] | None = None,
        cancel: CancelSignal | None = None,
        on_messages: Callable[[list[Message]], Any] | None = None,
    ) -> AnalysisResult:
        """Browse the page and report the selectors a pipeline for *prompt* needs.

        The model may only call browsing tools and must answer with a JSON
        report matching ``ANALYZE_OUTPUT_SCHEMA``. Nothing is generated.
        """
        if not prompt:
            raise MissingPromptError()
        if self.executor is None:
            raise MisuseError("Analysis requires an action executor")
        logger.info("Analysis started", extra={"model": self.config.model})

        dispatcher = ToolDispatcher(
            record=ExchangeRecord(),
            validator=self.validator,
            compiler=self.compiler,
            node_catalog=self.node_catalog,
            executor=self.executor,
            allowed=BROWSING_TOOL_NAMES,
        )
        conversation = Conversation(
            self.provider,
            build_prompt_messages(prompt, system_prompt=ANALYZE_PROMPT, previous_artifact=previous_artifact),
            ToolSet(tools=build_browsing_tools(), handle=dispatcher),
            self._settings(analysis_response_format()),
            cancel=cancel,
            on_messages=on_messages,
            usage_gate=self.usage_gate,
            source="agent.analyze",
        )
        try:
            await conversation.run()
        finally:
            await conversation.flush()

        result = AnalysisResult(prompt=prompt, history=conversation.history, stop_reason=conversation.stop_reason)
        if conversation.output is None:
            logger.info("Analysis ended without a report (%s)", conversation.stop_reason)
            return result
        try:
            result.analysis = parse_structured_output(conversation.output, self._analysis_validator)
        except ModelOutputError as e:
            logger.warning("Analysis report rejected: %s", e.errors or str(e))
            result.errors = e.errors or [str(e)]
        return result

    async def generate(
        self,
        analysis: AnalysisResult,
        previous_artifact: dict[str, Any] | None = None,
        cancel: CancelSignal | None = None,
        on_messages: Callable[[list[Message]], Any] | None = None,
    ) -> GenerationResult:
        """Turn an analysis report into a validated pipeline.

        Only ``getNodeSchema`` is offered; invalid answers go through the
        retry workflow up to ``config.max_fix_retries`` attempts.
        """
        if analysis.analysis is None:
            raise MisuseError("Cannot generate a pipeline without a completed analysis")
        logger.info("Generation started", extra={"model": self.config.model})

        dispatcher = ToolDispatcher(
            record=ExchangeRecord(),
            validator=self.validator,
            compiler=self.compiler,
            node_catalog=self.node_catalog,
            function_catalog=self.function_catalog,
            allowed=("getNodeSchema",),
        )
        conversation = Conversation(
            self.provider,
            build_prompt_messages(
                analysis.prompt,
                system_prompt=compose_generation_prompt(analysis.analysis, self.node_catalog),
                previous_artifact=previous_artifact,
            ),
            ToolSet(tools=[build_node_schema_tool()], handle=dispatcher),
            self._settings(pipeline_response_format()),
            cancel=cancel,
            on_messages=on_messages,
            usage_gate=self.usage_gate,
            source="agent.generate",
        )
        try:
            return await generate_until_valid(
                conversation,
                validator=self.validator,
                compiler=self.compiler,
                max_retries=self.config.max_fix_retries,
            )
        finally:
            await conversation.flush()

    def _settings(self, response_format: dict[str, Any] | None) -> ModelSettings:
        return ModelSettings(
            model=self.config.model,
            temperature=self.config.temperature,
            response_format=response_format,
            max_rounds=self.config.max_rounds,
        )

    # ------------------------------------------------------------------
    # Exchange
    # ------------------------------------------------------------------

    async def _exchange(
        self,
        snapshot: ConversationSnapshot,
        previous_artifact: dict[str, Any] | None,
        control_requests: list[Any] | None,
        cancel: CancelSignal | None,
        callbacks: ExchangeCallbacks | None,
    ) -> ConversationSnapshot:
        callbacks = callbacks or ExchangeCallbacks()
        for request in control_requests or []:
            snapshot = apply_control_request(snapshot, request)

        held = self._held_status(snapshot)
        if held is not None:
            if control_requests:
                snapshot.status = held
                snapshot.updated_at = _now()
            logger.info("Exchange not run: conversation is %s", snapshot.phase)
            await self._emit(callbacks.on_status, held)
            return snapshot

        exchange_id = uuid.uuid4().hex[:8]
        set_trace_context(conversation_id=snapshot.conversation_id, exchange_id=exchange_id)
        try:
            return await self._run(snapshot, exchange_id, previous_artifact, cancel, callbacks)
        finally:
            clear_trace_context()

    @staticmethod
    def _held_status(snapshot: ConversationSnapshot) -> str | None:
        """Status for phases that return without a model round."""
        if snapshot.phase == AgentPhase.PAUSED:
            if snapshot.pause_reason:
                return f"{STATUS_PAUSED}: {snapshot.pause_reason}"
            return STATUS_PAUSED
        if snapshot.phase == AgentPhase.AWAITING_USER:
            return STATUS_AWAITING_USER
        if snapshot.phase == AgentPhase.COMPLETE:
            return snapshot.status or STATUS_COMPLETE
        return None

    async def _opening_messages(
        self,
        snapshot: ConversationSnapshot,
        previous_artifact: dict[str, Any] | None,
    ) -> list[Message]:
        if snapshot.messages:
            history = [Message.from_storage_dict(m) for m in snapshot.messages]
            next_seq = history[-1].seq + 1
            return [*history, Message(seq=next_seq, role="user", content=CONTINUE_PROMPT)]

        functions = await build_function_prompt_sections(self.function_catalog)
        return build_prompt_messages(
            snapshot.prompt,
            system_prompt=compose_agent_prompt(self.node_catalog, functions),
            previous_artifact=previous_artifact,
            instructions=snapshot.instructions,
        )

    async def _run(
        self,
        snapshot: ConversationSnapshot,
        exchange_id: str,
        previous_artifact: dict[str, Any] | None,
        cancel: CancelSignal | None,
        callbacks: ExchangeCallbacks,
    ) -> ConversationSnapshot:
        record = ExchangeRecord()
        dispatcher = ToolDispatcher(
            record=record,
            validator=self.validator,
            compiler=self.compiler,
            node_catalog=self.node_catalog,
            executor=self.executor,
            function_catalog=self.function_catalog,
            previous_artifact=previous_artifact,
        )
        conversation = Conversation(
            self.provider,
            await self._opening_messages(snapshot, previous_artifact),
            ToolSet(tools=list(self.tools), handle=dispatcher),
            self._settings(self.config.response_format),
            cancel=cancel,
            on_messages=callbacks.on_raw_messages,
            usage_gate=self.usage_gate,
            source="agent",
        )

        snapshot.phase = AgentPhase.ACTING
        logger.info("Exchange started", extra={"phase": AgentPhase.ACTING.value, "model": self.config.model})

        generation: GenerationResult | None = None
        try:
            await conversation.run()
            if conversation.output is not None and self._expects_artifact(record):
                generation = await generate_until_valid(
                    conversation,
                    validator=self.validator,
                    compiler=self.compiler,
                    max_retries=self.config.max_fix_retries,
                    should_stop=lambda: record.has_result,
                )
                if generation.ok and record.artifact is None:
                    record.artifact_raw = generation.raw
                    record.artifact = generation.pipeline
                    record.finish = True
        finally:
            # observers see every batch delivered before a cancellation or error
            await conversation.flush()

        return await self._conclude(
            snapshot, exchange_id, record, conversation, generation, previous_artifact, callbacks
        )

    @staticmethod
    def _expects_artifact(record: ExchangeRecord) -> bool:
        return (
            record.artifact is None
            and record.pending_question is None
            and record.output is None
            and record.finish is not False
        )

    async def _conclude(
        self,
        snapshot: ConversationSnapshot,
        exchange_id: str,
        record: ExchangeRecord,
        conversation: Conversation,
        generation: GenerationResult | None,
        previous_artifact: dict[str, Any] | None,
        callbacks: ExchangeCallbacks,
    ) -> ConversationSnapshot:
        artifact_changed = False
        if record.pending_question is not None:
            phase, status = AgentPhase.AWAITING_USER, STATUS_AWAITING_USER
        elif record.artifact is not None:
            artifact_changed = not artifacts_equal(record.artifact_raw, previous_artifact)
            phase = AgentPhase.COMPLETE
            status = STATUS_PIPELINE_UPDATED if artifact_changed else STATUS_PIPELINE_UNCHANGED
        elif record.output is not None and record.output.final:
            phase, status = AgentPhase.COMPLETE, STATUS_OUTPUT_READY
        elif record.finish is False:
            phase, status = AgentPhase.IDLE, STATUS_IN_PROGRESS
        elif conversation.halted and conversation.stop_reason == "vetoed":
            phase, status = AgentPhase.ERROR, STATUS_BLOCKED
        elif conversation.halted:
            phase, status = AgentPhase.ERROR, STATUS_ROUND_LIMIT
        elif generation is not None and not generation.ok:
            phase, status = AgentPhase.ERROR, STATUS_GENERATION_FAILED
        else:
            phase, status = AgentPhase.COMPLETE, STATUS_COMPLETE

        if record.artifact is not None:
            snapshot.artifact = ArtifactState(
                raw=record.artifact_raw,
                compiled=record.artifact.to_json(),
                stats=record.artifact.stats(),
            )
        snapshot.phase = phase
        snapshot.resume_phase = None
        snapshot.pause_reason = None
        snapshot.pending_question = record.pending_question
        snapshot.output = record.output
        snapshot.chat_messages = [*snapshot.chat_messages, *record.chat_messages]
        snapshot.messages = [m.to_storage_dict() for m in conversation.history]
        snapshot.status = status
        snapshot.status_metadata = {
            "exchange_id": exchange_id,
            "rounds": conversation.rounds,
            "total_tokens": conversation.total_usage.total_tokens,
            "artifact_changed": artifact_changed,
        }
        if conversation.stop_reason:
            snapshot.status_metadata["stop_reason"] = conversation.stop_reason
        snapshot.retry_count = 0
        if generation is not None:
            snapshot.retry_count = generation.attempts - (1 if generation.ok else 0)
        snapshot.exchange_count += 1
        snapshot.updated_at = _now()

        logger.info(
            "Exchange concluded: %s",
            status,
            extra={"phase": phase.value, "tokens_used": conversation.total_usage.total_tokens},
        )

        for chat in record.chat_messages:
            await self._emit(callbacks.on_chat, chat)
        if record.output is not None:
            await self._emit(callbacks.on_output, record.output)
        if artifact_changed:
            await self._emit(callbacks.on_artifact_update, record.artifact_raw)
        await self._emit(callbacks.on_status, status)
        return snapshot

    @staticmethod
    async def _emit(callback: Callable[..., Any] | None, value: Any) -> None:
        if callback is not None:
            await maybe_await(callback(value))
