"""Tool dispatcher: resolves a model tool call to an action.

Browsing calls are forwarded to the external action executor. Pipeline
management calls are handled here and only mutate the ``ExchangeRecord``
of the current exchange; the snapshot is written once the exchange ends.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable, Collection
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from pipeline_agent.agent.cancellation import CancelSignal
from pipeline_agent.agent.conversation import Message
from pipeline_agent.agent.tools import BROWSING_TOOL_NAMES
from pipeline_agent.errors import (
    ArtifactCompileError,
    ArtifactError,
    ArtifactParseError,
    ArtifactValidationError,
    SchemaNotFoundError,
    ToolInputError,
    UnknownToolError,
)
from pipeline_agent.llm.provider import ToolUse
from pipeline_agent.pipeline.compiler import CompiledPipeline, PipelineCompiler
from pipeline_agent.pipeline.functions import FunctionCatalog
from pipeline_agent.pipeline.json_value import from_python
from pipeline_agent.pipeline.schema import NodeCatalog, SchemaValidator
from pipeline_agent.schemas.snapshot import ChatEntry, OutputPayload, PendingQuestion
from pipeline_agent.utils import maybe_await

logger = logging.getLogger(__name__)


@runtime_checkable
class ActionExecutor(Protocol):
    """External collaborator performing browsing actions."""

    async def execute(self, name: str, arguments: dict[str, Any], cancel: CancelSignal | None) -> Any: ...


@dataclass
class ExchangeRecord:
    """Working record of one exchange, built up by tool calls.

    ``finish`` is ``None`` until the model signals intent: ``True`` after a
    final emit/output, ``False`` after a clarification request or an
    explicit ``final=false``.
    """

    artifact_raw: dict[str, Any] | None = None
    artifact: CompiledPipeline | None = None
    pending_question: PendingQuestion | None = None
    output: OutputPayload | None = None
    chat_messages: list[ChatEntry] = field(default_factory=list)
    finish: bool | None = None

    @property
    def has_result(self) -> bool:
        return (
            self.artifact is not None
            or self.pending_question is not None
            or (self.output is not None and self.output.final)
        )


def parse_pipeline_candidate(candidate: Any) -> Any:
    """Accept a raw structure or a JSON string."""
    if isinstance(candidate, str):
        try:
            return json.loads(candidate)
        except json.JSONDecodeError as e:
            raise ToolInputError(f"Pipeline is not valid JSON: {e}") from e
    return candidate


def check_pipeline(
    candidate: Any,
    validator: SchemaValidator,
    compiler: PipelineCompiler,
) -> CompiledPipeline:
    """Validate then compile *candidate*. Raises an ``ArtifactError`` subclass."""
    validation = validator.validate(candidate)
    if not validation.success:
        raise ArtifactValidationError("Pipeline failed schema validation", validation.errors)
    result = compiler.compile(candidate)
    if not result.ok:
        raise ArtifactCompileError("Pipeline failed to compile", result.errors)
    return result.pipeline


class ToolDispatcher:
    """Maps tool-call names to executor pass-through or built-in actions."""

    def __init__(
        self,
        *,
        record: ExchangeRecord,
        validator: SchemaValidator,
        compiler: PipelineCompiler,
        node_catalog: NodeCatalog | None = None,
        executor: ActionExecutor | None = None,
        function_catalog: FunctionCatalog | None = None,
        previous_artifact: dict[str, Any] | None = None,
        allowed: Collection[str] | None = None,
    ):
        self.record = record
        self.validator = validator
        self.compiler = compiler
        self.node_catalog = node_catalog or NodeCatalog()
        self.executor = executor
        self.function_catalog = function_catalog
        self.previous_artifact = previous_artifact
        # restricts which of the known tools this exchange may call
        self.allowed = frozenset(allowed) if allowed is not None else None
        self._builtins: dict[str, Callable[[dict[str, Any]], Awaitable[Any]]] = {
            "getNodeSchema": self._get_node_schema,
            "getPreviousPipeline": self._get_previous_pipeline,
            "compilePipeline": self._compile_pipeline,
            "runPipeline": self._run_pipeline,
            "emitPipeline": self._emit_pipeline,
            "requestUserInput": self._request_user_input,
            "provideOutputData": self._provide_output_data,
            "chatWithUser": self._chat_with_user,
        }

    @property
    def tool_names(self) -> list[str]:
        names = list(BROWSING_TOOL_NAMES) + list(self._builtins)
        if self.allowed is None:
            return names
        return [name for name in names if name in self.allowed]

    async def __call__(
        self,
        call: ToolUse,
        history: list[Message],
        cancel: CancelSignal | None = None,
    ) -> Any:
        return await self.dispatch(call, cancel)

    async def dispatch(self, call: ToolUse, cancel: CancelSignal | None = None) -> Any:
        if call.has_truncated_arguments:
            raise ToolInputError(f"Arguments for {call.name} are not valid JSON")
        logger.debug("Dispatching tool call %s", call.name, extra={"tool_name": call.name})
        if self.allowed is not None and call.name not in self.allowed:
            raise UnknownToolError(call.name)

        if call.name in BROWSING_TOOL_NAMES:
            if self.executor is None:
                raise UnknownToolError(call.name)
            result = await maybe_await(self.executor.execute(call.name, call.input, cancel))
            if cancel is not None:
                cancel.raise_if_cancelled()
            return result

        handler = self._builtins.get(call.name)
        if handler is None:
            raise UnknownToolError(call.name)
        return await handler(call.input)

    # ------------------------------------------------------------------
    # Built-in actions
    # ------------------------------------------------------------------

    async def _get_node_schema(self, args: dict[str, Any]) -> Any:
        node_type = args.get("node") or args.get("type")
        if not isinstance(node_type, str) or not node_type:
            raise ToolInputError("getNodeSchema requires a 'node' argument")

        schema = self.node_catalog.get_schema(node_type)
        if schema is not None:
            return from_python(schema)

        if self.function_catalog is not None and "::" in node_type:
            namespace, _, name = node_type.partition("::")
            descriptor = await self.function_catalog.get_function(namespace, name)
            if descriptor is not None:
                return from_python(descriptor.to_dict())

        raise SchemaNotFoundError(node_type)

    async def _get_previous_pipeline(self, args: dict[str, Any]) -> Any:
        return self.previous_artifact

    async def _validate(self, args: dict[str, Any], dry_run: bool) -> dict[str, Any]:
        if "pipeline" not in args:
            raise ToolInputError("A 'pipeline' argument is required")
        candidate = parse_pipeline_candidate(args["pipeline"])
        try:
            pipeline = check_pipeline(candidate, self.validator, self.compiler)
        except ArtifactValidationError as e:
            return {"ok": False, "stage": "schema", "errors": e.errors}
        except ArtifactCompileError as e:
            return {"ok": False, "stage": "compile", "errors": e.errors}
        return {"ok": True, "dryRun": dry_run, "stats": pipeline.stats()}

    async def _compile_pipeline(self, args: dict[str, Any]) -> dict[str, Any]:
        return await self._validate(args, dry_run=False)

    async def _run_pipeline(self, args: dict[str, Any]) -> dict[str, Any]:
        return await self._validate(args, dry_run=True)

    async def _emit_pipeline(self, args: dict[str, Any]) -> dict[str, Any]:
        if "pipeline" not in args:
            raise ToolInputError("A 'pipeline' argument is required")
        candidate = parse_pipeline_candidate(args["pipeline"])
        try:
            pipeline = check_pipeline(candidate, self.validator, self.compiler)
        except ArtifactError as e:
            stage = "schema" if isinstance(e, ArtifactValidationError) else "compile"
            return {"ok": False, "stage": stage, "errors": e.errors}

        self.record.artifact_raw = candidate
        self.record.artifact = pipeline
        final = args.get("final")
        self.record.finish = bool(final) if final is not None else True
        logger.info(
            "Pipeline emitted (%d steps)", len(pipeline.steps), extra={"tool_name": "emitPipeline"}
        )
        return {"ok": True, "emitted": True, "final": self.record.finish, "stats": pipeline.stats()}

    async def _request_user_input(self, args: dict[str, Any]) -> dict[str, Any]:
        question = args.get("question")
        if not isinstance(question, str) or not question:
            raise ToolInputError("requestUserInput requires a 'question' argument")
        self.record.pending_question = PendingQuestion(question=question, urgency=args.get("urgency"))
        self.record.finish = False
        return {"ok": True, "awaitingUser": True}

    async def _provide_output_data(self, args: dict[str, Any]) -> dict[str, Any]:
        if "data" not in args:
            raise ToolInputError("provideOutputData requires a 'data' argument")
        final = args.get("final")
        self.record.output = OutputPayload(
            data=args["data"], description=args.get("description"), final=bool(final)
        )
        # an explicit final=false means more work is needed in another exchange
        if final is not None:
            self.record.finish = bool(final)
        return {"ok": True, "final": bool(final)}

    async def _chat_with_user(self, args: dict[str, Any]) -> dict[str, Any]:
        message = args.get("message")
        if not isinstance(message, str) or not message:
            raise ToolInputError("chatWithUser requires a 'message' argument")
        self.record.chat_messages.append(ChatEntry(message=message, audience=args.get("audience")))
        return {"ok": True}


def parse_artifact_text(text: str | None) -> Any:
    """Parse terminal model text as a pipeline. Raises ``ArtifactParseError``."""
    try:
        return json.loads(text or "")
    except json.JSONDecodeError as e:
        raise ArtifactParseError("Failed to parse the JSON response", [str(e)]) from e
