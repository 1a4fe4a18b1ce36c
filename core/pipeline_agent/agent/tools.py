"""Tool declarations offered to the model."""

from pipeline_agent.llm.provider import Tool
from pipeline_agent.pipeline.schema import create_pipeline_tool_schema

# Browsing tools are forwarded verbatim to the action executor.
BROWSING_TOOL_NAMES = ("goto", "click", "type", "url", "querySelector", "querySelectorAll")

PIPELINE_TOOL_NAMES = (
    "getNodeSchema",
    "getPreviousPipeline",
    "compilePipeline",
    "runPipeline",
    "emitPipeline",
)

COMMUNICATION_TOOL_NAMES = ("requestUserInput", "provideOutputData", "chatWithUser")


def _selector_tool(name: str, description: str) -> Tool:
    return Tool(
        name=name,
        description=description,
        parameters={
            "type": "object",
            "properties": {"selector": {"type": "string"}},
            "required": ["selector"],
            "additionalProperties": False,
        },
    )


def build_browsing_tools() -> list[Tool]:
    return [
        _selector_tool("querySelector", "Query a single HTML element from the current page as JSON"),
        _selector_tool(
            "querySelectorAll", "Query multiple HTML elements from the current page as JSON"
        ),
        Tool(
            name="goto",
            description="Navigate to a URL",
            parameters={
                "type": "object",
                "properties": {
                    "url": {"type": "string"},
                    "waitUntil": {
                        "type": "string",
                        "enum": ["load", "domcontentloaded", "networkidle0", "networkidle2"],
                    },
                },
                "required": ["url"],
                "additionalProperties": False,
            },
        ),
        Tool(
            name="click",
            description="Click on a HTML element with a selector",
            parameters={
                "type": "object",
                "properties": {
                    "selector": {"type": "string"},
                    "waitForNavigation": {"type": "boolean"},
                },
                "required": ["selector"],
                "additionalProperties": False,
            },
        ),
        Tool(
            name="type",
            description="Type in a HTML element with a selector",
            parameters={
                "type": "object",
                "properties": {
                    "selector": {"type": "string"},
                    "text": {"type": "string"},
                    "delayMs": {"type": "integer"},
                },
                "required": ["selector", "text"],
                "additionalProperties": False,
            },
        ),
        Tool(
            name="url",
            description="Get the current URL of the page",
            parameters={"type": "object", "properties": {}, "additionalProperties": False},
        ),
    ]


def build_node_schema_tool() -> Tool:
    return Tool(
        name="getNodeSchema",
        description=(
            "Retrieve the JSON schema definition of a pipeline node type, "
            "or the descriptor of a reusable function ('namespace::name')."
        ),
        parameters={
            "type": "object",
            "properties": {
                "node": {
                    "type": "string",
                    "description": "The pipeline node type, e.g., 'page::goto'",
                },
            },
            "required": ["node"],
            "additionalProperties": False,
        },
    )


def build_pipeline_tools() -> list[Tool]:
    return [
        build_node_schema_tool(),
        Tool(
            name="getPreviousPipeline",
            description="Return the previous version of the pipeline, if any.",
            parameters={"type": "object", "properties": {}, "additionalProperties": False},
        ),
        Tool(
            name="compilePipeline",
            description="Validate and compile a pipeline without emitting it.",
            parameters=create_pipeline_tool_schema(),
        ),
        Tool(
            name="runPipeline",
            description=(
                "Dry-run a pipeline: validate and compile it and report its "
                "structure. Nothing is executed in the browser."
            ),
            parameters=create_pipeline_tool_schema(),
        ),
        Tool(
            name="emitPipeline",
            description=(
                "Emit the pipeline as the result of this exchange. Only call "
                "this when the pipeline is production-ready."
            ),
            parameters=create_pipeline_tool_schema(),
        ),
    ]


def build_communication_tools() -> list[Tool]:
    return [
        Tool(
            name="requestUserInput",
            description=(
                "Ask the user a question when you cannot proceed safely without "
                "more context. The exchange pauses until the user answers."
            ),
            parameters={
                "type": "object",
                "properties": {
                    "question": {"type": "string"},
                    "urgency": {"type": "string", "enum": ["low", "normal", "high"]},
                },
                "required": ["question"],
                "additionalProperties": False,
            },
        ),
        Tool(
            name="provideOutputData",
            description=(
                "Share data gathered while browsing. Set final to true when this "
                "output completes the request and no pipeline is needed."
            ),
            parameters={
                "type": "object",
                "properties": {
                    "data": {},
                    "description": {"type": "string"},
                    "final": {"type": "boolean"},
                },
                "required": ["data"],
                "additionalProperties": False,
            },
        ),
        Tool(
            name="chatWithUser",
            description="Send a message to the user without ending the exchange.",
            parameters={
                "type": "object",
                "properties": {
                    "message": {"type": "string"},
                    "audience": {"type": "string", "enum": ["user", "developer"]},
                },
                "required": ["message"],
                "additionalProperties": False,
            },
        ),
    ]


def build_agent_tools() -> list[Tool]:
    return build_browsing_tools() + build_pipeline_tools() + build_communication_tools()
