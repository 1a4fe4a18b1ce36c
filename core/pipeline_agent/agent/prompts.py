"""Prompt assembly for an agent exchange.

The opening history is built in layers:

1. System prompt: the agent role, tooling overview, node list and function
   index, or one of the two-stage prompts (analysis, generation).
2. Previous pipeline (system), when one exists.
3. The user's request.
4. Each accumulated instruction, in order.
"""

from __future__ import annotations

import json
from typing import Any

from pipeline_agent.agent.conversation import Message
from pipeline_agent.pipeline.functions import FunctionPromptSections
from pipeline_agent.pipeline.schema import NodeCatalog

CONTINUE_PROMPT = "[Continue working on the pipeline.]"

AGENT_IDENTITY = """\
You are the Browsary automation agent. You interact with a live browser, \
understand DOM structure, talk to humans, and design runnable automation \
pipelines. Select whichever tool helps you progress at any moment."""

AGENT_GUIDANCE = """\
## Tooling Overview
- **Browsing**: `goto`, `click`, `type`, `url`, `querySelector`, `querySelectorAll`.
- **Pipeline utilities**: `getNodeSchema`, `compilePipeline`, `runPipeline`, `emitPipeline`, `getPreviousPipeline`.
- **Communication & output**: `requestUserInput`, `provideOutputData`, `chatWithUser`.

## Guidance
- Call `getNodeSchema(node)` before compiling or emitting a node. Do not guess schemas.
- Use `compilePipeline` for quick validation, `runPipeline` for a dry-run, and \
`emitPipeline` only when the pipeline is production-ready.
- If no pipeline is required, use `provideOutputData` with `final: true`.
- Use `requestUserInput` whenever you cannot proceed safely without more context.
- Never assume an initial page state. Always navigate first.
- If you answer without a tool call, the answer must be the pipeline as a \
single JSON object and nothing else.

## Pipeline format
The pipeline is a JSON object. Each key is a unique, descriptive step name \
(e.g. `"goto_login"`). Each step defines `node`, `inputs` (each either \
`{"type": "constant", "value": ...}` or `{"type": "reference", "name": ...}`), \
`outputs` (output name to published variable name) and `dependsOn` (steps \
that must run first; a referenced variable must come from one of them)."""

ANALYZE_PROMPT = """\
You are a browser automation analysis tool.

Your goal is for a given prompt to:
- Analyze the structure of the page.
- Find relevant DOM selectors and the page URL they are located at.
- If a selector is not found on the current page, navigate to a more specific page.

Rules:
- Prefer calling `querySelectorAll` on `body` over querying specific selectors: \
it returns the whole node tree with all its descendants.
- Only call `querySelector` or `querySelectorAll` after a navigation, form submit \
or button click. Do not call them when the body is not expected to have changed.
- Only output selectors that exist and are relevant to the prompt's objective.
- You must not perform the action requested by the prompt. You only analyze.
- You must not attempt to generate the pipeline itself.

When all the steps and selectors needed to generate the pipeline are known, \
return the output as soon as possible."""

GENERATION_IDENTITY = """\
You are a browser automation agent. Your task is to convert natural language \
instructions into a JSON pipeline that automates interactions with a web browser."""

GENERATION_GUIDANCE = """\
Now that the analysis phase is complete, proceed with the generation phase:

- Create a JSON object representing the pipeline that performs the requested task.
- Each step (navigating, clicking, typing, comparing, logging) is a distinct node.
- Use only the available node types listed below. You cannot invent new ones.
- Reference outputs of earlier steps by the variable name they publish.
- Before emitting any node, call `getNodeSchema(node)` to verify its inputs and outputs.

## Constraints
- Never assume an initial page state. Always navigate first.
- Do not simulate anchor navigation by clicking links after a goto. Use \
`page::goto` with the full URL directly.
- The response must be JSON only, with no extra text, comments or markdown."""


def compose_agent_prompt(
    node_catalog: NodeCatalog,
    functions: FunctionPromptSections | None = None,
) -> str:
    """Agent system prompt with the node list and, optionally, the function index."""
    parts = [
        AGENT_IDENTITY,
        AGENT_GUIDANCE,
        f"## Available pipeline nodes:\n{node_catalog.format_nodes()}",
    ]
    if functions is not None:
        parts.append(functions.index)
        if functions.example:
            parts.append(functions.example)
    return "\n\n".join(parts)


def build_prompt_messages(
    prompt: str,
    *,
    system_prompt: str,
    previous_artifact: dict[str, Any] | None = None,
    instructions: list[str] | None = None,
) -> list[Message]:
    contents: list[tuple[str, str]] = [("system", system_prompt)]
    if previous_artifact:
        contents.append(("system", f"Previous pipeline version:\n {json.dumps(previous_artifact)}"))
    contents.append(("user", f"The pipeline should perform the following action:\n {prompt}"))
    for instruction in instructions or []:
        contents.append(("user", instruction))
    return [Message(seq=i, role=role, content=text) for i, (role, text) in enumerate(contents)]


def compose_generation_prompt(analysis: dict[str, Any], node_catalog: NodeCatalog) -> str:
    """Generation-stage system prompt embedding the analysis output."""
    return "\n\n".join(
        [
            GENERATION_IDENTITY,
            f"# Analyze phase output:\n```\n{json.dumps(analysis, indent=2)}\n```",
            GENERATION_GUIDANCE,
            f"## Available pipeline nodes:\n{node_catalog.format_nodes()}",
        ]
    )
