"""Pipeline artifact: schema, compilation, equality, function catalog."""

from pipeline_agent.pipeline.artifact import artifacts_equal, canonicalize
from pipeline_agent.pipeline.compiler import (
    CompiledPipeline,
    CompiledStep,
    CompileResult,
    PipelineCompiler,
    StepGraphCompiler,
)
from pipeline_agent.pipeline.functions import (
    FunctionCatalog,
    FunctionDescriptor,
    FunctionParameter,
    FunctionPromptSections,
    InMemoryFunctionCatalog,
    build_function_prompt_sections,
)
from pipeline_agent.pipeline.json_value import (
    JsonArray,
    JsonBoolean,
    JsonNull,
    JsonNumber,
    JsonObject,
    JsonString,
    JsonValue,
    from_python,
)
from pipeline_agent.pipeline.schema import (
    NodeCatalog,
    NodeDefinition,
    SchemaValidator,
    ValidationResult,
    create_pipeline_tool_schema,
)

__all__ = [
    "artifacts_equal",
    "canonicalize",
    "CompiledPipeline",
    "CompiledStep",
    "CompileResult",
    "PipelineCompiler",
    "StepGraphCompiler",
    "FunctionCatalog",
    "FunctionDescriptor",
    "FunctionParameter",
    "FunctionPromptSections",
    "InMemoryFunctionCatalog",
    "build_function_prompt_sections",
    "JsonArray",
    "JsonBoolean",
    "JsonNull",
    "JsonNumber",
    "JsonObject",
    "JsonString",
    "JsonValue",
    "from_python",
    "NodeCatalog",
    "NodeDefinition",
    "SchemaValidator",
    "ValidationResult",
    "create_pipeline_tool_schema",
]
