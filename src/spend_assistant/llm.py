"""Language model boundary: provider-neutral request types and the Gemini adapter."""

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

from google import genai
from google.genai import errors as genai_errors
from google.genai import types
from mcp.types import Tool

from .errors import ExternalServiceError, MalformedFunctionCallError
from .logging_setup import get_logger

log = get_logger(__name__)

ROLE_USER = "user"
ROLE_MODEL = "model"

TOOL_MODES = ("auto", "any", "none")

TRANSIENT_STATUS = {408, 429, 500, 502, 503, 504}


@dataclass(frozen=True)
class ToolCall:
    name: str
    args: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ToolResult:
    name: str
    response: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Part:
    """Exactly one of text, function_call or function_response is set."""

    text: str | None = None
    function_call: ToolCall | None = None
    function_response: ToolResult | None = None


@dataclass(frozen=True)
class Content:
    role: str
    parts: tuple[Part, ...]

    @classmethod
    def text(cls, role: str, text: str) -> "Content":
        return cls(role, (Part(text=text),))

    @classmethod
    def call(cls, call: ToolCall) -> "Content":
        return cls(ROLE_MODEL, (Part(function_call=call),))

    @classmethod
    def result(cls, result: ToolResult) -> "Content":
        return cls(ROLE_USER, (Part(function_response=result),))


@dataclass(frozen=True)
class ModelRequest:
    system: str
    contents: list[Content]
    tools: list[Tool] = field(default_factory=list)
    tool_mode: str = "auto"


@dataclass(frozen=True)
class ModelResponse:
    text: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)


class LanguageModel(Protocol):
    async def generate(self, request: ModelRequest) -> ModelResponse:
        ...


# ============================================================================
# Gemini
# ============================================================================

def to_schema(schema: dict[str, Any]) -> types.Schema:
    """Convert a JSON-schema dict into a Gemini Schema."""
    kwargs: dict[str, Any] = {"type": types.Type(schema.get("type", "type_unspecified").upper())}
    if "description" in schema:
        kwargs["description"] = schema["description"]
    if "enum" in schema:
        kwargs["enum"] = list(schema["enum"])
    if "required" in schema:
        kwargs["required"] = list(schema["required"])
    if "items" in schema:
        kwargs["items"] = to_schema(schema["items"])
    if schema.get("properties"):
        kwargs["properties"] = {k: to_schema(v) for k, v in schema["properties"].items()}
    return types.Schema(**kwargs)


def _to_tools(tools: list[Tool]) -> list[types.Tool]:
    if not tools:
        return []
    decls = [
        types.FunctionDeclaration(
            name=tool.name,
            description=tool.description or "",
            parameters=to_schema(tool.inputSchema),
        )
        for tool in tools
    ]
    return [types.Tool(function_declarations=decls)]


def _to_part(part: Part) -> types.Part:
    if part.function_call is not None:
        return types.Part(function_call=types.FunctionCall(
            name=part.function_call.name,
            args=part.function_call.args,
        ))
    if part.function_response is not None:
        return types.Part(function_response=types.FunctionResponse(
            name=part.function_response.name,
            response=part.function_response.response,
        ))
    return types.Part(text=part.text or "")


def _to_contents(contents: list[Content]) -> list[types.Content]:
    return [types.Content(role=c.role, parts=[_to_part(p) for p in c.parts]) for c in contents]


class GeminiClient:
    """LanguageModel backed by the google-genai SDK.

    Works against the Gemini API with an API key, or Vertex AI when a
    project is given.
    """

    def __init__(
        self,
        model: str,
        *,
        api_key: str | None = None,
        project: str | None = None,
        location: str | None = None,
        client: genai.Client | None = None,
        logger: logging.Logger | None = None,
    ):
        if client is None:
            if project:
                client = genai.Client(vertexai=True, project=project, location=location or "us-central1")
            else:
                client = genai.Client(api_key=api_key)
        self.client = client
        self.model = model
        self.logger = logger or log

    def build_config(self, request: ModelRequest) -> types.GenerateContentConfig:
        if request.tool_mode not in TOOL_MODES:
            raise ValueError(f"unknown tool mode: {request.tool_mode}")
        kwargs: dict[str, Any] = {
            "automatic_function_calling": types.AutomaticFunctionCallingConfig(disable=True),
        }
        if request.system:
            kwargs["system_instruction"] = request.system
        if request.tools:
            kwargs["tools"] = _to_tools(request.tools)
            kwargs["tool_config"] = types.ToolConfig(
                function_calling_config=types.FunctionCallingConfig(mode=request.tool_mode.upper()),
            )
        return types.GenerateContentConfig(**kwargs)

    async def generate(self, request: ModelRequest) -> ModelResponse:
        """Run one generate_content call.

        Raises:
            MalformedFunctionCallError: The model produced an invalid tool call
                and nothing usable.
            ExternalServiceError: API failure, blocked content, or an empty
                response.
        """
        if not request.contents:
            raise ValueError("model request has no content")

        self.logger.debug(
            "gemini request: contents=%d tools=%d mode=%s",
            len(request.contents), len(request.tools), request.tool_mode,
        )
        try:
            resp = await self.client.aio.models.generate_content(
                model=self.model,
                contents=_to_contents(request.contents),
                config=self.build_config(request),
            )
        except genai_errors.APIError as e:
            raise ExternalServiceError(
                "gemini",
                f"failed to generate content: {e}",
                transient=e.code in TRANSIENT_STATUS,
            ) from e

        feedback = resp.prompt_feedback
        if feedback is not None and feedback.block_reason:
            raise ExternalServiceError("gemini", f"content blocked: {feedback.block_reason}")

        text = ""
        calls: list[ToolCall] = []
        malformed = False
        for candidate in resp.candidates or []:
            if candidate.finish_reason == types.FinishReason.MALFORMED_FUNCTION_CALL:
                malformed = True
            elif candidate.finish_reason == types.FinishReason.SAFETY:
                raise ExternalServiceError("gemini", "response blocked by safety filters")
            if candidate.content is None:
                continue
            for part in candidate.content.parts or []:
                if part.function_call is not None:
                    calls.append(ToolCall(name=part.function_call.name or "", args=dict(part.function_call.args or {})))
                elif part.text:
                    text += part.text

        self.logger.debug("gemini response: text_len=%d tool_calls=%d", len(text), len(calls))

        if not text and not calls:
            if malformed:
                raise MalformedFunctionCallError()
            raise ExternalServiceError("gemini", "response contained no text or tool calls")
        return ModelResponse(text=text, tool_calls=calls)
