"""Conversational assistant that answers questions through analytics tool calls."""

import asyncio
import enum
import logging
import weakref
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Any, Protocol

from .errors import MalformedFunctionCallError, ModelTimeoutError, ValidationError
from .llm import ROLE_MODEL, ROLE_USER, Content, LanguageModel, ModelRequest, ModelResponse, ToolCall, ToolResult
from .logging_setup import get_logger
from .models import ROLE_ASSISTANT, ROLE_TOOL, ConversationMessage
from .tools import ToolRegistry

log = get_logger(__name__)

DEFAULT_HISTORY_LIMIT = 8


class ConversationStore(Protocol):
    def save_message(self, user_id: str, session_id: str, msg: ConversationMessage) -> None:
        ...

    def list_messages(
        self, user_id: str, session_id: str, limit: int = 0, now: datetime | None = None
    ) -> list[ConversationMessage]:
        ...


class TurnState(enum.Enum):
    AWAITING_MODEL = "awaiting_model"
    TOOL_REQUESTED = "tool_requested"
    TOOL_EXECUTED = "tool_executed"
    AWAITING_FINAL_MODEL = "awaiting_final_model"
    DONE = "done"
    FAILED = "failed"


def system_prompt(now: datetime) -> str:
    return (
        "You are a finance analytics assistant. Use tools for deterministic queries. "
        "Defaults: pending=false; date range defaults to month-to-date if not provided. "
        "Do not fabricate data; only answer from tool results. "
        "If you did not call a tool, ask a clarification question. "
        f"Today is {now:%Y-%m-%d} ({now:%A}, US). "
        "Important: never include role labels like 'Assistant:' or 'User:' in responses. "
        "Respond with the answer only."
    )


def strict_system_prompt(now: datetime) -> str:
    return system_prompt(now) + (
        " You must respond with a valid tool call that matches the schema."
        " If required information is missing, ask a clarification question instead of calling a tool."
    )


def build_contents(history: list[ConversationMessage], message: str) -> list[Content]:
    """Rebuild persisted history into model content and append the new user text.

    Empty assistant messages are skipped. A tool message becomes the model's
    function call followed by the function response.
    """
    contents: list[Content] = []
    for msg in history:
        if msg.role == ROLE_USER:
            contents.append(Content.text(ROLE_USER, msg.content))
        elif msg.role == ROLE_ASSISTANT:
            if msg.content:
                contents.append(Content.text(ROLE_MODEL, msg.content))
        elif msg.role == ROLE_TOOL and msg.tool_name:
            contents.append(Content.call(ToolCall(msg.tool_name, dict(msg.tool_args or {}))))
            contents.append(Content.result(ToolResult(msg.tool_name, dict(msg.tool_result or {}))))
    contents.append(Content.text(ROLE_USER, message))
    return contents


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AssistantOrchestrator:
    """Runs one conversational turn at a time per session.

    A turn loads recent history, asks the model for a tool call, executes at
    most one tool, persists the exchange, and asks the model again to phrase
    the answer from the tool result.
    """

    def __init__(
        self,
        model: LanguageModel,
        registry: ToolRegistry,
        store: ConversationStore,
        *,
        ttl: timedelta = timedelta(0),
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        model_timeout: float | None = 60.0,
        clock: Callable[[], datetime] = _utcnow,
        logger: logging.Logger | None = None,
    ):
        self.model = model
        self.registry = registry
        self.store = store
        self.ttl = ttl
        self.history_limit = history_limit
        self.model_timeout = model_timeout
        self.clock = clock
        self.logger = logger or log
        self._locks: weakref.WeakValueDictionary[tuple[str, str], asyncio.Lock] = weakref.WeakValueDictionary()

    def _session_lock(self, user_id: str, session_id: str) -> asyncio.Lock:
        key = (user_id, session_id)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    async def query(self, user_id: str, session_id: str, message: str) -> dict[str, Any]:
        """Answer one user message.

        Returns:
            {"answer": str} plus {"debug": {"tool", "args"}} when a tool ran.

        Raises:
            ValidationError: The model asked for an unknown tool or passed
                invalid arguments. Nothing is persisted.
            MalformedFunctionCallError: The model produced malformed tool
                calls twice in a row.
            ExternalServiceError: Model or store failure, including timeouts.
        """
        lock = self._session_lock(user_id, session_id)
        async with lock:
            try:
                return await self._run_turn(user_id, session_id, message)
            except Exception:
                self._enter(TurnState.FAILED, user_id, session_id)
                raise

    async def _run_turn(self, user_id: str, session_id: str, message: str) -> dict[str, Any]:
        self._enter(TurnState.AWAITING_MODEL, user_id, session_id)
        history = self.store.list_messages(user_id, session_id, self.history_limit, now=self.clock())
        contents = build_contents(history, message)
        tools = self.registry.tools

        now = self.clock()
        request = ModelRequest(system=system_prompt(now), contents=contents, tools=tools, tool_mode="auto")
        try:
            resp = await self._generate(request)
        except MalformedFunctionCallError:
            self.logger.warning("malformed function call, retrying with strict prompt")
            strict = ModelRequest(system=strict_system_prompt(now), contents=contents, tools=tools, tool_mode="auto")
            resp = await self._generate(strict)

        if not resp.tool_calls:
            self._save(user_id, session_id, ConversationMessage.user(message))
            if resp.text:
                self._save(user_id, session_id, ConversationMessage.assistant(resp.text))
            self._enter(TurnState.DONE, user_id, session_id)
            return {"answer": resp.text}

        if len(resp.tool_calls) > 1:
            self.logger.warning(
                "model returned %d tool calls, using only %s",
                len(resp.tool_calls), resp.tool_calls[0].name,
            )
        call = resp.tool_calls[0]
        self._enter(TurnState.TOOL_REQUESTED, user_id, session_id, call.name)
        if not self.registry.has_tool(call.name):
            raise ValidationError(f"unsupported tool: {call.name}")

        result = await asyncio.to_thread(self.registry.execute, user_id, call.name, call.args)
        self._enter(TurnState.TOOL_EXECUTED, user_id, session_id, call.name)

        self._save(user_id, session_id, ConversationMessage.user(message))
        self._save(user_id, session_id, ConversationMessage.tool(call.name, dict(call.args), result))

        self._enter(TurnState.AWAITING_FINAL_MODEL, user_id, session_id)
        final = await self._generate(ModelRequest(
            system=system_prompt(self.clock()),
            contents=[*contents, Content.call(call), Content.result(ToolResult(call.name, result))],
            tools=tools,
            tool_mode="none",
        ))
        self._save(user_id, session_id, ConversationMessage.assistant(final.text))
        self._enter(TurnState.DONE, user_id, session_id)

        return {"answer": final.text, "debug": {"tool": call.name, "args": dict(call.args)}}

    async def _generate(self, request: ModelRequest) -> ModelResponse:
        if not self.model_timeout or self.model_timeout <= 0:
            return await self.model.generate(request)
        try:
            return await asyncio.wait_for(self.model.generate(request), timeout=self.model_timeout)
        except asyncio.TimeoutError as e:
            raise ModelTimeoutError(self.model_timeout) from e

    def _save(self, user_id: str, session_id: str, msg: ConversationMessage) -> None:
        created_at = self.clock()
        expires_at = created_at + self.ttl if self.ttl > timedelta(0) else None
        self.store.save_message(user_id, session_id, replace(msg, created_at=created_at, expires_at=expires_at))

    def _enter(self, state: TurnState, user_id: str, session_id: str, detail: str = "") -> None:
        self.logger.debug("turn %s/%s -> %s %s", user_id, session_id, state.value, detail)
