"""Provider-neutral chat types and response normalization.

Every LLM backend implements :class:`LLMClient`: one async ``chat`` call that
takes the running conversation plus optional tool schemas and returns a
normalized :class:`LLMResponse`.  Providers disagree on the wire shape of
assistant messages; :func:`parse_completion_message` folds the variants
(plain string content, content-block arrays, top-level ``tool_calls``,
inline ``<think>`` text) into one form.
"""

from __future__ import annotations

import json
import re
import uuid
from typing import Any, Literal, Protocol, runtime_checkable

from pydantic import BaseModel, Field

from taskbots.core.logging import get_logger

logger = get_logger("agents.llm")

Role = Literal["system", "user", "assistant", "tool"]

_THINK_BLOCK_RE = re.compile(r"<think>(.*?)(?:</think>|$)", re.S | re.I)


class LLMError(Exception):
    """Raised when a provider answers with an unusable payload."""


class ToolCall(BaseModel):
    id: str
    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)


class ChatMessage(BaseModel):
    role: Role
    content: str = ""
    tool_call_id: str | None = None
    name: str | None = None
    tool_calls: list[ToolCall] = Field(default_factory=list)

    @classmethod
    def system(cls, content: str) -> "ChatMessage":
        return cls(role="system", content=content)

    @classmethod
    def user(cls, content: str) -> "ChatMessage":
        return cls(role="user", content=content)

    @classmethod
    def assistant(cls, content: str = "", tool_calls: list[ToolCall] | None = None) -> "ChatMessage":
        return cls(role="assistant", content=content, tool_calls=tool_calls or [])

    @classmethod
    def tool(cls, call: ToolCall, content: str) -> "ChatMessage":
        return cls(role="tool", content=content, tool_call_id=call.id, name=call.name)


class Usage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class LLMResponse(BaseModel):
    content: str | None = None
    thinking: str | None = None
    tool_calls: list[ToolCall] = Field(default_factory=list)
    finish_reason: str = "stop"
    usage: Usage = Field(default_factory=Usage)


@runtime_checkable
class LLMClient(Protocol):
    """Minimal chat interface used by the agent brains."""

    async def chat(
        self,
        messages: list[ChatMessage],
        tools: list[dict[str, Any]] | None = None,
    ) -> LLMResponse:
        ...


# ---------------------------------------------------------------------------
# Normalization helpers
# ---------------------------------------------------------------------------


def new_tool_call_id() -> str:
    return f"tool_{uuid.uuid4().hex[:12]}"


def split_thinking(text: str | None) -> tuple[str | None, str | None]:
    """Split inline ``<think>`` blocks out of ``text``.  Returns (content, thinking)."""
    if not text:
        return text, None
    blocks = [b.strip() for b in _THINK_BLOCK_RE.findall(text) if b.strip()]
    if not blocks:
        return text, None
    content = _THINK_BLOCK_RE.sub("", text).strip()
    return (content or None), "\n".join(blocks)


def parse_tool_arguments(raw: Any) -> dict[str, Any]:
    """Tool arguments arrive as a JSON string or an object; bad JSON becomes {}."""
    if raw is None or raw == "":
        return {}
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, str):
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Failed to parse tool call arguments: %s", raw[:200])
            return {}
        return parsed if isinstance(parsed, dict) else {}
    return {}


def parse_completion_message(
    message: dict[str, Any],
    finish_reason: str | None = None,
    usage: dict[str, Any] | None = None,
) -> LLMResponse:
    """Normalize an OpenAI-style assistant ``message`` into an :class:`LLMResponse`."""
    content: str | None = None
    thinking_parts: list[str] = []
    tool_calls: list[ToolCall] = []
    seen_ids: set[str] = set()

    def _add_call(call_id: str | None, name: str | None, arguments: Any) -> None:
        if call_id and call_id in seen_ids:
            return
        call = ToolCall(
            id=call_id or new_tool_call_id(),
            name=name or "",
            arguments=parse_tool_arguments(arguments),
        )
        seen_ids.add(call.id)
        tool_calls.append(call)

    raw_content = message.get("content")
    if isinstance(raw_content, str):
        content = raw_content
    elif isinstance(raw_content, list):
        text_parts: list[str] = []
        for block in raw_content:
            if not isinstance(block, dict):
                continue
            kind = block.get("type")
            if kind == "text" and block.get("text"):
                text_parts.append(block["text"])
            elif kind == "thinking" and block.get("thinking"):
                thinking_parts.append(block["thinking"])
            elif kind == "tool_use":
                _add_call(block.get("id"), block.get("name"), block.get("input"))
        if text_parts:
            content = "\n".join(text_parts)

    content, inline_thinking = split_thinking(content)
    if inline_thinking:
        thinking_parts.append(inline_thinking)
    reasoning = message.get("reasoning_content")
    if isinstance(reasoning, str) and reasoning.strip():
        thinking_parts.append(reasoning.strip())

    for tc in message.get("tool_calls") or []:
        function = tc.get("function") or {}
        _add_call(tc.get("id"), function.get("name"), function.get("arguments"))

    usage = usage or {}
    response = LLMResponse(
        content=content,
        thinking="\n".join(thinking_parts) if thinking_parts else None,
        tool_calls=tool_calls,
        finish_reason=finish_reason or ("tool_calls" if tool_calls else "stop"),
        usage=Usage(
            prompt_tokens=usage.get("prompt_tokens") or 0,
            completion_tokens=usage.get("completion_tokens") or 0,
            total_tokens=usage.get("total_tokens") or 0,
        ),
    )
    logger.debug(
        "Parsed LLM response (content=%s, thinking=%s, tool_calls=%d, finish=%s)",
        bool(response.content), bool(response.thinking), len(tool_calls), response.finish_reason,
    )
    return response


def format_message(msg: ChatMessage) -> dict[str, Any]:
    """Render a :class:`ChatMessage` in OpenAI chat-completions wire format."""
    formatted: dict[str, Any] = {"role": msg.role, "content": msg.content}
    if msg.role == "tool" and msg.tool_call_id:
        formatted["tool_call_id"] = msg.tool_call_id
        if msg.name:
            formatted["name"] = msg.name
    if msg.role == "assistant" and msg.tool_calls:
        formatted["tool_calls"] = [
            {
                "id": tc.id,
                "type": "function",
                "function": {"name": tc.name, "arguments": json.dumps(tc.arguments)},
            }
            for tc in msg.tool_calls
        ]
        formatted["content"] = msg.content or ""
    return formatted
