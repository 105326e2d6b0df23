"""Adapter from a LangChain chat model to :class:`~taskbots.agents.llm.LLMClient`."""

from __future__ import annotations

from typing import Any

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import (
    AIMessage,
    BaseMessage,
    HumanMessage,
    SystemMessage,
    ToolMessage,
)

from taskbots.agents.llm import ChatMessage, LLMResponse, parse_completion_message
from taskbots.core.logging import get_logger

logger = get_logger("agents.langchain_client")


def to_langchain_messages(messages: list[ChatMessage]) -> list[BaseMessage]:
    converted: list[BaseMessage] = []
    for msg in messages:
        if msg.role == "system":
            converted.append(SystemMessage(content=msg.content))
        elif msg.role == "user":
            converted.append(HumanMessage(content=msg.content))
        elif msg.role == "assistant":
            converted.append(
                AIMessage(
                    content=msg.content,
                    tool_calls=[
                        {"id": tc.id, "name": tc.name, "args": tc.arguments}
                        for tc in msg.tool_calls
                    ],
                )
            )
        else:
            converted.append(
                ToolMessage(
                    content=msg.content,
                    tool_call_id=msg.tool_call_id or "",
                    name=msg.name,
                )
            )
    return converted


def from_ai_message(message: AIMessage) -> LLMResponse:
    """Normalize an :class:`AIMessage` the same way as a raw completion."""
    raw: dict[str, Any] = {
        "content": message.content,
        "tool_calls": [
            {"id": tc.get("id"), "function": {"name": tc.get("name"), "arguments": tc.get("args")}}
            for tc in message.tool_calls
        ],
    }
    meta = message.response_metadata or {}
    finish_reason = meta.get("finish_reason") or meta.get("stop_reason") or meta.get("done_reason")
    usage_meta = message.usage_metadata or {}
    usage = {
        "prompt_tokens": usage_meta.get("input_tokens", 0),
        "completion_tokens": usage_meta.get("output_tokens", 0),
        "total_tokens": usage_meta.get("total_tokens", 0),
    }
    if message.tool_calls and finish_reason in ("tool_use", None):
        finish_reason = "tool_calls"
    return parse_completion_message(raw, finish_reason=finish_reason, usage=usage)


class LangChainChatClient:
    """Runs a LangChain :class:`BaseChatModel` behind the ``LLMClient`` interface."""

    def __init__(self, model: BaseChatModel) -> None:
        self.model = model

    async def chat(
        self,
        messages: list[ChatMessage],
        tools: list[dict[str, Any]] | None = None,
    ) -> LLMResponse:
        runnable = self.model.bind_tools(tools) if tools else self.model
        result = await runnable.ainvoke(to_langchain_messages(messages))
        if not isinstance(result, AIMessage):
            result = AIMessage(content=str(getattr(result, "content", result)))
        return from_ai_message(result)
