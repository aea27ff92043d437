"""
LangChain Adapter

Encapsulates all LangChain logic for the chat loop.
Exposes simple Python types only - NO LangChain objects leak out.

DESIGN RULES (LOCK THIS IN):
- LangChain stays INSIDE this module
- The orchestrator sees ModelTurn, tool calls as dicts, and token counts
- One ChatSession per request; never shared
- Any model failure surfaces as ModelError

BOUNDARY:
    API ❌
    Orchestrator ❌  (uses ChatSession only)
    MCP client ❌
    LLM adapter ✅  ← ONLY HERE
"""

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage, ToolMessage
from langchain_openai import AzureChatOpenAI, ChatOpenAI

from schemas.errors import ModelError

# Load environment variables from .env file
load_dotenv()

logger = logging.getLogger(__name__)


@dataclass
class LLMConfig:
    """Provider settings that do not vary per request."""
    provider: str = "openai"
    model: str = "gpt-4o-mini"
    temperature: float = 0.2
    timeout: float = 60.0
    base_url: Optional[str] = None
    azure_endpoint: Optional[str] = None
    azure_api_version: str = "2024-02-15-preview"
    azure_deployment: Optional[str] = None


@dataclass
class ModelTurn:
    """One model response, in plain Python types."""
    text: str
    tool_calls: List[Dict[str, Any]] = field(default_factory=list)
    input_tokens: int = 0
    output_tokens: int = 0
    stop_reason: Optional[str] = None

    @property
    def wants_tools(self) -> bool:
        return bool(self.tool_calls)


def build_chat_model(api_key: str, max_tokens: int, config: LLMConfig) -> BaseChatModel:
    """Create the LangChain chat model for one request."""
    if config.provider == "azure":
        return AzureChatOpenAI(
            azure_deployment=config.azure_deployment or os.environ.get("AZURE_OPENAI_DEPLOYMENT", config.model),
            api_version=config.azure_api_version,
            azure_endpoint=config.azure_endpoint or os.environ.get("AZURE_OPENAI_ENDPOINT"),
            api_key=api_key,
            max_tokens=max_tokens,
            temperature=config.temperature,
            timeout=config.timeout,
        )
    return ChatOpenAI(
        model=config.model,
        api_key=api_key,
        base_url=config.base_url,
        max_tokens=max_tokens,
        temperature=config.temperature,
        timeout=config.timeout,
    )


def _text_of(message: AIMessage) -> str:
    content = message.content
    if isinstance(content, str):
        return content
    # Content blocks (list of str / {"type": "text", "text": ...})
    parts = []
    for block in content:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(block.get("text", ""))
    return "".join(parts)


class ChatSession:
    """
    Conversation state for one chat request.

    Tools are OpenAI function dicts, bound once at construction.
    """

    def __init__(self, llm: BaseChatModel, system_prompt: str, tools: Optional[List[Dict[str, Any]]] = None):
        self._llm = llm.bind_tools(tools) if tools else llm
        self._messages: List[BaseMessage] = [SystemMessage(content=system_prompt)]

    @property
    def message_count(self) -> int:
        return len(self._messages)

    def add_user(self, text: str) -> None:
        self._messages.append(HumanMessage(content=text))

    async def next_turn(self) -> ModelTurn:
        """
        Ask the model for its next response.

        Raises:
            ModelError: Provider or network failure
        """
        try:
            response = await self._llm.ainvoke(self._messages)
        except Exception as e:
            logger.warning(f"LLM call failed: {type(e).__name__}: {e}")
            raise ModelError(f"LLM API error: {e}") from e

        self._messages.append(response)

        usage = getattr(response, "usage_metadata", None) or {}
        metadata = getattr(response, "response_metadata", None) or {}
        tool_calls = [
            {"id": call.get("id") or "", "name": call["name"], "args": call.get("args") or {}}
            for call in (getattr(response, "tool_calls", None) or [])
        ]
        return ModelTurn(
            text=_text_of(response),
            tool_calls=tool_calls,
            input_tokens=usage.get("input_tokens", 0),
            output_tokens=usage.get("output_tokens", 0),
            stop_reason=metadata.get("finish_reason"),
        )

    def add_tool_result(self, call_id: str, content: Any, is_error: bool = False) -> None:
        """Feed one tool result back to the model."""
        if not isinstance(content, str):
            content = json.dumps(content)
        self._messages.append(ToolMessage(
            content=content,
            tool_call_id=call_id,
            status="error" if is_error else "success",
        ))


class ChatSessionFactory:
    """Creates a ChatSession per request from the caller's API key."""

    def __init__(self, config: Optional[LLMConfig] = None):
        self._config = config or LLMConfig()

    @property
    def config(self) -> LLMConfig:
        return self._config

    def __call__(
        self,
        api_key: str,
        system_prompt: str,
        tools: Optional[List[Dict[str, Any]]] = None,
        max_tokens: int = 1000,
    ) -> ChatSession:
        llm = build_chat_model(api_key, max_tokens, self._config)
        return ChatSession(llm, system_prompt, tools)
