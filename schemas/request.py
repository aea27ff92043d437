"""
Request Models

External contract for control requests. Clients may send snake_case or
the camelCase field names of earlier web clients.

Field-level rules that have their own error code (credential format,
message length, token budget) are checked in check(), not by pydantic,
so the client receives that code instead of a generic validation error.
"""

from typing import Any, Dict, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from mcp_client.registry import DIRECT_ACTIONS, is_allowed_action
from schemas.errors import CredentialFormatError, InvalidRequest


MIN_LIFX_KEY_LENGTH = 20
MIN_LLM_KEY_LENGTH = 20
MAX_MESSAGE_LENGTH = 1000
MIN_MAX_TOKENS = 50
MAX_MAX_TOKENS = 4000


def validate_lifx_key(key: Optional[str]) -> str:
    if not key or len(key) < MIN_LIFX_KEY_LENGTH:
        raise CredentialFormatError("Invalid LIFX API key format")
    return key


def validate_llm_key(key: Optional[str]) -> str:
    if not key or len(key) < MIN_LLM_KEY_LENGTH:
        raise CredentialFormatError("Invalid LLM API key format", code="INVALID_LLM_KEY")
    return key


def validate_action(action: str) -> str:
    if not is_allowed_action(action):
        raise InvalidRequest(
            f"Invalid action. Allowed actions: {', '.join(sorted(DIRECT_ACTIONS))}",
            code="INVALID_ACTION",
        )
    return action


class ChatRequest(BaseModel):
    """API request for LLM-mediated light control."""
    model_config = ConfigDict(populate_by_name=True)

    llm_api_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("llm_api_key", "llmApiKey", "apiKey"),
        description="Caller's LLM provider key (used for this request only)",
    )
    lifx_api_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("lifx_api_key", "lifxApiKey"),
        description="Caller's LIFX token (passed to the worker's environment only)",
    )
    message: Optional[str] = Field(default=None, description="Natural-language request")
    max_tokens: Optional[int] = Field(
        default=None,
        validation_alias=AliasChoices("max_tokens", "maxTokens"),
        description="Generation budget per model turn",
    )
    restrictive: bool = Field(
        default=True,
        validation_alias=AliasChoices("restrictive", "systemPromptEnabled"),
        description="Lighting-only system prompt when true",
    )

    def check(self) -> "ChatRequest":
        """
        Check the fields that carry their own error codes.

        Raises:
            CredentialFormatError: Bad LLM or LIFX key
            InvalidRequest: Bad message or token budget
        """
        validate_llm_key(self.llm_api_key)
        validate_lifx_key(self.lifx_api_key)
        if not self.message or not self.message.strip() or len(self.message) > MAX_MESSAGE_LENGTH:
            raise InvalidRequest(
                f"Message required and must be under {MAX_MESSAGE_LENGTH} characters",
                code="INVALID_MESSAGE",
            )
        if self.max_tokens is not None and not (MIN_MAX_TOKENS <= self.max_tokens <= MAX_MAX_TOKENS):
            raise InvalidRequest(
                f"Max tokens must be between {MIN_MAX_TOKENS} and {MAX_MAX_TOKENS}",
                code="INVALID_MAX_TOKENS",
            )
        return self


class LifxControlRequest(BaseModel):
    """
    API request for direct tool invocation.

    Every field other than the LIFX key is passed to the tool as an argument.
    """
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    lifx_api_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("lifx_api_key", "lifxApiKey"),
    )

    def tool_arguments(self) -> Dict[str, Any]:
        return dict(self.model_extra or {})

    def check(self) -> "LifxControlRequest":
        validate_lifx_key(self.lifx_api_key)
        return self


class LlmTestRequest(BaseModel):
    """API request for the LLM connectivity check."""
    model_config = ConfigDict(populate_by_name=True)

    llm_api_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("llm_api_key", "llmApiKey", "apiKey"),
    )

    def check(self) -> "LlmTestRequest":
        if not self.llm_api_key:
            raise InvalidRequest("LLM API key required", code="MISSING_LLM_KEY")
        return self
