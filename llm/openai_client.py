"""
OpenAI Client Wrapper

Connectivity check for a caller-supplied LLM key using the OpenAI SDK.

DESIGN RULES:
- No retries or error handling frameworks
- No streaming
- No prompt logging
- The key is used for one request and never stored
"""

import os
import time
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from openai import AzureOpenAI, OpenAI, OpenAIError

from llm.langchain_adapter import LLMConfig

# Load environment variables from .env file
load_dotenv()


def _client(api_key: str, config: LLMConfig):
    if config.provider == "azure":
        return AzureOpenAI(
            api_key=api_key,
            api_version=config.azure_api_version,
            azure_endpoint=config.azure_endpoint or os.environ.get("AZURE_OPENAI_ENDPOINT", ""),
            timeout=config.timeout,
        )
    return OpenAI(api_key=api_key, base_url=config.base_url, timeout=config.timeout)


def check_connection(api_key: str, config: Optional[LLMConfig] = None) -> Dict[str, Any]:
    """
    Send a tiny completion to verify the key works.

    Args:
        api_key: Caller's LLM API key
        config: Provider settings

    Returns:
        {"success": bool, "message" | "error", "model", "latency_ms"}
    """
    config = config or LLMConfig()
    model = config.azure_deployment if config.provider == "azure" and config.azure_deployment else config.model
    start_time = time.time()

    try:
        response = _client(api_key, config).chat.completions.create(
            model=model,
            max_tokens=10,
            messages=[{"role": "user", "content": "Hello"}],
        )
    except OpenAIError as e:
        return {
            "success": False,
            "error": str(e),
            "model": model,
            "latency_ms": int((time.time() - start_time) * 1000),
        }

    tokens_used = response.usage.total_tokens if response.usage else 0
    return {
        "success": True,
        "message": "LLM API connection successful",
        "model": model,
        "tokens_used": tokens_used,
        "latency_ms": int((time.time() - start_time) * 1000),
    }
