import os
import sys
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

from observability.classifier import DEFAULT_SYSTEM_KEYWORDS


class Settings(BaseSettings):
    """
    Application configuration settings.
    """
    model_config = SettingsConfigDict(env_prefix="LIFX_GATEWAY_", env_file=".env", extra="ignore")

    # Service Info
    service_name: str = "lifx-mcp-gateway"
    version: str = "1.0.0"
    environment: str = "production"
    log_level: str = "INFO"

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 3001
    access_key: str = "LifxDemo"
    allowed_origins: List[str] = ["http://localhost:3000", "http://localhost:5173"]

    # Tool Process (MCP worker)
    worker_command: Optional[List[str]] = None
    worker_log_level: str = "info"
    lifx_api_base: Optional[str] = None
    spawn_timeout: float = 30.0
    method_timeout: float = 10.0
    init_timeout: float = 5.0
    kill_grace: float = 5.0
    max_concurrent_mcp: int = 5

    # Sessions and rate limits
    session_request_limit: int = 100
    session_max_age: float = 24 * 60 * 60
    session_cleanup_interval: float = 60 * 60
    ip_rate_limit_window: float = 60.0
    ip_rate_limit_max: int = 30

    # Log sink
    log_buffer_size: int = 500
    log_max_sessions: int = 50
    log_query_max: int = 100
    system_log_keywords: List[str] = list(DEFAULT_SYSTEM_KEYWORDS)

    # LLM
    llm_provider: str = "openai"
    llm_model: str = "gpt-4o-mini"
    llm_temperature: float = 0.2
    llm_timeout: float = 60.0
    llm_base_url: Optional[str] = None
    azure_openai_endpoint: Optional[str] = None
    azure_openai_api_version: str = "2024-02-15-preview"
    azure_openai_deployment_name: Optional[str] = None
    default_max_tokens: int = 1000
    max_tool_rounds: int = 5

    # Paths
    base_dir: str = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
    prompts_dir: str = os.path.join(base_dir, "prompts")

    @property
    def is_development(self) -> bool:
        return self.environment.lower() in ("development", "dev", "local")

    @property
    def resolved_worker_command(self) -> List[str]:
        return list(self.worker_command or [sys.executable, "-m", "lifx_mcp"])


settings = Settings()
