"""Runtime settings and logging setup."""

import logging
import os

from pydantic import BaseModel

from mcpbridge.provider import ClaudeProvider, OpenAIProvider, ProviderConfig
from mcpbridge.registry import ProviderRegistry

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s:%(name)s:%(levelname)s:%(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def configure_logging(level: int = logging.INFO, log_file: str | None = None) -> None:
    """Install stream (and optionally file) handlers on the root logger."""
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
        handlers=handlers,
    )


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in {"1", "true", "yes"}


class Settings(BaseModel):
    anthropic_api_key: str | None = None
    openai_api_key: str | None = None
    tools_url: str = "http://localhost:3001/mcp"
    skip_mcp_connection: bool = False
    default_provider: str = "claude"
    claude_model: str = ClaudeProvider.default_model
    openai_model: str = OpenAIProvider.default_model
    max_rounds: int = 10
    max_tokens: int = 4096
    max_task_history: int = 100
    elicitation_timeout: float = 30.0

    @classmethod
    def from_env(cls) -> "Settings":
        values = {
            "anthropic_api_key": os.getenv("ANTHROPIC_API_KEY"),
            "openai_api_key": os.getenv("OPENAI_API_KEY"),
            "tools_url": os.getenv("MCPBRIDGE_TOOLS_URL"),
            "default_provider": os.getenv("MCPBRIDGE_DEFAULT_PROVIDER"),
            "max_rounds": os.getenv("MCPBRIDGE_MAX_ROUNDS"),
            "max_tokens": os.getenv("MCPBRIDGE_MAX_TOKENS"),
            "max_task_history": os.getenv("MCPBRIDGE_MAX_TASK_HISTORY"),
            "elicitation_timeout": os.getenv("MCPBRIDGE_ELICITATION_TIMEOUT"),
        }
        settings = cls(**{k: v for k, v in values.items() if v is not None})
        settings.skip_mcp_connection = _env_flag("MCPBRIDGE_SKIP_MCP_CONNECTION")
        return settings


def build_registry(settings: Settings) -> ProviderRegistry:
    """Register a provider for every API key present in *settings*."""
    registry = ProviderRegistry()
    if settings.anthropic_api_key:
        registry.add("claude", "claude", ProviderConfig(
            name="Claude",
            api_key=settings.anthropic_api_key,
            default_model=settings.claude_model,
        ))
    if settings.openai_api_key:
        registry.add("openai", "openai", ProviderConfig(
            name="OpenAI",
            api_key=settings.openai_api_key,
            default_model=settings.openai_model,
        ))
    if settings.default_provider in registry:
        registry.set_default(settings.default_provider)
    elif registry.default is not None:
        logger.warning(
            f"Default provider {settings.default_provider!r} is not configured; "
            f"using {registry.default!r}"
        )
    return registry
