"""
Centralized configuration management using Pydantic Settings.
Loads swarm defaults from environment variables with fallback to a .env file.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator
from typing import Optional


class Settings(BaseSettings):
    """
    Package-wide defaults for swarms, model clients and the data stream protocol.
    Every value can be overridden with a SWARM_* environment variable.
    """

    # Model Configuration
    default_model: str = Field(
        default="gpt-4o-mini",
        description="Model used when neither the agent nor the swarm supplies one"
    )
    openai_api_key: Optional[str] = Field(
        default=None,
        validation_alias="OPENAI_API_KEY",
        description="API key for the bundled OpenAI model client"
    )
    openai_base_url: Optional[str] = None

    # Turn Loop Configuration
    default_max_turns: int = Field(
        default=100,
        ge=1,
        description="Global turn budget (assistant messages) for one invocation"
    )
    context_parameter_name: str = Field(
        default="swarm_context",
        description="Reserved action parameter that receives the shared context"
    )
    return_to_queen: bool = False

    # Data Stream Protocol Defaults
    stream_send_usage: bool = True
    stream_send_reasoning: bool = False
    stream_send_sources: bool = False
    stream_send_start: bool = True
    stream_send_finish: bool = True
    expose_error_messages: bool = Field(
        default=False,
        description="Forward raw exception text to stream clients instead of a masked message"
    )

    # Logging
    log_level: str = "INFO"
    log_json: bool = True

    model_config = SettingsConfigDict(
        env_prefix="SWARM_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore"
    )

    @field_validator("context_parameter_name")
    @classmethod
    def _context_parameter_is_identifier(cls, value: str) -> str:
        if not value.isidentifier():
            raise ValueError("SWARM_CONTEXT_PARAMETER_NAME must be a valid identifier")
        return value


# Global settings instance
settings = Settings()
