"""Application configuration settings.

This module defines the application-wide settings using Pydantic's BaseSettings.
It allows for loading configurations from environment variables and .env files,
providing type validation and default values.
"""

from pydantic import Field
from pydantic import field_validator
from pydantic_settings import BaseSettings

# Default list of CORS allowed origins
DEFAULT_CORS_ORIGINS = [
    "http://localhost:3000",
    "http://localhost:5173",
    "http://localhost:8000",
    "http://0.0.0.0:8000",
]


class Settings(BaseSettings):
    """Manages application settings, loading them from environment variables or an .env file.

    Attributes:
        openrouter_api_key: API key for the generation service (last credential fallback).
        llm_base_url: Base URL of the OpenAI-compatible generation endpoint.
        model_id: Identifier for the language model to be used.
        llm_temperature: Sampling temperature, kept low for reproducible reports.
        llm_max_tokens: Upper bound on generated tokens per call.
        single_document_char_cap: Tabular payload cap when exactly one document is attached.
        multi_document_char_cap: Per-document tabular payload cap when several are attached.
        chat_report_context_chars: Budget for the report JSON embedded in chat prompts.
        chat_history_turns: Number of most recent chat turns sent as context.
        default_language: Report language used when the caller does not choose one.
        session_ttl: Seconds a session may stay idle before it is evicted.
        log_level: Level of the application logger.
        cors_allowed_origins: List of allowed origins for CORS.
        LLM_CONNECT_TIMEOUT: LLM client connect timeout in seconds.
        LLM_READ_TIMEOUT: LLM client read timeout in seconds.
        llm_deadline_seconds: Overall deadline for a single generation call.
    """

    openrouter_api_key: str | None = Field(default=None)
    llm_base_url: str = Field(default="https://openrouter.ai/api/v1")
    model_id: str = Field(default="google/gemini-2.5-flash")
    llm_temperature: float = Field(default=0.2)
    llm_max_tokens: int = Field(default=16_000)

    single_document_char_cap: int = Field(default=900_000)
    multi_document_char_cap: int = Field(default=500_000)

    chat_report_context_chars: int = Field(default=30_000)
    chat_history_turns: int = Field(default=10)

    default_language: str = Field(default="it")

    session_ttl: int = Field(default=900)
    log_level: str = Field(default="DEBUG")

    cors_allowed_origins: list[str] = Field(
        default_factory=lambda: list(DEFAULT_CORS_ORIGINS),
    )

    LLM_CONNECT_TIMEOUT: float = Field(default=10.0, description="LLM client connect timeout in seconds.")
    LLM_READ_TIMEOUT: float = Field(default=180.0, description="LLM client read timeout in seconds.")
    llm_deadline_seconds: float = Field(default=240.0, description="Overall deadline for one generation call.")

    model_config = {
        "env_file": ".env",
        "protected_namespaces": ("settings_",),
        "env_prefix": "",  # No prefix for environment variables
        "extra": "ignore",
    }

    @field_validator("cors_allowed_origins", mode="before")  # type: ignore
    @classmethod
    def assemble_cors_origins(cls, v: str | list[str] | None) -> list[str]:
        """Assembles the list of CORS allowed origins.

        If 'v' is a string, it splits it by commas. If 'v' is already a list,
        it's used directly. Otherwise, returns the default list of origins.
        """
        if isinstance(v, str) and v:
            return [origin.strip() for origin in v.split(",")]
        elif isinstance(v, list):
            return v
        return list(DEFAULT_CORS_ORIGINS)


settings = Settings()
