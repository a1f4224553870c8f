"""
Configuration Management Module

This module handles all application configuration using Pydantic Settings.
Configuration is loaded from environment variables with strong typing and validation.

Design Decisions:
- Use Pydantic Settings for automatic environment variable loading
- Every credential is optional at startup; callers may pass a PAT per request
- Validate enum-like settings at startup (fail-fast approach)
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All sensitive values are loaded from environment variables only,
    never hardcoded or logged.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # =========================================================================
    # Azure DevOps Configuration
    # =========================================================================
    azure_devops_pat: Optional[str] = Field(
        default=None,
        description="Default Personal Access Token, used when a request carries none"
    )

    azure_devops_base_url: str = Field(
        default="https://dev.azure.com",
        description="Base URL of the Azure DevOps REST API"
    )

    azure_devops_api_version: str = Field(
        default="7.0",
        description="api-version query parameter sent with every request"
    )

    azure_devops_timeout: float = Field(
        default=30.0,
        ge=1.0,
        description="HTTP timeout for Azure DevOps requests in seconds"
    )

    azure_devops_rate_limit_rpm: int = Field(
        default=600,
        ge=1,
        description="Azure DevOps API requests allowed per minute"
    )

    max_analysis_content_chars: int = Field(
        default=20000,
        ge=1000,
        description="File content is truncated beyond this length before AI analysis"
    )

    max_display_content_chars: int = Field(
        default=50000,
        ge=1000,
        description="File content is truncated beyond this length for display"
    )

    # =========================================================================
    # Gemini Configuration
    # =========================================================================
    gemini_api_key: Optional[str] = Field(
        default=None,
        description="Google Gemini API key"
    )

    gemini_model: str = Field(
        default="gemini-2.5-flash-lite",
        description="Gemini model used for batch analysis"
    )

    gemini_thinking_budget: int = Field(
        default=15000,
        ge=0,
        description="Thinking token budget for Gemini"
    )

    # =========================================================================
    # GLM Configuration (OpenAI-compatible)
    # =========================================================================
    glm_api_key: Optional[str] = Field(
        default=None,
        description="GLM API key"
    )

    glm_base_url: str = Field(
        default="https://api.z.ai/api/coding/paas/v4",
        description="OpenAI-compatible base URL for GLM"
    )

    glm_model: str = Field(
        default="GLM-4.6",
        description="GLM model used for batch analysis"
    )

    glm_temperature: float = Field(
        default=0.1,
        ge=0.0,
        le=1.0,
        description="Temperature for GLM responses"
    )

    ai_rate_limit_rpm: int = Field(
        default=60,
        ge=1,
        description="LLM requests allowed per minute, per provider"
    )

    # =========================================================================
    # Analysis Configuration
    # =========================================================================
    default_ai_provider: str = Field(
        default="gemini",
        description="Provider used when a request does not name one"
    )

    analysis_batch_size: int = Field(
        default=10,
        ge=1,
        le=100,
        description="Number of changed files sent to the LLM per call"
    )

    analysis_session_ttl_minutes: int = Field(
        default=120,
        ge=1,
        description="Idle minutes before an analysis session is discarded"
    )

    # =========================================================================
    # Retry Configuration
    # =========================================================================
    max_retries: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Maximum attempts for a retryable Azure DevOps request"
    )

    retry_base_delay: float = Field(
        default=1.0,
        ge=0.0,
        description="Base delay between retries in seconds"
    )

    retry_max_delay: float = Field(
        default=30.0,
        ge=0.0,
        description="Maximum delay between retries in seconds"
    )

    # =========================================================================
    # Server Configuration
    # =========================================================================
    host: str = Field(
        default="0.0.0.0",
        description="Host to bind the server"
    )

    port: int = Field(
        default=8000,
        ge=1,
        le=65535,
        description="Port to bind the server"
    )

    # =========================================================================
    # Logging Configuration
    # =========================================================================
    log_level: str = Field(
        default="INFO",
        description="Logging level"
    )

    log_json_format: bool = Field(
        default=True,
        description="Enable JSON logging format"
    )

    log_requests: bool = Field(
        default=False,
        description="Enable request/response logging"
    )

    # =========================================================================
    # Validators
    # =========================================================================
    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensure log level is valid."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v_upper

    @field_validator("default_ai_provider")
    @classmethod
    def validate_provider(cls, v: str) -> str:
        """Ensure the default provider is one we can talk to."""
        valid_providers = {"gemini", "glm"}
        v_lower = v.lower()
        if v_lower not in valid_providers:
            raise ValueError(f"Invalid AI provider: {v}. Must be one of {valid_providers}")
        return v_lower

    @field_validator("azure_devops_base_url", "glm_base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    # =========================================================================
    # Computed Properties
    # =========================================================================
    def resolve_pat(self, override: Optional[str] = None) -> Optional[str]:
        """
        Pick the PAT for a request.

        A PAT supplied with the request wins over the configured default.

        Returns:
            PAT string, or None when neither is available
        """
        if override and override.strip():
            return override.strip()
        return self.azure_devops_pat or None


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached application settings.

    Uses lru_cache to ensure settings are only loaded once,
    which is important for performance and consistency.

    Returns:
        Settings instance
    """
    return Settings()
