"""
Extractor Configuration Management

Environment-aware settings for secrets and runtime switches. Tunable analysis
parameters (models, temperatures, limits, timeouts) live in ANALYZER_CONFIG;
this module only carries values that differ per deployment.

Design Considerations:
- Secrets loaded from environment or .env, never hard-coded
- Optional service keys: a missing key disables that backend
- Single cached settings instance per process
"""

from enum import Enum
from functools import lru_cache
from typing import Optional

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings


class EnvironmentType(str, Enum):
    """Valid environment types for configuration context."""
    DEVELOPMENT = "development"
    TESTING = "testing"
    PRODUCTION = "production"


class ExtractorSettings(BaseSettings):
    """
    Runtime settings for the extraction pipeline.

    Service keys are optional: without FIRECRAWL_API_KEY the direct HTML
    fetcher is used, without TAVILY_API_KEY search strategies degrade to
    fetch-only.
    """
    ENVIRONMENT: EnvironmentType = Field(
        default=EnvironmentType.DEVELOPMENT,
        description="Runtime environment context"
    )
    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level"
    )
    LOG_FILE: Optional[str] = Field(
        default=None,
        description="Optional log file path"
    )

    GROQ_API_KEY: Optional[SecretStr] = Field(
        default=None,
        description="API key for the Groq extraction oracle"
    )
    FIRECRAWL_API_KEY: Optional[SecretStr] = Field(
        default=None,
        description="API key for the Firecrawl fetch backend"
    )
    TAVILY_API_KEY: Optional[SecretStr] = Field(
        default=None,
        description="API key for the Tavily search backend"
    )

    EMAIL_ANALYSIS_DEBUG: bool = Field(
        default=False,
        description="Write per-stage run snapshots to disk"
    )
    DEBUG_RUNS_DIR: str = Field(
        default="debug-analysis-runs",
        description="Directory for run snapshots"
    )

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        """Normalize and validate the logging level name."""
        level = value.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Invalid log level: {value}")
        return level

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": True,
        "extra": "ignore"
    }


@lru_cache()
def get_settings() -> ExtractorSettings:
    """Return the process-wide settings instance."""
    return ExtractorSettings()
