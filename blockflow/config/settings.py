"""
Environment-aware configuration settings for the workflow engine.

Supports dev, test, and prod environments with appropriate defaults.
"""

from enum import Enum
from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Supported deployment environments."""

    DEV = "dev"
    TEST = "test"
    PROD = "prod"


class EngineSettings(BaseSettings):
    """
    Orchestrator defaults.

    Applied only where the workflow definition itself is silent: a node's own
    timeout wins over the workflow globals, which win over these values.
    """

    model_config = SettingsConfigDict(env_prefix="ENGINE_")

    default_node_timeout: float = Field(
        default=60.0,
        gt=0,
        description="Per-node timeout (seconds) when neither node nor globals set one",
    )
    default_error_handling: str = Field(
        default="stop",
        description="Failure strategy when globals.errorHandling is absent (stop|continue)",
    )
    max_parallel_nodes: Optional[int] = Field(
        default=None,
        ge=1,
        description="Upper bound on concurrently running nodes within a layer (None = unbounded)",
    )
    env_whitelist: list[str] = Field(
        default_factory=lambda: ["ENVIRONMENT", "REGION", "APP_ENV"],
        description="Environment variables exposed to {{ env.* }} templates",
    )
    estimated_node_time: float = Field(
        default=0.1,
        ge=0,
        description="Heuristic per-node duration (seconds) used for plan estimates",
    )

    @field_validator("default_error_handling")
    @classmethod
    def validate_error_handling(cls, v: str) -> str:
        """Only the strategies the orchestrator implements are accepted."""
        v = v.lower()
        if v not in {"stop", "continue"}:
            raise ValueError("default_error_handling must be 'stop' or 'continue'")
        return v


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        case_sensitive=False,  # ENGINE_DEFAULT_NODE_TIMEOUT and engine_default_node_timeout both work
        extra="ignore",        # Ignore unknown environment variables
    )

    # Application
    app_name: str = Field(default="Blockflow Workflow Engine")
    environment: Environment = Field(default=Environment.DEV)
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO")

    # Sub-settings
    engine: EngineSettings = Field(default_factory=EngineSettings)

    @field_validator("environment", mode="before")
    @classmethod
    def validate_environment(cls, v: str | Environment) -> Environment:
        """Validate and convert environment string to enum."""
        if isinstance(v, Environment):
            return v
        return Environment(v.lower())

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment == Environment.DEV

    @property
    def is_testing(self) -> bool:
        """Check if running in test mode."""
        return self.environment == Environment.TEST

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment == Environment.PROD


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    """
    return Settings()
