"""
Environment-aware configuration settings for the workbench.

Supports dev, test, and prod environments with appropriate defaults.
"""

from enum import Enum
from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Supported deployment environments."""

    DEV = "dev"
    TEST = "test"
    PROD = "prod"


class AnalysisSettings(BaseSettings):
    """Settings for model building, validation and graph derivation."""

    model_config = SettingsConfigDict(env_prefix="ANALYSIS_")

    warn_unreachable_steps: bool = Field(
        default=True,
        description="Report steps that cannot be reached from the workflow input",
    )
    warn_redundant_goto: bool = Field(
        default=True,
        description="Report unconditional gotos that target the next step",
    )
    default_retry_limit: int = Field(
        default=1,
        ge=1,
        description="retryLimit inserted for retry actions that omit it",
    )
    max_document_chars: int = Field(
        default=2_000_000,
        ge=1,
        description="Documents larger than this are rejected without parsing",
    )
    max_nodes: int = Field(
        default=200_000,
        ge=1,
        description="YAML alias expansion stops once the tree would exceed this many nodes",
    )


class RenderSettings(BaseSettings):
    """Settings for diagram rendering of the graph IR."""

    model_config = SettingsConfigDict(env_prefix="RENDER_")

    direction: Literal["TB", "LR", "BT", "RL"] = Field(
        default="TB",
        description="Mermaid flowchart direction",
    )
    hide_error_flows: bool = Field(
        default=False,
        description="Omit failure edges from rendered diagrams",
    )


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        case_sensitive=False,  # LOG_LEVEL and log_level both work
        extra="ignore",        # Ignore unknown environment variables
    )

    # Application
    app_name: str = Field(default="Arazzo Workbench")
    environment: Environment = Field(default=Environment.DEV)
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO")

    # Sub-settings
    analysis: AnalysisSettings = Field(default_factory=AnalysisSettings)
    render: RenderSettings = Field(default_factory=RenderSettings)

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
