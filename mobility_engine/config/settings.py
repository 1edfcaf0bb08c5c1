import os
from pathlib import Path

from loguru import logger
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def get_database_url() -> str:
    """Get database URL, using an absolute path for the local SQLite fallback.

    SQLite is for local development and tests only. Deployments set
    DATABASE_URL to a PostgreSQL connection string.
    """
    db_url = os.getenv("DATABASE_URL", "")
    if db_url:
        logger.info(f"Using DATABASE_URL from environment: {db_url}")
        return db_url

    db_path = Path(__file__).parent.parent.parent / "mobility.db"
    db_url = f"sqlite:///{db_path.resolve()}"
    logger.warning(f"⚠️ Using SQLite database (LOCAL DEV ONLY): {db_url}")
    return db_url


class Settings(BaseSettings):
    database_url: str = Field(
        default_factory=get_database_url,
        validation_alias="DATABASE_URL",
    )
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    log_file: str = Field(default="", validation_alias="LOG_FILE", description="Optional rotating log file path")
    log_json: bool = Field(default=False, validation_alias="LOG_JSON", description="Serialize file log records as JSON")
    match_minimum_score: int = Field(
        default=30,
        ge=0,
        le=100,
        validation_alias="MATCH_MINIMUM_SCORE",
        description="Protocols scoring below this are dropped from match results",
    )
    auto_assign_minimum_score: int = Field(
        default=50,
        ge=0,
        le=100,
        validation_alias="AUTO_ASSIGN_MINIMUM_SCORE",
        description="Minimum match score required before a protocol is assigned automatically",
    )
    match_max_results: int = Field(default=5, ge=1, validation_alias="MATCH_MAX_RESULTS")
    setback_rebaseline_days: int = Field(
        default=5,
        ge=1,
        validation_alias="SETBACK_REBASELINE_DAYS",
        description="Days a patient stays in setback recovery before completion is evaluated",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        """Validate that log level is one of the standard logging levels."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper_value = value.upper()
        if upper_value not in valid_levels:
            logger.warning(f"Invalid LOG_LEVEL '{value}'. Valid levels are: {', '.join(sorted(valid_levels))}. Defaulting to INFO.")
            return "INFO"
        return upper_value


settings = Settings()
