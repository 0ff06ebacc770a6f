# clinicqueue/config.py - queue engine configuration
from dotenv import load_dotenv

load_dotenv()
from typing import Union
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator


class Settings(BaseSettings):
    """Queue engine settings with validation and environment variable support (Pydantic V2 Syntax)"""

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="allow",
        case_sensitive=False
    )

    # Application
    app_name: str = "Clinic Queue Engine"
    app_version: str = "1.0.0"
    environment: str = Field(default="development", alias="ENVIRONMENT")
    debug: bool = Field(default=False, alias="DEBUG")

    # Database
    database_url: str = Field(default="sqlite:///./clinicqueue.db", alias="DATABASE_URL")

    # CORS
    cors_origins: Union[str, list[str]] = Field(default=["http://localhost:5173", "http://localhost:5174"], alias="CORS_ORIGINS")

    # Queue behaviour
    default_consultation_minutes: int = Field(default=15, alias="DEFAULT_CONSULTATION_MINUTES")
    delay_threshold_minutes: int = Field(default=15, alias="DELAY_THRESHOLD_MINUTES")
    default_break_minutes: int = Field(default=15, alias="DEFAULT_BREAK_MINUTES")
    early_finish_ratio: float = Field(default=0.5, alias="EARLY_FINISH_RATIO")
    # Slot times ("14:30") are clinic wall-clock times. Default is IST (UTC+5:30).
    clinic_utc_offset_minutes: int = Field(default=330, alias="CLINIC_UTC_OFFSET_MINUTES")
    token_allocation_retries: int = Field(default=3, alias="TOKEN_ALLOCATION_RETRIES")

    # Running average of consultation length, off unless enabled
    adaptive_average_consultation: bool = Field(default=False, alias="ADAPTIVE_AVERAGE_CONSULTATION")
    average_consultation_weight: float = Field(default=0.2, alias="AVERAGE_CONSULTATION_WEIGHT")

    # Rate limiting
    rate_limit_enabled: bool = Field(default=True, alias="RATE_LIMIT_ENABLED")
    booking_rate_limit: str = Field(default="5/minute", alias="BOOKING_RATE_LIMIT")

    # --- Pydantic V2 Validators ---
    @field_validator("cors_origins", mode='before')
    @classmethod
    def parse_cors_origins(cls, v):
        if isinstance(v, str):
            if not v.strip():
                return ["http://localhost:5173"]
            return [origin.strip() for origin in v.split(',') if origin.strip()]
        return v

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v):
        if not v:
            raise ValueError("DATABASE_URL is required")
        if not v.startswith(("postgresql://", "postgresql+psycopg2://", "sqlite://")):
            raise ValueError("DATABASE_URL must be a valid PostgreSQL or SQLite URL")
        return v

    @field_validator("early_finish_ratio", "average_consultation_weight")
    @classmethod
    def validate_ratio(cls, v):
        if not 0 < v < 1:
            raise ValueError("ratio settings must be between 0 and 1 (exclusive)")
        return v

    @field_validator("default_consultation_minutes", "default_break_minutes", "token_allocation_retries")
    @classmethod
    def validate_positive(cls, v):
        if v < 1:
            raise ValueError("must be a positive integer")
        return v

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def is_development(self) -> bool:
        return self.environment.lower() == "development"

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
