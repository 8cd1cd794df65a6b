# app/core/config.py - Centralized settings management using Pydantic
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings
from typing import List


class Settings(BaseSettings):
    """Application settings with validation and type safety"""

    # Application Environment
    ENV: str = Field(default="dev", description="Environment: dev, staging, prod")
    DEBUG: bool = Field(default=False, description="Debug mode")
    API_TITLE: str = Field(default="School Fee Engine API", description="API title")
    API_VERSION: str = Field(default="1.0.0", description="API version")

    # Database Configuration (pupil term snapshots)
    DATABASE_URL: str = Field(default="sqlite:///./fee_engine.db", description="Database connection URL")
    DATABASE_ECHO: bool = Field(default=False, description="Echo SQL queries")
    DATABASE_POOL_SIZE: int = Field(default=5, ge=1, le=100, description="Connection pool size")
    DATABASE_MAX_OVERFLOW: int = Field(default=10, ge=0, le=100, description="Max overflow connections")
    DATABASE_POOL_TIMEOUT: int = Field(default=30, ge=1, le=300, description="Pool timeout in seconds")
    DATABASE_POOL_RECYCLE: int = Field(default=3600, ge=300, description="Pool recycle time in seconds")

    # CORS Configuration
    CORS_ORIGINS: List[str] = Field(
        default=[
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ],
        description="CORS allowed origins"
    )

    # Fee Group Cache
    FEE_CACHE_TTL_MINUTES: int = Field(default=30, ge=1, le=1440, description="Group base-fee cache lifetime")
    FEE_CACHE_MAINTENANCE_INTERVAL_MINUTES: int = Field(default=10, ge=1, le=1440, description="Expired entry sweep interval")
    FEE_CACHE_BACKGROUND_MAINTENANCE: bool = Field(default=True, description="Start the sweep with the app")
    DEFAULT_SECTION: str = Field(default="day", description="Section assumed for pupils without one")
    PRELOAD_SECTIONS: List[str] = Field(default=["day", "boarding"], description="Sections used when preloading groups")

    # Pupil Snapshots
    SNAPSHOT_MAINTENANCE_WINDOW_DAYS: int = Field(default=7, ge=1, le=90, description="Terms that ended within this many days are frozen by daily maintenance")

    # Logging Configuration
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    LOG_FORMAT: str = Field(default="detailed", description="Log format: simple, detailed")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "ignore"  # Ignore extra environment variables

    @field_validator("ENV")
    @classmethod
    def validate_environment(cls, v):
        allowed_envs = ["dev", "development", "staging", "prod", "production"]
        if v.lower() not in allowed_envs:
            raise ValueError(f"ENV must be one of: {allowed_envs}")
        return v.lower()

    @field_validator("DATABASE_URL")
    @classmethod
    def validate_database_url(cls, v):
        allowed_prefixes = (
            "postgresql://",
            "postgresql+psycopg2://",
            "postgresql+psycopg://",
            "sqlite:///",
        )
        if not v.startswith(allowed_prefixes):
            raise ValueError("DATABASE_URL must be a valid database connection string (postgresql, postgresql+psycopg, postgresql+psycopg2, or sqlite)")
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v):
        allowed_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in allowed_levels:
            raise ValueError(f"LOG_LEVEL must be one of: {allowed_levels}")
        return v.upper()

    @field_validator("DEFAULT_SECTION")
    @classmethod
    def validate_default_section(cls, v):
        if v.lower() not in ("day", "boarding"):
            raise ValueError("DEFAULT_SECTION must be 'day' or 'boarding'")
        return v.lower()

    @field_validator("CORS_ORIGINS", "PRELOAD_SECTIONS", mode="before")
    @classmethod
    def parse_comma_separated(cls, v):
        if isinstance(v, str):
            # Handle comma-separated string
            return [item.strip() for item in v.split(",") if item.strip()]
        return v

    @field_validator("PRELOAD_SECTIONS")
    @classmethod
    def validate_preload_sections(cls, v):
        sections = [section.lower() for section in v]
        invalid = [section for section in sections if section not in ("day", "boarding")]
        if invalid:
            raise ValueError(f"PRELOAD_SECTIONS may only contain 'day' or 'boarding', got: {invalid}")
        return sections

    @property
    def is_development(self) -> bool:
        """Check if running in development mode"""
        return self.ENV in ["dev", "development"]

    @property
    def is_production(self) -> bool:
        """Check if running in production mode"""
        return self.ENV in ["prod", "production"]

    @property
    def fee_cache_ttl_seconds(self) -> int:
        return self.FEE_CACHE_TTL_MINUTES * 60

    @property
    def fee_cache_maintenance_interval_seconds(self) -> int:
        return self.FEE_CACHE_MAINTENANCE_INTERVAL_MINUTES * 60

    @property
    def log_format_string(self) -> str:
        if self.LOG_FORMAT == "simple":
            return "%(levelname)s - %(message)s"
        return "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


# Create settings instance with validation
try:
    settings = Settings()
except Exception as e:
    print(f"Configuration error: {e}")
    print("Please check your .env file and environment variables")
    raise

# Export settings
__all__ = ["settings", "Settings"]
