"""
Configuration for the Household Planner API.
Loads settings from environment variables.
"""
import os
from typing import List

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings from environment variables."""

    # API Configuration
    API_TITLE: str = "Household Planner API"
    API_VERSION: str = "0.1.0"

    # CORS Configuration
    # Comma-separated list of allowed origins
    ALLOWED_ORIGINS: str = (
        "http://localhost:3000,"
        "http://localhost:5173"
    )

    # Logging Configuration
    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = os.getenv("LOG_DIR", "")

    # Database Configuration
    DATABASE_URL: str = os.getenv("DATABASE_URL", "")
    SQL_ECHO: bool = False

    # Redis Configuration for background jobs and change fan-out
    REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    ENABLE_ASYNC_JOBS: bool = os.getenv("ENABLE_ASYNC_JOBS", "false").lower() == "true"
    ENABLE_REDIS_CHANGES: bool = os.getenv("ENABLE_REDIS_CHANGES", "false").lower() == "true"

    # Shopping list
    # Fallback refresh for change subscribers, in seconds
    SHOPPING_LIST_REFRESH_SECONDS: float = 3.0
    UNCATEGORIZED_LABEL: str = "Other"

    class Config:
        # Load from .env file if it exists
        env_file = ".env"
        case_sensitive = True

    @property
    def allowed_origins_list(self) -> List[str]:
        """Parse comma-separated origins into a list."""
        return [origin.strip() for origin in self.ALLOWED_ORIGINS.split(",") if origin.strip()]


# Load settings (will use environment variables or .env file)
settings = Settings()
