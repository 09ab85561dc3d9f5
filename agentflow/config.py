"""
Configuration settings for AgentFlow.
"""

from pydantic_settings import BaseSettings
from typing import Literal, Optional


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    # Application
    APP_NAME: str = "AgentFlow"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = True

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Flow Engine
    EXTRA_STEPS: int = 10  # Steps allowed beyond the node count
    BRANCH_POLICY: Literal["fail", "first"] = "fail"  # Plain nodes with several edges
    INVOCATION_TIMEOUT: float = 60.0  # Seconds

    # Storage
    MAX_STORED_RUNS: int = 1000  # Oldest finished runs are evicted beyond this

    # Gemini
    GEMINI_API_KEY: Optional[str] = None
    GEMINI_MODEL: str = "gemini-2.5-flash"
    GEMINI_BASE_URL: str = "https://generativelanguage.googleapis.com/v1beta"

    # Logging
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = True


# Global settings instance
settings = Settings()
