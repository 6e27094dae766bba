"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class MicrofinanceConfig(BaseSettings):
    """Microfinance lending core configuration"""

    # Database configuration
    database_url: str = "sqlite:///microfinance.db"  # or memory://

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    cors_origins: str = "*"  # Comma separated

    # Security configuration
    jwt_secret: str = "change-me-in-production"
    jwt_expiry_hours: int = 12
    jwt_algorithm: str = "HS256"

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout

    # Business rules configuration
    cash_closing_tolerance: str = "1.00"  # Max |diferencia| before review
    default_page_size: int = 50
    max_page_size: int = 200

    # Feature flags
    enable_audit_logging: bool = True

    class Config:
        env_prefix = "MICROFINANCE_"
        env_file = ".env"
        case_sensitive = False


def get_config() -> MicrofinanceConfig:
    """Build configuration from the environment (re-read on every call)"""
    return MicrofinanceConfig()
