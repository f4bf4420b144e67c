"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings
from typing import List


class LendingConfig(BaseSettings):
    """P2P lending service configuration"""
    
    # Storage configuration
    storage_backend: str = "sqlite"  # sqlite or memory
    database_path: str = "loans.db"
    
    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8080
    api_reload: bool = False
    cors_origins: List[str] = ["*"]
    
    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    
    # Business rules configuration
    roi_precision: int = 4
    days_per_year: int = 365
    
    class Config:
        env_prefix = "LENDING_"
        env_file = ".env"
        case_sensitive = False


# Default configuration instance
config = LendingConfig()


def get_config() -> LendingConfig:
    """Get configuration instance"""
    return config


def reload_config() -> LendingConfig:
    """Reload configuration from environment"""
    global config
    config = LendingConfig()
    return config
