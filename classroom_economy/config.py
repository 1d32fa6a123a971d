"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class EconomyConfig(BaseSettings):
    """Classroom economy engine configuration"""
    
    # Database configuration
    database_url: str = "sqlite:///classroom_economy.db"
    sqlite_busy_timeout: float = 5.0  # Seconds to wait on a locked database
    
    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090
    
    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout
    
    # Money and time
    currency: str = "ZAR"
    timezone: str = "Africa/Johannesburg"
    
    # Store contention
    conflict_max_retries: int = 5
    conflict_backoff_base: float = 0.05  # Seconds, doubled per attempt
    
    # Skill games
    math_reset_hour: int = 6
    wordle_reset_hour: int = 4
    math_time_limit_seconds: int = 60
    game_grace_seconds: int = 30
    math_problems_per_session: int = 30
    max_math_earnings: str = "150"
    max_wordle_earnings: str = "20"
    
    # Insurance and disasters
    insurance_rate_percent: str = "5"
    disaster_floor_at_zero: bool = True
    
    # Feature flags
    enable_audit_logging: bool = True
    
    class Config:
        env_prefix = "ECONOMY_"
        env_file = ".env"
        case_sensitive = False


# Global configuration instance
config = EconomyConfig()


def get_config() -> EconomyConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> EconomyConfig:
    """Reload configuration from environment"""
    global config
    config = EconomyConfig()
    return config
