"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from decimal import Decimal
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional


class LoanServicingConfig(BaseSettings):
    """Loan servicing configuration"""

    model_config = SettingsConfigDict(
        env_prefix="LOAN_SERVICING_",
        env_file=".env",
        case_sensitive=False,
    )

    # Money configuration
    default_currency: str = "DOP"  # ISO 4217 code, see currency.Currency

    # Business rules configuration
    default_penalty_rate_percent: Decimal = Decimal("5")
    grace_days: int = 0  # Days after due date before an installment counts as overdue
    allow_overpayment: bool = False  # Custom payments above the outstanding installment amount
    settle_final_installment: bool = True  # Last installment absorbs rounding residue

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090


# Global configuration instance
config = LoanServicingConfig()


def get_config() -> LoanServicingConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> LoanServicingConfig:
    """Reload configuration from environment"""
    global config
    config = LoanServicingConfig()
    return config
