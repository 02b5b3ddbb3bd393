"""
settings.py
===========
Environment-driven configuration. Values can be overridden with environment
variables or a local `.env` file.
"""

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # --- Database ---
    database_url: str = "sqlite:///./discounts.db"

    # --- Logging ---
    log_level: str = "INFO"

    # --- Fixed-rule discount ---
    fixed_rule_target_collection: str = "gid://shopify/Collection/496241049921"
    fixed_rule_discount_percentage: float = 15.0
    fixed_rule_cart_value_threshold: float = 150.0
    fixed_rule_message: Optional[str] = None  # Derived from the percentage when unset

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
