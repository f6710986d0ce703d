"""Configuration for the credit ledger using pydantic-settings."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .env import AppEnv, normalize_app_env

DEFAULT_DATABASE_URL = "postgresql+psycopg://localhost:5432/creditledger"


@dataclass(frozen=True)
class BillingConfig:
    """Billing rules applied to a single ledger call.

    A limit of zero or less disables that check.
    """

    billing_enabled: bool = True
    max_single_amount: int = 100
    daily_limit: int = 1000
    initial_balance: int = 100


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
        populate_by_name=True,
        # A blank variable means "unset", not an invalid value.
        env_ignore_empty=True,
    )

    # --- Environment ---
    app_env: AppEnv = Field(
        default=AppEnv.PRODUCTION,
        validation_alias=AliasChoices("CREDITLEDGER_APP_ENV", "APP_ENV", "ENV"),
    )
    log_level: str = Field(default="INFO", validation_alias=AliasChoices("CREDITLEDGER_LOG_LEVEL", "LOG_LEVEL"))

    # --- Database ---
    database_url: str = Field(
        default=DEFAULT_DATABASE_URL,
        validation_alias=AliasChoices("CREDITLEDGER_DATABASE_URL", "DATABASE_URL"),
    )

    # --- Billing ---
    billing_enabled: bool = Field(
        default=True,
        validation_alias=AliasChoices("CREDITLEDGER_BILLING_ENABLED", "BILLING_ENABLED"),
    )
    max_single_transaction: int = Field(
        default=100,
        validation_alias=AliasChoices(
            "CREDITLEDGER_MAX_SINGLE_TRANSACTION", "MAX_SINGLE_TRANSACTION", "MAX_SINGLE_CONSUME"
        ),
    )
    daily_limit: int = Field(
        default=1000,
        validation_alias=AliasChoices("CREDITLEDGER_DAILY_LIMIT", "DAILY_COST_LIMIT"),
    )
    initial_credits: int = Field(
        default=100,
        ge=0,
        validation_alias=AliasChoices("CREDITLEDGER_INITIAL_CREDITS", "INITIAL_CREDITS"),
    )

    @field_validator("app_env", mode="before")
    @classmethod
    def normalize_env(cls, v: Any) -> AppEnv:
        if isinstance(v, AppEnv):
            return v
        return normalize_app_env(v if isinstance(v, str) else None)

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v: Any) -> str:
        if not isinstance(v, str) or not v.strip():
            return "INFO"
        return v.strip().upper()

    @property
    def is_dev(self) -> bool:
        return self.app_env == AppEnv.DEV

    def billing_config(self) -> BillingConfig:
        return BillingConfig(
            billing_enabled=self.billing_enabled,
            max_single_amount=self.max_single_transaction,
            daily_limit=self.daily_limit,
            initial_balance=self.initial_credits,
        )


def get_settings() -> Settings:
    """Read settings from the environment.

    Not cached: operational changes to billing switches and limits apply on
    the next call without a restart.
    """
    return Settings()


def load_billing_config() -> BillingConfig:
    return get_settings().billing_config()
