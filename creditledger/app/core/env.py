"""Application environment helpers shared across the ledger and CLI."""

from __future__ import annotations

from enum import StrEnum


class AppEnv(StrEnum):
    DEV = "dev"
    PRODUCTION = "production"


_DEV_ALIASES = {"dev", "development", "local", "localhost", "test"}
_PROD_ALIASES = {"prod", "production"}


def normalize_app_env(value: str | None) -> AppEnv:
    """
    Normalize an environment string into a known application environment.

    Defaults to PRODUCTION when unset, and treats unknown values as PRODUCTION
    so that a typo never unlocks dev-only behavior such as SQLite storage.
    """
    if value is None:
        return AppEnv.PRODUCTION
    lowered = value.strip().lower()
    if lowered in _DEV_ALIASES:
        return AppEnv.DEV
    if lowered in _PROD_ALIASES:
        return AppEnv.PRODUCTION
    return AppEnv.PRODUCTION

