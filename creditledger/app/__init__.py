"""Ledger services, persistence and configuration."""
