"""Credit ledger and consumption engine."""
