"""Sync engine: token handling, mapping, pagination, reconciliation, orchestration."""
