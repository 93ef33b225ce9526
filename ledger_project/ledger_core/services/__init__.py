"""Ledger engine operations, one module per concern."""
