"""Kernel services: ledger, transaction log, listing sync, reconciliation engine."""
