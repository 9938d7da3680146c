"""
Trade Kernel

Keeps a trader's local stock ledger, the append-only transaction log, and
the trader's open marketplace listings consistent with each other:
- Catalog-validated stock creation (plain items and rivens)
- Sell / partial-sell / delete with remote listing reconciliation
- Append-only trade history
- Structured error journal for postmortem diagnosis
"""

__version__ = "0.1.0"
