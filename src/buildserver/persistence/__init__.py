"""
Persistence package exposing the SQLite run ledger.
"""

from .store import RunLedger

__all__ = ["RunLedger"]
