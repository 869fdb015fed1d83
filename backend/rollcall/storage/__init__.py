"""Ledger storage backends."""
from flask import Flask

from rollcall.storage.base import LedgerStore
from rollcall.storage.memory import MemoryLedgerStore
from rollcall.utils.errors import InvalidConfig


def create_store(app: Flask) -> LedgerStore:
    """Build the ledger backend named by ``LEDGER_BACKEND``."""
    backend = app.config.get('LEDGER_BACKEND', 'memory')
    if backend == 'memory':
        return MemoryLedgerStore()
    if backend == 'sql':
        from rollcall.storage.sql import SQLLedgerStore
        return SQLLedgerStore(app)
    raise InvalidConfig(f"Unknown ledger backend: {backend}")


__all__ = ['LedgerStore', 'MemoryLedgerStore', 'create_store']
