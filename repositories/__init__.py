"""
Repositories package for Portfolio Ledger.
Provides data access layer for all database operations.
"""

from repositories.transaction_repository import TransactionRepository

__all__ = [
    'TransactionRepository',
]
