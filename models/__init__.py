"""
Database models for Portfolio Ledger.
All SQLModel table definitions are centralized here.
"""

from models.transaction import Transaction, TransactionType

__all__ = [
    'Transaction',
    'TransactionType',
]
