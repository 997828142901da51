"""
Transaction service: validated writes and reads of a user's ledger.
"""

import logging
from dataclasses import asdict
from typing import Any, Dict, List, Optional

from config import get_settings
from models import Transaction
from repositories import TransactionRepository
from services.errors import TransactionNotFoundError, TransactionValidationError
from services.validation import TransactionInput, validate_transaction

logger = logging.getLogger(__name__)


class TransactionService:
    """
    Records, edits and removes transactions for one user.
    Derived views (holdings, P/L) are never stored; they are recomputed
    from list() by the portfolio services.
    """

    def __init__(self, user_id: Optional[str] = None):
        self.user_id = user_id or get_settings().default_user_id

    @staticmethod
    def _clean(payload: Dict[str, Any]) -> TransactionInput:
        data = TransactionInput.from_payload(payload)
        error = validate_transaction(data)
        if error:
            raise TransactionValidationError(error)
        return data

    @staticmethod
    def _fields(data: TransactionInput) -> Dict[str, Any]:
        fields = asdict(data)
        fields['type'] = data.kind.value
        for key in ('product_name', 'category', 'broker', 'currency'):
            fields[key] = fields[key] or ''
        if data.quantity is not None:
            fields['quantity'] = abs(data.quantity)
        if fields['dividend_amount'] is None:
            fields['dividend_amount'] = 0.0
        return fields

    def record(self, payload: Dict[str, Any]) -> Transaction:
        """
        Validate and store a new transaction.

        Raises:
            TransactionValidationError: if the payload is invalid
        """
        data = self._clean(payload)
        transaction = Transaction(user_id=self.user_id, **self._fields(data))
        stored = TransactionRepository.add(transaction)
        logger.info(f"Recorded {stored.type} {stored.symbol} for user {self.user_id} ({stored.id})")
        return stored

    def update(self, transaction_id: str, payload: Dict[str, Any]) -> Transaction:
        """
        Replace the editable fields of an existing transaction.

        Raises:
            TransactionValidationError: if the payload is invalid
            TransactionNotFoundError: if the transaction does not exist
        """
        if not transaction_id:
            raise TransactionValidationError("id is required for update")
        data = self._clean(payload)
        updated = TransactionRepository.update(transaction_id, self.user_id, self._fields(data))
        if updated is None:
            raise TransactionNotFoundError(transaction_id)
        logger.info(f"Updated transaction {transaction_id} for user {self.user_id}")
        return updated

    def delete(self, transaction_id: str) -> None:
        """
        Delete one transaction.

        Raises:
            TransactionNotFoundError: if the transaction does not exist
        """
        if not TransactionRepository.delete(transaction_id, self.user_id):
            raise TransactionNotFoundError(transaction_id)
        logger.info(f"Deleted transaction {transaction_id} for user {self.user_id}")

    def clear(self) -> int:
        """Delete every transaction of the user; returns how many were removed."""
        count = TransactionRepository.delete_all_for_user(self.user_id)
        logger.info(f"Cleared {count} transactions for user {self.user_id}")
        return count

    def list(self) -> List[Transaction]:
        """All transactions of the user, most recent trade first."""
        return TransactionRepository.list_for_user(self.user_id)
