"""
Transaction Repository - data access layer for Transaction model.
Every query is scoped to a user. An optional session parameter allows
several calls to share one database transaction.
"""

from typing import Optional, List
from sqlmodel import Session, select, col

from db_engine import get_engine
from models import Transaction


# Fields a caller may change through update()
UPDATABLE_FIELDS = (
    'symbol', 'product_name', 'category', 'broker', 'currency', 'type',
    'quantity', 'price', 'commission', 'dividend_amount', 'trade_date',
    'notes', 'current_price',
)


class TransactionRepository:
    """Repository for Transaction CRUD operations."""

    @staticmethod
    def add(transaction: Transaction, session: Optional[Session] = None) -> Transaction:
        """
        Add a new transaction to the database.

        Args:
            transaction: Unsaved Transaction object
            session: Optional existing session for transaction reuse

        Returns:
            The stored Transaction object
        """
        def _add(sess: Session) -> Transaction:
            if transaction.quantity is not None:
                transaction.quantity = abs(transaction.quantity)
            sess.add(transaction)
            sess.commit()
            sess.refresh(transaction)
            return transaction

        if session is not None:
            return _add(session)
        else:
            with Session(get_engine()) as session:
                return _add(session)

    @staticmethod
    def list_for_user(user_id: str, session: Optional[Session] = None) -> List[Transaction]:
        """
        Retrieve every transaction of a user, most recent trade first.

        Args:
            user_id: Owner of the transactions
            session: Optional existing session for transaction reuse

        Returns:
            List of Transaction objects
        """
        def _list(sess: Session) -> List[Transaction]:
            statement = (
                select(Transaction)
                .where(Transaction.user_id == user_id)
                .order_by(col(Transaction.trade_date).desc(), col(Transaction.created_at).desc())
            )
            results = sess.exec(statement)
            return list(results.all())

        if session is not None:
            return _list(session)
        else:
            with Session(get_engine()) as session:
                return _list(session)

    @staticmethod
    def get_by_id(transaction_id: str, user_id: str,
                  session: Optional[Session] = None) -> Optional[Transaction]:
        """
        Retrieve a transaction by its ID.

        Returns:
            Transaction object or None if it does not exist or belongs to another user
        """
        def _get_by_id(sess: Session) -> Optional[Transaction]:
            transaction = sess.get(Transaction, transaction_id)
            if transaction is None or transaction.user_id != user_id:
                return None
            return transaction

        if session is not None:
            return _get_by_id(session)
        else:
            with Session(get_engine()) as session:
                return _get_by_id(session)

    @staticmethod
    def update(transaction_id: str, user_id: str, changes: dict,
               session: Optional[Session] = None) -> Optional[Transaction]:
        """
        Update an existing transaction.
        Only keys listed in UPDATABLE_FIELDS are applied.

        Args:
            transaction_id: Transaction ID to update
            user_id: Owner of the transaction
            changes: Mapping of field name to new value
            session: Optional existing session for transaction reuse

        Returns:
            Updated Transaction object or None if not found
        """
        def _update(sess: Session) -> Optional[Transaction]:
            transaction = sess.get(Transaction, transaction_id)
            if transaction is None or transaction.user_id != user_id:
                return None
            for field_name, value in changes.items():
                if field_name not in UPDATABLE_FIELDS:
                    continue
                if field_name == 'quantity' and value is not None:
                    value = abs(value)
                setattr(transaction, field_name, value)
            sess.add(transaction)
            sess.commit()
            sess.refresh(transaction)
            return transaction

        if session is not None:
            return _update(session)
        else:
            with Session(get_engine()) as session:
                return _update(session)

    @staticmethod
    def delete(transaction_id: str, user_id: str, session: Optional[Session] = None) -> bool:
        """
        Delete a transaction by its ID.

        Returns:
            True if a transaction was deleted, False otherwise
        """
        def _delete(sess: Session) -> bool:
            try:
                transaction = sess.get(Transaction, transaction_id)
                if transaction and transaction.user_id == user_id:
                    sess.delete(transaction)
                    sess.commit()
                    return True
                return False
            except Exception:
                sess.rollback()
                raise

        if session is not None:
            return _delete(session)
        else:
            with Session(get_engine()) as session:
                return _delete(session)

    @staticmethod
    def delete_all_for_user(user_id: str, session: Optional[Session] = None) -> int:
        """
        Delete all transactions of a user.

        Returns:
            Number of transactions deleted
        """
        def _delete_all(sess: Session) -> int:
            try:
                statement = select(Transaction).where(Transaction.user_id == user_id)
                transactions = sess.exec(statement).all()
                count = 0
                for tx in transactions:
                    sess.delete(tx)
                    count += 1
                sess.commit()
                return count
            except Exception:
                sess.rollback()
                raise

        if session is not None:
            return _delete_all(session)
        else:
            with Session(get_engine()) as session:
                return _delete_all(session)
