"""
Exceptions raised by the service layer.
The calculation core never raises for bad data; only writes do.
"""


class PortfolioLedgerError(Exception):
    """Base class for Portfolio Ledger errors."""


class TransactionValidationError(PortfolioLedgerError):
    """A transaction payload failed validation."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class TransactionNotFoundError(PortfolioLedgerError):
    """No transaction with the given id exists for the user."""

    def __init__(self, transaction_id: str):
        super().__init__(f"Transaction {transaction_id} not found")
        self.transaction_id = transaction_id
