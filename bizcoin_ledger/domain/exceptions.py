"""Domain-specific exceptions"""


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


class ValidationError(DomainException):
    """Malformed input: non-positive amount, missing required field"""

    pass


class InsufficientBalance(DomainException):
    """Debit would drive the wallet balance below zero"""

    def __init__(self, balance: int, requested: int):
        self.balance = balance
        self.requested = requested
        super().__init__(f"Insufficient balance: {balance} available, {requested} requested")


class NotFoundError(DomainException):
    """Referenced preset, store item or milestone does not exist"""

    pass


class StorageFailure(DomainException):
    """Persistence unavailable or conflicting; safe to retry"""

    pass
