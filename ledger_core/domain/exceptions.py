"""Domain-specific exceptions"""


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


class ValidationError(DomainException):
    """Input is malformed or missing required fields"""

    pass


class InvalidAmountError(ValidationError):
    """Monetary amount is zero, negative or not a number"""

    pass


class InvalidFrequencyError(ValidationError):
    """Recurrence frequency is not one of daily, weekly, monthly, yearly"""

    pass


class NotFoundError(DomainException):
    """Referenced account, credit card, loan or expense does not exist"""

    def __init__(self, entity: str, entity_id: str):
        super().__init__(f"{entity} not found: {entity_id}")
        self.entity = entity
        self.entity_id = entity_id


class InsufficientFundsError(DomainException):
    """Account balance cannot cover the requested debit"""

    pass


class PaymentExceedsRemainingError(DomainException):
    """Loan payment is larger than the loan's remaining amount"""

    pass


class ConcurrentModificationError(DomainException):
    """Optimistic transaction kept conflicting with concurrent writers"""

    pass


class JobTimeoutError(DomainException):
    """Scheduled job exceeded its wall-clock budget"""

    pass


class JobCancelledError(DomainException):
    """Scheduled job stopped at a batch boundary after its runner gave up on it"""

    pass
