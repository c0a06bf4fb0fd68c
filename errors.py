"""Error kinds raised by the ledger engine and its services."""


class LedgerError(Exception):
    """Base exception for all ledger errors."""

    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self):
        if self.details:
            return f"{self.message} - {self.details}"
        return self.message


class InvalidDateError(LedgerError, ValueError):
    """Raised for malformed or out-of-range calendar input."""


class InvalidAmountError(LedgerError, ValueError):
    """Raised when a monetary input must be positive and is not."""


class InvalidTermsError(LedgerError, ValueError):
    """Raised when contract terms (rate, count, penalty rate) are out of range."""


class AlreadySettledError(LedgerError):
    """Raised when a payment targets an installment that is already settled."""

    def __init__(self, installment_number: int = None, installment_id: int = None):
        message = "Installment is already fully paid"
        if installment_number is not None:
            message = f"Installment {installment_number} is already fully paid"
        super().__init__(message)
        self.installment_number = installment_number
        self.installment_id = installment_id


class AlreadyCompletedError(LedgerError):
    """Raised when cancelling a contract that is already completed."""

    def __init__(self, contract_number: str = None):
        message = "A completed contract cannot be cancelled"
        if contract_number:
            message = f"Contract '{contract_number}' is completed and cannot be cancelled"
        super().__init__(message)
        self.contract_number = contract_number


class NotFoundError(LedgerError, LookupError):
    """Raised when a referenced customer, contract or installment does not exist."""

    def __init__(self, entity: str, key=None):
        message = f"{entity} not found"
        if key is not None:
            message = f"{entity} '{key}' not found"
        super().__init__(message)
        self.entity = entity
        self.key = key
