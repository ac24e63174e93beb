class LedgerServiceError(Exception):
    pass


class NotFoundError(LedgerServiceError):
    pass


class UserNotFoundError(NotFoundError):
    pass


class SubmissionNotFoundError(NotFoundError):
    pass


class DuplicateEmailError(LedgerServiceError):
    pass


class InvalidAmountError(LedgerServiceError):
    pass


class InsufficientBalanceError(LedgerServiceError):
    def __init__(self, balance: float, required: float):
        super().__init__(f"Insufficient balance: have {balance:.2f}, need {required:.2f}")
        self.balance = balance
        self.required = required


class RestrictedFieldError(LedgerServiceError):
    pass


class ProtectedAdminError(LedgerServiceError):
    pass


class InvalidStateTransitionError(LedgerServiceError):
    pass


class AuthenticationError(LedgerServiceError):
    pass


class MissingEvidenceError(LedgerServiceError):
    pass


class UploadTooLargeError(LedgerServiceError):
    pass


class StorageCorruptError(LedgerServiceError):
    """Raised inside the record store when a file cannot be parsed; never leaves it."""
