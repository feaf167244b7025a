from django.core.exceptions import ValidationError


class LedgerError(Exception):
    """Base class for ledger errors that are not input validation."""
    pass


class UnbalancedJournalError(ValidationError):
    """Raised when a JournalEntry fails double-entry balance check."""
    pass


class ImmutableStateError(ValidationError):
    """Raised on an attempt to change a posted entry or a paid bank transaction."""
    pass


class StatementParseError(ValidationError):
    """Raised when a bank statement file cannot be read."""
    pass


class ConflictError(LedgerError):
    """Raised when the requested change conflicts with persisted state."""
    pass


class AlreadyPostedError(ConflictError):
    """Raised when a JournalEntry is already posted (or another caller won the race)."""
    pass


class AlreadyProcessedError(ConflictError):
    """Raised when a payment or reversal was already booked for the source row."""
    pass


class ConsistencyFailure(LedgerError):
    """Balance sheet does not balance. Signals a posting defect, not bad input."""
    pass
