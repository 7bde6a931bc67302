"""Domain-specific exceptions for the budget ledger core services."""


class ValidationError(ValueError):
    """Raised when provided data does not meet validation requirements."""


class RecordNotFoundError(LookupError):
    """Raised when a budget, expense, alert or notification cannot be located."""


class ForbiddenError(PermissionError):
    """Raised when a record exists but belongs to another user."""


class AuthenticationError(PermissionError):
    """Raised when no authenticated user is available for an operation."""


class PersistenceError(IOError):
    """Raised when the persistence layer encounters unrecoverable issues."""
