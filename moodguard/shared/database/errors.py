"""Store error hierarchy shared by every adapter."""


class RepositoryError(Exception):
    """Base exception for repository errors."""
    pass


class NotFoundError(RepositoryError):
    """Entity not found in the store."""
    pass


class DuplicateError(RepositoryError):
    """Duplicate entity already exists."""
    pass


class StoreUnavailableError(RepositoryError):
    """Backend could not be reached or refused the operation."""
    pass
