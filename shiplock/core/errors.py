class ShiplockError(Exception):
    """
    Base exception for all shiplock failures.
    """

    retryable = False


class NotFound(ShiplockError, LookupError):
    """
    Raised when a requested secret, route, or node does not exist.
    """

    pass


class StorageError(ShiplockError):
    """
    Raised when the underlying persistence layer fails.

    Callers own the retry policy; nothing in shiplock retries silently.
    """

    retryable = True


class Unavailable(StorageError):
    """
    Raised when a backing service cannot be reached.
    """

    pass


class Conflict(StorageError):
    """
    Raised on a duplicate secret record for the same token id.

    Never resolved by overwriting the existing record.
    """

    retryable = False


class IntegrityError(ShiplockError):
    """
    Raised when authenticated decryption fails (tampering or corruption).

    Must never be downgraded to NotFound.
    """

    pass


class CommitmentMismatch(IntegrityError):
    """
    Raised when a revealed secret does not hash to the on-chain commitment.
    """

    pass


class Inconsistent(ShiplockError):
    """
    Raised on a referential mismatch between routes and nodes.
    """

    pass


class PreconditionError(ShiplockError, ValueError):
    """
    Raised when an operation is invoked before its preconditions hold.
    """

    pass


class ConfigurationError(ShiplockError, ValueError):
    """
    Raised when configuration is missing or malformed.
    """

    pass


class TransactionFailed(ShiplockError):
    """
    Raised when a submitted ledger transaction reverts or is not confirmed.
    """

    pass
