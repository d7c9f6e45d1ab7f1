"""Custom exception types for the call log dispatcher.

Error messages follow the same layout everywhere:
- What failed (specific operation or component)
- Why it failed (the specific condition)
- How to fix it (actionable guidance, where there is one)

Only StorageFault subclasses are ever recovered locally (at the background
worker boundary). Every other error type here surfaces to the caller.
"""


class CallLogError(Exception):
    """Base exception for all call log dispatcher errors."""

    pass


class ConfigValidationError(CallLogError):
    """Raised when config.yaml fails Pydantic validation.

    Includes specific field errors with actionable messages.
    """

    pass


class ConfigLoadError(CallLogError):
    """Raised when config.yaml cannot be loaded (file not found, YAML parse error)."""

    pass


class StorageFault(CallLogError):
    """Raised when the backing call history store fails at the storage level.

    These are environmental failures (capacity, I/O, corruption, absence)
    rather than bugs, so the background worker logs and suppresses them.

    Attributes:
        category: Short machine-readable fault category for logs
    """

    category = "storage"

    def __init__(self, message: str, operation: str | None = None):
        super().__init__(message)
        self.operation = operation


class StorageFullError(StorageFault):
    """Raised when the store cannot grow (database or disk is full)."""

    category = "disk_full"


class StorageIOError(StorageFault):
    """Raised when the store hits a disk I/O error."""

    category = "disk_io"


class StorageCorruptError(StorageFault):
    """Raised when the store file is malformed or not a database."""

    category = "corrupt"


class StoreUnavailableError(StorageFault):
    """Raised when the store is absent or misconfigured (missing file or tables)."""

    category = "unavailable"


class PredicateError(CallLogError):
    """Raised when a filter predicate is malformed.

    This is a programming fault: it is never suppressed by the worker.
    """

    pass


class ResultSetClosedError(CallLogError):
    """Raised when a result set is read after it was closed."""

    pass


class DispatcherClosedError(CallLogError):
    """Raised when an operation is submitted to a dispatcher that was closed."""

    pass
