"""Exception taxonomy for the shortlink core.

Client errors become outcomes at the service seam and are never retried.
Infrastructure errors on the cache tier are recovered where they happen;
infrastructure errors on the durable tier propagate as server errors.
"""

__all__ = [
    "ShortlinkError",
    "InvalidCodeError",
    "InvalidPatchError",
    "CodeTakenError",
    "ConflictError",
    "GenerationExhaustedError",
    "EntropyUnavailableError",
    "StoreUnavailableError",
]


class ShortlinkError(Exception):
    """Base exception for the shortlink service."""


class InvalidCodeError(ShortlinkError):
    """Raised when a caller-supplied short code has the wrong shape."""

    def __init__(self, code: str, reason: str = "Custom code must be 4-20 letters, digits, '-' or '_'"):
        self.code = code
        self.reason = reason
        super().__init__(f"{reason}: {code!r}")


class InvalidPatchError(ShortlinkError):
    """Raised when a field update contains unknown or invalid fields."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class CodeTakenError(ShortlinkError):
    """Raised when a custom code already exists in the namespace."""

    def __init__(self, code: str):
        self.code = code
        super().__init__(f"Custom code '{code}' is already taken")


class ConflictError(ShortlinkError):
    """Raised by the durable store when an insert violates the code uniqueness constraint."""

    def __init__(self, code: str, original_error: Exception | None = None):
        self.code = code
        self.original_error = original_error
        super().__init__(f"Short code '{code}' already exists")


class GenerationExhaustedError(ShortlinkError):
    """Raised when no unused code was claimed within the attempt budget."""

    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__(f"Could not claim a unique short code after {attempts} attempts")


class EntropyUnavailableError(ShortlinkError):
    """Raised when the OS random source cannot produce bytes."""

    def __init__(self, original_error: Exception | None = None):
        self.original_error = original_error
        super().__init__("Entropy source unavailable")


class StoreUnavailableError(ShortlinkError):
    """Raised when the durable store times out or cannot be reached."""

    def __init__(self, operation: str, original_error: Exception | None = None):
        self.operation = operation
        self.original_error = original_error
        super().__init__(f"Durable store unavailable during {operation}")
