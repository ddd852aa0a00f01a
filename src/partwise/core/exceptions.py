"""
Exception classes for partwise.

Provides the error taxonomy used by the transfer engine: client-side errors
are fatal, network and server errors are classified for retry, and
cancellation and integrity failures are surfaced as-is.
"""

from typing import Any, Dict, Optional


class PartwiseError(Exception):
    """Base exception for all partwise errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} (Details: {self.details})"
        return self.message


class TransferClientError(PartwiseError):
    """Raised for invalid parameters, local file I/O and serialization failures."""

    def __init__(self, message: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.cause = cause


class ConfigurationError(TransferClientError):
    """Raised for configuration-related errors."""


class InvalidPartSizeError(TransferClientError):
    """Raised when the part size or resulting part count violates protocol limits."""

    def __init__(self, message: str, part_size: int) -> None:
        super().__init__(message)
        self.part_size = part_size
        self.details = {"part_size": part_size}


class NetworkError(PartwiseError):
    """Raised for transient connection and timeout failures."""

    def __init__(self, message: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.cause = cause


class ServerError(PartwiseError):
    """Raised when the object store answers with an error response."""

    def __init__(
        self,
        message: str,
        status_code: int,
        code: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> None:
        details: Dict[str, Any] = {"status_code": status_code}
        if code:
            details["code"] = code
        if request_id:
            details["request_id"] = request_id
        super().__init__(message, details)
        self.status_code = status_code
        self.code = code
        self.request_id = request_id


class TransferCancelledError(PartwiseError):
    """Raised when a transfer was cancelled or aborted by the user."""

    def __init__(self, message: str = "Transfer cancelled", aborted: bool = False) -> None:
        super().__init__(message, {"aborted": aborted})
        self.aborted = aborted


class ChecksumMismatchError(PartwiseError):
    """Raised when a transferred object does not match the remote-reported checksum or size."""

    def __init__(self, message: str, expected: Any, actual: Any) -> None:
        super().__init__(message, {"expected": expected, "actual": actual})
        self.expected = expected
        self.actual = actual


class PartTransferError(PartwiseError):
    """Raised when a part exhausts its retries and the transfer stops."""

    def __init__(
        self,
        part_number: int,
        operation: str,
        checkpoint_path: Optional[str],
        cause: Optional[BaseException] = None,
    ) -> None:
        message = f"{operation} failed for part {part_number}: {cause}"
        if checkpoint_path:
            message += f"; checkpoint retained at {checkpoint_path}"
        super().__init__(message, {"part_number": part_number, "operation": operation})
        self.part_number = part_number
        self.operation = operation
        self.checkpoint_path = checkpoint_path
        self.cause = cause


class SchedulerStateError(PartwiseError):
    """Raised when the task scheduler is driven out of lifecycle order."""

    def __init__(self, operation: str, state: str) -> None:
        super().__init__(
            f"Cannot {operation} while scheduler is {state}",
            {"operation": operation, "state": state},
        )
        self.operation = operation
        self.state = state
