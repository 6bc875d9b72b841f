"""
Error types for the Datastore SDK.

This module defines all exception types raised by the SDK:
- DatastoreError: Base exception
- UsageError: Caller misuse, detected before any network call
- InvalidArgumentError: A rejected argument value
- ApiError: Non-success response from the Datastore API
- ConnectionError: The API endpoint could not be reached

Invariants:
    - All errors inherit from DatastoreError
    - Usage errors are raised before any request is dispatched
    - Errors raised by a transport reach the caller unwrapped
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class DatastoreError(Exception):
    """Base exception for all Datastore SDK errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "DATASTORE_ERROR"
        self.details = details or {}


class UsageError(DatastoreError):
    """The SDK was called incorrectly.

    Raised when:
    - get() is called without any key
    - allocate_ids() receives a complete key
    - A read consistency is combined with an active transaction
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, code=code or "USAGE_ERROR", details=details)


class InvalidArgumentError(UsageError):
    """An argument value was rejected.

    Attributes:
        argument: Name of the offending argument
        value: The rejected value
    """

    def __init__(
        self,
        message: str,
        argument: Optional[str] = None,
        value: Any = None,
    ) -> None:
        super().__init__(
            message,
            code="INVALID_ARGUMENT",
            details={"argument": argument, "value": value},
        )
        self.argument = argument
        self.value = value


class ApiError(DatastoreError):
    """The Datastore API answered with an error status.

    Attributes:
        status_code: HTTP status code
        response: Decoded response body, if any
    """

    def __init__(
        self,
        message: str,
        status_code: int,
        response: Optional[Dict[str, Any]] = None,
    ) -> None:
        status = None
        if response and isinstance(response.get("error"), dict):
            status = response["error"].get("status")

        super().__init__(
            message,
            code=status or "API_ERROR",
            details={"status_code": status_code},
        )
        self.status_code = status_code
        self.response = response


class ConnectionError(DatastoreError):
    """Failed to reach the Datastore API.

    Raised when:
    - Endpoint is unreachable
    - Request times out
    """

    def __init__(
        self,
        message: str,
        address: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code="CONNECTION_ERROR",
            details={"address": address},
        )
        self.address = address
