"""Custom exceptions for the order desk."""
from __future__ import annotations

from typing import Any, Dict, Optional


class StorefrontError(Exception):
    """Base exception for all order desk errors."""

    status_code = 500

    def to_dict(self) -> Dict[str, Any]:
        return {"error": str(self)}


class ValidationError(StorefrontError):
    """Raised when submitted data is incomplete or malformed. Nothing is persisted."""

    status_code = 400

    def __init__(self, message: str, details: Optional[Dict[str, str]] = None):
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {"error": str(self), "details": self.details}


class OrderIdConflictError(StorefrontError):
    """Raised when every order ID allocation attempt collided with a concurrent insert."""

    status_code = 409
    retryable = True

    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__(
            f"Could not allocate a unique order ID after {attempts} attempts. Please retry."
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"error": str(self), "retryable": self.retryable}


class StorageError(StorefrontError):
    """Raised when the database cannot complete a query or transaction."""

    status_code = 503

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        self.cause = cause
        super().__init__(message)


class NotFoundError(StorefrontError):
    """Raised when an order, product or abandoned record does not exist."""

    status_code = 404

    def __init__(self, kind: str, identifier: Any):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} not found: {identifier}")
