"""Custom exception hierarchy for VoxLedger."""

from typing import Any


class VoxLedgerError(Exception):
    """Base exception for all VoxLedger errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)


# ----- Resource Errors -----


class NotFoundError(VoxLedgerError):
    """Requested resource was not found."""

    def __init__(self, resource: str, identifier: str) -> None:
        super().__init__(
            message=f"{resource} not found",
            details={"resource": resource, "identifier": identifier},
        )


class ConflictError(VoxLedgerError):
    """Resource conflict (e.g., duplicate)."""

    pass


class IdentityConflictError(ConflictError):
    """External identifier is already bound to another user."""

    def __init__(
        self,
        platform: str,
        external_id: str,
        internal_id: str,
        bound_to: str | None = None,
    ) -> None:
        if bound_to is not None:
            message = f"{platform} id '{external_id}' is already bound to another user"
        else:
            message = f"User already holds a different {platform} id"
        super().__init__(
            message=message,
            details={
                "platform": platform,
                "external_id": external_id,
                "internal_id": internal_id,
                "bound_to": bound_to,
            },
        )


# ----- Validation Errors -----


class ValidationError(VoxLedgerError):
    """Input validation failed."""

    pass


class InvalidBillingMonthError(ValidationError):
    """Billing month is not a valid YYYY-MM value."""

    def __init__(self, value: str) -> None:
        super().__init__(
            message=f"Invalid billing month '{value}', expected YYYY-MM",
            details={"billing_month": value},
        )


# ----- Infrastructure Errors -----


class StorageError(VoxLedgerError):
    """Persistent storage is unavailable or rejected a write."""

    pass
