from typing import Any, Optional


class LedgerError(Exception):
    status_code = 500
    default_message = "Unexpected error"

    def __init__(self, message: Optional[str] = None, details: Any = None) -> None:
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        self.details = details


class ValidationError(LedgerError):
    status_code = 400
    default_message = "Invalid data"

    @classmethod
    def for_field(cls, field: str, message: str) -> "ValidationError":
        return cls("Invalid data", details=[{"field": field, "message": message}])


class AuthenticationError(LedgerError):
    status_code = 401
    default_message = "Unauthorized"


class AuthorizationError(LedgerError):
    status_code = 403
    default_message = "Forbidden"


class NotFoundError(LedgerError):
    status_code = 404
    default_message = "Not found"


class StoreError(LedgerError):
    status_code = 500
    default_message = "Storage failure"


class AggregationError(LedgerError):
    """One or more summary buckets could not be written."""

    status_code = 503
    default_message = "Summary recomputation failed"

    def __init__(self, user_id: int, failed_buckets: list[str]) -> None:
        super().__init__(
            self.default_message,
            details={"user_id": user_id, "failed_buckets": failed_buckets},
        )
        self.user_id = user_id
        self.failed_buckets = failed_buckets


class AggregationInconsistency(LedgerError):
    """The ledger write committed but its summaries may be stale."""

    status_code = 503
    default_message = "Operation saved but summaries could not be refreshed"

    def __init__(self, operation_id: int, failed_buckets: list[str]) -> None:
        super().__init__(
            self.default_message,
            details={"operation_id": operation_id, "stale_buckets": failed_buckets},
        )
        self.operation_id = operation_id
        self.failed_buckets = failed_buckets
