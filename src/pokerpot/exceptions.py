"""Custom exceptions for PokerPot."""


class PokerPotError(Exception):
    """Base exception for all PokerPot errors."""

    pass


class ConfigurationError(PokerPotError):
    """Raised when configuration is invalid or missing."""

    pass


class NotFoundError(PokerPotError):
    """Raised when a referenced session, member, buy-in or result does not exist."""

    def __init__(self, entity: str, record_id: str, message: str | None = None):
        self.entity = entity
        self.record_id = record_id
        super().__init__(message or f"{entity} {record_id} not found")


class ValidationError(PokerPotError):
    """Raised for invalid amounts and unbalanced session totals.

    ``discrepancy_cents`` carries the buy-in/cashout difference when the
    error comes from the completion totals check.
    """

    def __init__(self, message: str, discrepancy_cents: int | None = None):
        self.discrepancy_cents = discrepancy_cents
        super().__init__(message)


class SessionCompletedError(ValidationError):
    """Raised when attempting to edit a session that has been completed."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session {session_id} is completed; no edits allowed")


class PermissionDeniedError(PokerPotError):
    """Raised when a user acts outside their role (non-admin, non-owner)."""

    pass


class SyncError(PokerPotError):
    """Raised when push or pull against the remote data service fails."""

    pass


class PartialBulkFailure(PokerPotError):
    """Raised when some items of a bulk approve/reject failed.

    Successful items stay applied; ``failed_ids`` lists the rest.
    """

    def __init__(
        self,
        action: str,
        failed_ids: list[str],
        errors: dict[str, Exception],
        succeeded_ids: list[str],
    ):
        self.action = action
        self.failed_ids = failed_ids
        self.errors = errors
        self.succeeded_ids = succeeded_ids
        super().__init__(
            f"Bulk {action} failed for {len(failed_ids)} of "
            f"{len(failed_ids) + len(succeeded_ids)} buy-ins: {', '.join(failed_ids)}"
        )


class APIError(PokerPotError):
    """Base class for API-related errors."""

    pass


class RemoteAPIError(APIError):
    """Raised when a remote data service request fails."""

    pass


class NotifierError(APIError):
    """Raised when a notification cannot be delivered."""

    pass
