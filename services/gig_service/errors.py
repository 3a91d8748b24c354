from fastapi import status


class MarketplaceError(Exception):
    """Business-rule failure surfaced to the caller with a stable kind."""

    kind = "error"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"detail": self.message, "kind": self.kind}


class NotFoundError(MarketplaceError):
    kind = "not_found"
    status_code = status.HTTP_404_NOT_FOUND


class ForbiddenError(MarketplaceError):
    kind = "forbidden"
    status_code = status.HTTP_403_FORBIDDEN


class ConflictError(MarketplaceError):
    """A state-transition precondition no longer holds."""

    kind = "conflict"
    status_code = status.HTTP_409_CONFLICT


class DuplicateBidError(ConflictError):
    kind = "duplicate_bid"


class ValidationError(MarketplaceError):
    kind = "validation"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class TransientError(MarketplaceError):
    """Store unavailable or transaction aborted; the whole request may be retried."""

    kind = "transient"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
