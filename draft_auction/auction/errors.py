"""
Error taxonomy for auction operations.

Every error carries a machine-readable ``code`` (the specific failure) and a
``category`` (how the caller should react). The API layer maps categories to
HTTP status codes and always returns the current auction state alongside.
"""


class AuctionError(Exception):
    """Base class for all auction operation failures."""

    category = 'AuctionError'
    http_status = 500

    def __init__(self, message: str, code: str = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.__class__.__name__

    def to_dict(self) -> dict:
        return {
            'code': self.code,
            'category': self.category,
            'message': self.message
        }


class ValidationError(AuctionError):
    """Malformed or missing input. No mutation was attempted."""

    category = 'ValidationError'
    http_status = 400


class UnknownRecord(ValidationError):
    """A player or team id that the ledger does not hold."""

    http_status = 404


class PreconditionFailed(AuctionError):
    """The request is well-formed but not legal in the current state."""

    category = 'PreconditionFailed'
    http_status = 409


class ResourceExhausted(AuctionError):
    """The team cannot afford the bid or has no roster slot left."""

    category = 'ResourceExhausted'
    http_status = 409


class StorageFailure(AuctionError):
    """The ledger write failed. Nothing was committed; safe to retry."""

    category = 'StorageFailure'
    http_status = 503


class InternalInconsistency(AuctionError):
    """An invariant violation was detected. The operation was abandoned."""

    category = 'InternalInconsistency'
    http_status = 500


# Specific failures

class AuctionNotActive(PreconditionFailed):
    pass


class BidTooLow(PreconditionFailed):
    pass


class BelowIncrement(PreconditionFailed):
    pass


class InvalidLot(PreconditionFailed):
    pass


class LotAlreadyActive(PreconditionFailed):
    pass


class NotRunning(PreconditionFailed):
    pass


class NotPaused(PreconditionFailed):
    pass


class NoActiveLot(PreconditionFailed):
    pass


class NotSold(PreconditionFailed):
    pass


class PlayerLocked(PreconditionFailed):
    """The player is the current lot or already sold."""


class InsufficientBudget(ResourceExhausted):
    pass


class NoSlotsLeft(ResourceExhausted):
    pass
