"""Error taxonomy shared by the matching engine, the store and the request lifecycle."""


class UniRideError(Exception):
    """Base class for every error raised by this package."""
    pass


class ValidationError(UniRideError):
    """Raised for malformed input, before any store call is made."""
    pass


class StateConflict(UniRideError):
    """Raised when a trip request transition is not legal from its current state."""
    pass


class NotFound(UniRideError):
    """Raised when a referenced row does not exist."""
    pass


class PermissionDenied(UniRideError):
    """Raised when the acting user may not perform the operation."""
    pass


class StoreUnavailable(UniRideError):
    """Raised when the backing store fails (network, auth expiry, quota)."""
    pass


class PartialSideEffectFailure(UniRideError):
    """The primary write succeeded but a dependent notification was not stored.

    Never raised out of the lifecycle; it is attached to the operation result
    as a warning.
    """

    def __init__(self, message, request_id=None, recipient_id=None):
        super().__init__(message)
        self.request_id = request_id
        self.recipient_id = recipient_id
