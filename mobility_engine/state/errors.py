"""Error types for the decision engines.

Business logic errors that should not be logged as database errors.
Engines catch these at their public boundary and report an explicit
failure value instead of propagating.
"""


class NotFoundError(LookupError):
    """Raised when an expected record does not exist.

    This is an expected condition, logged at DEBUG by callers.
    """


class ProtocolNotFoundError(NotFoundError):
    """Raised when a protocol id does not resolve to a protocol row."""


class NoActiveAssignmentError(NotFoundError):
    """Raised when a patient has no active protocol assignment."""


class MalformedProtocolError(ValueError):
    """Raised when stored protocol data cannot be parsed into phases.

    Unlike a missing record this indicates bad data and is logged at ERROR.
    """


class InvalidTransitionError(RuntimeError):
    """Raised when an assignment state transition is not allowed."""
