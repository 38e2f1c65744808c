"""Exception hierarchy for points and redemption operations.

Every failure a workflow can report is a subclass of :class:`PointsError`
carrying a stable ``code`` and the HTTP status the API answers with.
"""


class PointsError(Exception):
    """Base class for all Kid Points domain errors."""

    code = "points_error"
    status_code = 400

    def __init__(self, message: str | None = None):
        super().__init__(message or self.__doc__)
        self.message = message or self.__doc__


class Forbidden(PointsError):
    """Actor does not own or match the target entity."""

    code = "forbidden"
    status_code = 403


class NotFound(PointsError):
    """Referenced entity does not exist."""

    code = "not_found"
    status_code = 404


class InvalidState(PointsError):
    """Transition is not allowed from the entity's current state."""

    code = "invalid_state"
    status_code = 409


class InsufficientBalance(PointsError):
    """Operation would drive the balance below zero."""

    code = "insufficient_balance"
    status_code = 409

    def __init__(self, balance: int, delta: int):
        super().__init__(
            f"Balance {balance} cannot absorb a change of {delta} points"
        )
        self.balance = balance
        self.delta = delta


class StorageFailure(PointsError):
    """The transaction could not be committed."""

    code = "storage_failure"
    status_code = 503
