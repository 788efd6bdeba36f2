"""Error taxonomy shared by the lifecycle engine, vote service and API."""

import asyncpg


class AppError(Exception):
    """Base application error with a stable machine-readable code."""

    retryable = False

    def __init__(self, message: str, code: str, status_code: int = 400) -> None:
        self.message = message
        self.code = code
        self.status_code = status_code
        super().__init__(message)

    def to_dict(self) -> dict:
        """Serialize the error in the API response envelope."""
        return {
            "success": False,
            "message": self.message,
            "code": self.code,
            "data": None,
            "errors": None,
        }


class InvalidArgumentError(AppError):
    """A caller-supplied value fails a static check."""

    def __init__(self, reason: str) -> None:
        super().__init__(message=reason, code="INVALID_ARGUMENT", status_code=400)


class NotFoundError(AppError):
    """Referenced entity does not exist or is not visible to the actor."""

    def __init__(self, resource: str, message: str | None = None) -> None:
        self.resource = resource
        super().__init__(
            message=message or f"{resource} not found", code="NOT_FOUND", status_code=404
        )


class UnauthorizedError(AppError):
    """Actor lacks the role required for the operation."""

    def __init__(self, reason: str = "Not authorized") -> None:
        super().__init__(message=reason, code="UNAUTHORIZED", status_code=403)


class InvalidStateError(AppError):
    """Operation not legal for the entity's current lifecycle state."""

    def __init__(self, reason: str) -> None:
        super().__init__(message=reason, code="INVALID_STATE", status_code=409)


class ConflictError(AppError):
    """Operation would violate a uniqueness or capacity invariant."""

    def __init__(self, reason: str, code: str = "CONFLICT") -> None:
        super().__init__(message=reason, code=code, status_code=409)


class StoreUnavailableError(AppError):
    """Transient failure talking to the ballot store."""

    retryable = True

    def __init__(self, reason: str = "Ballot store unavailable, please retry") -> None:
        super().__init__(message=reason, code="STORE_UNAVAILABLE", status_code=503)


# SQLSTATE -> error kind. Class prefixes are matched after exact codes.
_SQLSTATE_EXACT: dict[str, type[AppError]] = {
    "23505": ConflictError,  # unique_violation
    "23000": ConflictError,  # integrity_constraint_violation (vote limit trigger)
    "23P01": ConflictError,  # exclusion_violation
    "23503": NotFoundError,  # foreign_key_violation
    "23514": InvalidArgumentError,  # check_violation
    "23502": InvalidArgumentError,  # not_null_violation
    "22023": InvalidArgumentError,  # invalid_parameter_value
    "42501": UnauthorizedError,  # insufficient_privilege
    "28000": UnauthorizedError,  # invalid_authorization_specification
    "55000": InvalidStateError,  # object_not_in_prerequisite_state
    "P0002": NotFoundError,  # no_data_found
    "40001": StoreUnavailableError,  # serialization_failure
    "40P01": StoreUnavailableError,  # deadlock_detected
}
_SQLSTATE_CLASS: dict[str, type[AppError]] = {
    "22": InvalidArgumentError,  # data exception
    "08": StoreUnavailableError,  # connection exception
    "53": StoreUnavailableError,  # insufficient resources
    "57": StoreUnavailableError,  # operator intervention
}


def translate_store_error(exc: BaseException) -> AppError | None:
    """Map a driver-level exception onto the error taxonomy.

    Returns None when the exception is not a store error.
    """
    if isinstance(exc, AppError):
        return exc

    if isinstance(exc, asyncpg.exceptions.PostgresError):
        sqlstate = getattr(exc, "sqlstate", None) or ""
        detail = getattr(exc, "message", None) or str(exc)
        kind = _SQLSTATE_EXACT.get(sqlstate) or _SQLSTATE_CLASS.get(sqlstate[:2])
        if kind is None:
            return None
        if kind is NotFoundError:
            return NotFoundError("Referenced record", message=detail)
        if kind is StoreUnavailableError:
            return StoreUnavailableError(f"Ballot store unavailable: {detail}")
        return kind(detail)

    # Query arguments the driver cannot encode, e.g. integers beyond int64
    if isinstance(exc, asyncpg.exceptions.DataError):
        return InvalidArgumentError(f"Invalid query argument: {exc!s}")

    if isinstance(exc, (asyncpg.exceptions.InterfaceError, OSError, TimeoutError)):
        return StoreUnavailableError(f"Ballot store unavailable: {exc!s}")

    return None
