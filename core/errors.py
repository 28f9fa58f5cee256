"""
core/errors.py -- Application error taxonomy.

Every failure that crosses a layer boundary is an AppError subclass carrying:
  type        -- machine-readable category, rendered as error.type / error.code
  message     -- the ONLY text a client ever sees
  status_code -- HTTP status the api/ layer maps it to
  op          -- operation tag ("AuthService.login", "AuthStore.rotate_session")
                 recorded where the error was classified, for server-side logs

Classification happens once, where the error occurs. Callers may re-raise an
AppError unchanged; they never re-classify it, except the deliberate collapse
of distinct causes into one generic message at the auth boundary (login,
refresh, verify_access) which lives in auth/service.py.

The underlying cause (e.g. a SQLAlchemy exception) is chained with
`raise ... from exc` so it reaches the logs but never the response body.

Layer rule: core/ is the kernel. No imports from api/ or auth/.
"""

from __future__ import annotations

from sqlalchemy.exc import IntegrityError


class AppError(Exception):
    """Base class for classified application errors."""

    type: str = "INTERNAL"
    status_code: int = 500
    default_message: str = "Internal server error"

    def __init__(self, message: str | None = None, *, op: str = "") -> None:
        self.message = message or self.default_message
        self.op = op
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.op:
            return f"[{self.op}] {self.message}"
        return self.message


class ValidationFailure(AppError):
    """Malformed input or a business-rule rejection."""

    type = "VALIDATION_FAILURE"
    status_code = 400
    default_message = "Invalid request"


class ConflictFailure(AppError):
    """A unique key is already taken."""

    type = "CONFLICT"
    status_code = 409
    default_message = "Resource already exists"


class NotFound(AppError):
    type = "NOT_FOUND"
    status_code = 404
    default_message = "Not found"


class Unauthorized(AppError):
    type = "UNAUTHORIZED"
    status_code = 401
    default_message = "Not authorized"


class Forbidden(AppError):
    type = "FORBIDDEN"
    status_code = 403
    default_message = "Access denied"


class InternalFailure(AppError):
    """Unexpected failure. Logged in full, surfaced with no detail."""

    type = "INTERNAL"
    status_code = 500
    default_message = "Internal server error"


def classify_db_error(exc: Exception, entity: str, op: str) -> AppError:
    """Translate a raw persistence exception into the taxonomy.

    AppError instances pass through untouched so an error is never classified
    twice. IntegrityError means a unique constraint fired (duplicate email,
    token collision); everything else from the driver is an InternalFailure.
    """
    if isinstance(exc, AppError):
        return exc
    if isinstance(exc, IntegrityError):
        return ConflictFailure(f"{entity} already exists", op=op)
    return InternalFailure(op=op)
