from fastapi import HTTPException, status


class AppError(HTTPException):
    """Base for the error taxonomy rendered by the API envelope."""

    status_code_default = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "internal_error"
    default_message = "Internal server error"

    def __init__(self, message: str | None = None, *, headers: dict[str, str] | None = None) -> None:
        super().__init__(
            status_code=self.status_code_default,
            detail=message or self.default_message,
            headers=headers,
        )

    @property
    def message(self) -> str:
        return str(self.detail)


class Unauthenticated(AppError):
    status_code_default = status.HTTP_401_UNAUTHORIZED
    code = "unauthenticated"
    default_message = "Not authenticated"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message, headers={"WWW-Authenticate": "Bearer"})


class Forbidden(AppError):
    status_code_default = status.HTTP_403_FORBIDDEN
    code = "forbidden"
    default_message = "Not allowed"


class NotFound(AppError):
    status_code_default = status.HTTP_404_NOT_FOUND
    code = "not_found"
    default_message = "Not found"


class Conflict(AppError):
    status_code_default = status.HTTP_409_CONFLICT
    code = "conflict"
    default_message = "Resource already exists"


class InvalidInput(AppError):
    status_code_default = status.HTTP_400_BAD_REQUEST
    code = "invalid_input"
    default_message = "Invalid request"


class UpstreamFailure(AppError):
    """Database or object store failure; the message stays generic."""

    status_code_default = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "upstream_failure"
    default_message = "Upstream service failure"


class TooManyRequests(AppError):
    status_code_default = status.HTTP_429_TOO_MANY_REQUESTS
    code = "too_many_requests"
    default_message = "Too many requests. Try again later."
