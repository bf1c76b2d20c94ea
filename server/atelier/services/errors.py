class ChatError(Exception):
    """Base class for errors reported back to the caller of a chat operation."""

    code = "error"
    status_code = 400

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class ValidationError(ChatError):
    code = "validation"
    status_code = 422


class NotFoundError(ChatError):
    code = "not_found"
    status_code = 404


class AuthorizationError(ChatError):
    code = "forbidden"
    status_code = 403


class TransientError(ChatError):
    code = "unavailable"
    status_code = 503
