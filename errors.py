from typing import Optional


class AppError(Exception):
    status_code = 500
    default_message = "Something went wrong!"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class Unauthenticated(AppError):
    status_code = 401
    default_message = "unauthorized"

    def __init__(self, message: Optional[str] = None, reason: str = "unauthorized"):
        super().__init__(message)
        # Machine-readable code sent as the websocket close reason
        self.reason = reason


class ValidationError(AppError):
    status_code = 400
    default_message = "Invalid request"


class NotFound(AppError):
    status_code = 404
    default_message = "Not found"


class InternalError(AppError):
    status_code = 500
    default_message = "Server error"
