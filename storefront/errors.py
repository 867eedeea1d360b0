"""Error taxonomy shared by the services and rendered by the app's handlers."""


class StorefrontError(Exception):
    status_code = 500
    default_message = "internal error"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class Unauthenticated(StorefrontError):
    status_code = 401
    default_message = "token not provided"


class InvalidToken(StorefrontError):
    status_code = 403
    default_message = "invalid token"


class Forbidden(StorefrontError):
    status_code = 403
    default_message = "forbidden"


class InvalidInput(StorefrontError, ValueError):
    status_code = 400
    default_message = "invalid input"


class NotFound(StorefrontError):
    status_code = 404
    default_message = "not found"


class InsufficientStock(StorefrontError):
    status_code = 400
    default_message = "insufficient stock"


class Conflict(StorefrontError):
    status_code = 409
    default_message = "already exists"


class Internal(StorefrontError):
    pass
