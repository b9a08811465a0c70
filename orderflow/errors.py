class ApiError(Exception):
    """Base error carrying the HTTP status it maps to."""

    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: str = None, status_code: int = None):
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)


class InvalidOrder(ApiError):
    status_code = 400
    default_message = "Invalid order"


class InvalidPayload(ApiError):
    status_code = 400
    default_message = "Invalid payload"


class SignatureInvalid(ApiError):
    status_code = 400
    default_message = "Invalid signature"


class Unauthorized(ApiError):
    status_code = 401
    default_message = "Authentication required"


class Forbidden(ApiError):
    status_code = 403
    default_message = "Access denied. Admin privileges required."


class NotFound(ApiError):
    status_code = 404
    default_message = "Not found"


class GatewayUnavailable(ApiError):
    status_code = 502
    default_message = "Payment gateway unavailable"
