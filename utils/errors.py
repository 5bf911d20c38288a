from flask import jsonify


class ApiError(Exception):
    """Base error carrying the HTTP status and a stable code clients can branch on."""

    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        body = {"error": self.message, "code": self.code}
        if self.details:
            body["details"] = self.details
        return body


class BadRequestError(ApiError):
    status_code = 400
    code = "BAD_REQUEST"


class InsufficientBalanceError(BadRequestError):
    code = "INSUFFICIENT_BALANCE"


class PromotionLimitError(BadRequestError):
    code = "PROMOTION_LIMIT_REACHED"


class UnauthorizedError(ApiError):
    status_code = 401
    code = "UNAUTHORIZED"


class ForbiddenError(ApiError):
    status_code = 403
    code = "FORBIDDEN"


class NotFoundError(ApiError):
    status_code = 404
    code = "NOT_FOUND"


class ConflictError(ApiError):
    status_code = 409
    code = "CONFLICT"


class GoneError(ApiError):
    status_code = 410
    code = "GONE"


class InternalError(ApiError):
    status_code = 500
    code = "INTERNAL_ERROR"


def register_error_handlers(app):
    @app.errorhandler(ApiError)
    def _handle_api_error(exc: ApiError):
        return jsonify(exc.to_dict()), exc.status_code
