"""
Exceptions raised by the request handlers.

Every error carries the HTTP status it maps to; ``responses.register_error_handlers``
turns them into the shared ``{"success": false, "message": ...}`` envelope.
"""
from typing import List, Optional


class ShopError(Exception):
    """Base exception for all API errors"""
    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)


class ValidationError(ShopError):
    """Missing or malformed input"""
    status_code = 400

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        self.errors = errors or []
        super().__init__(message)


class NotFoundError(ShopError):
    status_code = 404


class AuthenticationError(ShopError):
    status_code = 401


class AuthorizationError(ShopError):
    status_code = 403


class ConflictError(ShopError):
    """Duplicate unique key or lost race on cart/order writes"""
    status_code = 409


class UpstreamError(ShopError):
    """Raised when the payment gateway rejects a request or cannot be reached"""

    def __init__(self, message: str, rejected: bool = False):
        self.rejected = rejected
        super().__init__(message, status_code=400 if rejected else 500)
