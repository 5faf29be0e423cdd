"""
Error kinds raised by the store services.

Each kind carries a stable HTTP status. The application turns them into
``{"success": false, "error": <message>}`` responses.
"""
from typing import Optional


class StoreError(Exception):
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidInput(StoreError):
    status_code = 400
    default_message = "Invalid input"


class InvalidAddress(StoreError):
    status_code = 400
    default_message = "Invalid shipping address"


class EmptyCart(StoreError):
    status_code = 400
    default_message = "Cart is empty"


class InsufficientStock(StoreError):
    status_code = 400
    default_message = "Insufficient stock"


class InvalidState(StoreError):
    status_code = 400
    default_message = "Cannot cancel order in current status"


class PaymentIncomplete(StoreError):
    status_code = 400
    default_message = "Payment not completed"


class PaymentProviderError(StoreError):
    status_code = 400
    default_message = "Payment provider error"


class Unauthenticated(StoreError):
    status_code = 401
    default_message = "Unauthorized"


class Forbidden(StoreError):
    status_code = 403
    default_message = "Forbidden"


class NotFound(StoreError):
    status_code = 404
    default_message = "Not found"


class Conflict(StoreError):
    status_code = 409
    default_message = "Conflict"
