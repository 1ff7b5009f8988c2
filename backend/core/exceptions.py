"""Order lifecycle error taxonomy.

Every error here is recoverable at the boundary that raised it. The API layer
maps ``status_code``/``code`` onto an HTTP response; services log and carry on.
"""


class OrderError(Exception):
    status_code = 400
    code = "order_error"

    def __init__(self, message: str, order_id: str = None):
        super().__init__(message)
        self.message = message
        self.order_id = order_id

    def to_detail(self) -> dict:
        return {"code": self.code, "message": self.message}


class InvalidTransition(OrderError):
    """Requested status is not a direct successor, or the order is terminal."""
    status_code = 409
    code = "invalid_transition"


class PaymentRequired(OrderError):
    """Order must be paid before staff can act on it."""
    status_code = 402
    code = "payment_required"


class NothingToPrint(OrderError):
    """No unticketed line items match the KOT request."""
    status_code = 200
    code = "nothing_to_print"


class StoreConflict(OrderError):
    """Stored order moved on since it was loaded; reload and decide again."""
    status_code = 409
    code = "store_conflict"


class TransportUnavailable(OrderError):
    """Fan-out delivery failed. The write itself already succeeded.

    ``delivered`` counts the handles that did receive the event.
    """
    status_code = 503
    code = "transport_unavailable"

    def __init__(self, message: str, order_id: str = None, delivered: int = 0):
        super().__init__(message, order_id=order_id)
        self.delivered = delivered


class OrderNotFound(OrderError):
    status_code = 404
    code = "order_not_found"


class InvalidOrder(OrderError):
    status_code = 422
    code = "invalid_order"
