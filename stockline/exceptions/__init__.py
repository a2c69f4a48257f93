"""Custom exceptions for the entry engine."""

from decimal import Decimal


def _fmt_qty(value) -> str:
    value = Decimal(str(value))
    if value % 1 == 0:
        return f"{int(value)}"
    return f"{value:.4f}".rstrip('0').rstrip('.')


class EntryError(Exception):
    """Base exception for all engine errors."""
    def __init__(self, message="An internal error occurred", status_code=500, payload=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload

    def to_dict(self):
        rv = dict(self.payload or ())
        rv['message'] = self.message
        rv['status'] = 'error'
        return rv


class ValidationError(EntryError):
    """Missing or invalid line/header data. Blocks submission."""
    def __init__(self, message, payload=None):
        super().__init__(message, 400, payload)


class NotFoundError(EntryError):
    """Exception raised when a resource is not found."""
    def __init__(self, message="Resource not found", payload=None):
        super().__init__(message, 404, payload)


class StockExhaustedError(EntryError):
    """Raised when a selection would leave no stock for the row."""
    def __init__(self, product_name, message=None):
        message = message or f'Cannot sell "{product_name}": no stock available (all stock already in this invoice).'
        super().__init__(message, 409, {'product_name': product_name})


class InsufficientStockError(EntryError):
    """Raised when the pre-submit check finds less live stock than requested."""
    def __init__(self, product_name, required, available):
        message = (
            f'Insufficient stock for "{product_name}". '
            f'Available: {_fmt_qty(available)}, Required: {_fmt_qty(required)}'
        )
        super().__init__(message, 409, {
            'product_name': product_name,
            'required': str(required),
            'available': str(available),
        })


class PersistenceConflict(EntryError):
    """The document store rejected a save/update/delete."""
    def __init__(self, message="Save failed", payload=None):
        super().__init__(message, 409, payload)
