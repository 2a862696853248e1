"""Domain exceptions for the marketplace order core.

Every exception carries a machine-readable ``code`` and the HTTP status the
blueprints answer with, so a single error handler can turn any of them into
an ``{'ok': False, 'error': ..., 'code': ...}`` response.
"""


class MarketplaceError(Exception):
    """Base exception for all marketplace errors."""

    code = 'INTERNAL_ERROR'
    status_code = 500

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message()
        super().__init__(self.message)

    def default_message(self) -> str:
        return 'Internal error'

    def to_dict(self) -> dict:
        return {'ok': False, 'error': self.message, 'code': self.code}


class ValidationError(MarketplaceError):
    """Raised when input has the wrong shape or is out of range."""

    code = 'VALIDATION_ERROR'
    status_code = 400

    def __init__(self, message: str | None = None, field: str | None = None):
        self.field = field
        super().__init__(message)

    def default_message(self) -> str:
        if self.field:
            return f'Invalid value for {self.field}'
        return 'Invalid input'


class EmptyCartError(ValidationError):
    """Raised when pricing or checkout receives no lines."""

    code = 'EMPTY_CART'

    def default_message(self) -> str:
        return 'Cart is empty'


class InvalidQuantityError(ValidationError):
    """Raised when a cart line has a quantity of zero or less."""

    code = 'INVALID_QUANTITY'

    def __init__(self, quantity, variant_id=None):
        self.quantity = quantity
        self.variant_id = variant_id
        msg = f'Quantity must be positive, got {quantity}'
        if variant_id is not None:
            msg = f'{msg} for variant {variant_id}'
        super().__init__(msg, field='quantity')


class AuthorizationError(MarketplaceError):
    """Raised when the caller lacks the role or ownership for an action."""

    code = 'NOT_AUTHORIZED'
    status_code = 403

    def default_message(self) -> str:
        return 'Insufficient permissions'


class NotFoundError(MarketplaceError):
    """Raised when a referenced record doesn't exist."""

    code = 'NOT_FOUND'
    status_code = 404

    def __init__(self, resource: str, resource_id=None):
        self.resource = resource
        self.resource_id = resource_id
        msg = f'{resource} not found'
        if resource_id is not None:
            msg = f'{resource} {resource_id} not found'
        super().__init__(msg)


class InvalidTransitionError(MarketplaceError):
    """Raised when a status change breaks the state machine rules."""

    code = 'INVALID_STATUS_TRANSITION'
    status_code = 409

    def __init__(self, current, target, reason: str | None = None):
        self.current = current
        self.target = target
        current_value = getattr(current, 'value', current)
        target_value = getattr(target, 'value', target)
        msg = f'Cannot change status from {current_value} to {target_value}'
        if reason:
            msg = f'{msg} ({reason})'
        super().__init__(msg)


class InsufficientStockError(MarketplaceError):
    """Raised when tracked inventory can't cover a reservation or sale."""

    code = 'INSUFFICIENT_INVENTORY'
    status_code = 409

    def __init__(self, variant_id, requested: int, available: int | None = None):
        self.variant_id = variant_id
        self.requested = requested
        self.available = available
        msg = f'Insufficient stock for variant {variant_id}: requested {requested}'
        if available is not None:
            msg = f'{msg}, available {available}'
        super().__init__(msg)


class AlreadyProcessedError(MarketplaceError):
    """Raised when a one-shot operation is attempted a second time."""

    code = 'ALREADY_PROCESSED'
    status_code = 409

    def default_message(self) -> str:
        return 'Request already processed'


class PersistenceError(MarketplaceError):
    """Raised when the storage layer fails to apply a change."""

    code = 'DATABASE_ERROR'
    status_code = 500

    def default_message(self) -> str:
        return 'Database error'
