"""
Error taxonomy for the rule-automation operations.

Every failure is scoped to the operation that raised it: each operation runs
in its own transaction and shares no in-memory state with the others.
"""


class NotFoundError(ValueError):
    """A referenced order, customer or product does not exist."""

    def __init__(self, entity: str, key):
        self.entity = entity
        self.key = key
        super().__init__(f"{entity} {key} not found")


class AlreadyDiscountedError(ValueError):
    """Discount requested for an order that already carries one."""

    def __init__(self, order_id: int, discount_percent):
        self.order_id = order_id
        self.discount_percent = discount_percent
        super().__init__(
            f"Order {order_id} already has a {discount_percent}% discount; "
            "re-applying would compound the reduction"
        )


class InconsistentStateError(RuntimeError):
    """A check cannot be evaluated against the current store state.

    Raised by check preconditions; the quality engine skips the check for the
    run instead of failing the whole run.
    """


class TransactionFailure(RuntimeError):
    """Store-level failure inside an operation; the transaction was rolled back."""

    def __init__(self, operation: str, cause: Exception):
        self.operation = operation
        self.cause = cause
        super().__init__(f"{operation} rolled back: {cause}")
