from enum import Enum

from digital_store.errors import IllegalTransitionError


class OrderStatus(str, Enum):
    PENDING = "pending"
    IN_PROCESS = "in_process"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    NOT_FOUND = "not_found"

    def __str__(self):
        return self.value

    @property
    def is_terminal(self):
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({OrderStatus.APPROVED, OrderStatus.REJECTED, OrderStatus.CANCELLED})


def can_transition(current, new):
    """Terminal statuses are final; everything else may move anywhere."""
    current, new = OrderStatus(current), OrderStatus(new)
    if current == new:
        return True
    return not current.is_terminal


def check_transition(current, new):
    if not can_transition(current, new):
        raise IllegalTransitionError(OrderStatus(current), OrderStatus(new))
