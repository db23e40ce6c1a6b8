from __future__ import annotations

import enum

from app.models.transaction import PaymentStatus
from app.services.errors import InvalidStateTransition


class Action(str, enum.Enum):
    UPLOAD_PROOF = "upload payment proof for"
    ACCEPT = "accept"
    REJECT = "reject"
    CANCEL = "cancel"
    EXPIRE = "expire"
    CONFIRMATION_TIMEOUT = "time out"


# (from, action) -> to
TRANSITIONS: dict[tuple[PaymentStatus, Action], PaymentStatus] = {
    (PaymentStatus.WAITING_FOR_PAYMENT, Action.UPLOAD_PROOF): PaymentStatus.WAITING_FOR_ADMIN_CONFIRMATION,
    (PaymentStatus.WAITING_FOR_ADMIN_CONFIRMATION, Action.ACCEPT): PaymentStatus.DONE,
    (PaymentStatus.WAITING_FOR_ADMIN_CONFIRMATION, Action.REJECT): PaymentStatus.REJECTED,
    (PaymentStatus.WAITING_FOR_PAYMENT, Action.CANCEL): PaymentStatus.CANCELED,
    (PaymentStatus.WAITING_FOR_PAYMENT, Action.EXPIRE): PaymentStatus.EXPIRED,
    (PaymentStatus.WAITING_FOR_ADMIN_CONFIRMATION, Action.CONFIRMATION_TIMEOUT): PaymentStatus.CANCELED,
}

# actions whose target state hands the reservations back
RELEASING_ACTIONS = frozenset({Action.REJECT, Action.CANCEL, Action.EXPIRE, Action.CONFIRMATION_TIMEOUT})


def can_apply(current: PaymentStatus | str, action: Action) -> bool:
    return (PaymentStatus(current), action) in TRANSITIONS


def next_status(current: PaymentStatus | str, action: Action) -> PaymentStatus:
    current = PaymentStatus(current)
    try:
        return TRANSITIONS[(current, action)]
    except KeyError:
        raise InvalidStateTransition(current.value, action.value) from None
