from __future__ import annotations


class TransactionError(Exception):
    status_code = 400


class InvalidRequest(TransactionError):
    status_code = 400


class NotFound(TransactionError):
    status_code = 404


class Forbidden(TransactionError):
    status_code = 403


class InvalidStateTransition(TransactionError):
    status_code = 409

    def __init__(self, current_state: str, action: str):
        self.current_state = current_state
        self.action = action
        super().__init__(f"Cannot {action} a transaction with status '{current_state}'.")


class InsufficientInventory(TransactionError):
    status_code = 409

    def __init__(self, tier_id: int, requested: int, available: int, tier_name: str | None = None):
        self.tier_id = tier_id
        self.requested = requested
        self.available = available
        label = f'"{tier_name}"' if tier_name else f"tier {tier_id}"
        super().__init__(f"Not enough tickets for {label}. Available: {available}")


class DiscountInvalid(TransactionError):
    status_code = 400


class DeadlinePassed(TransactionError):
    status_code = 400


class ProofUploadFailed(TransactionError):
    status_code = 502
