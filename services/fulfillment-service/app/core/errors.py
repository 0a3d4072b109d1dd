"""
Fulfillment Service — Error taxonomy

Every core operation fails with one of these. Each error carries its kind and
the HTTP status the API surfaces it as, so callers branch on ``exc.kind``
instead of parsing messages.
"""
from enum import Enum


class ErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    INVALID_STATE_TRANSITION = "invalid_state_transition"
    INSUFFICIENT_INVENTORY = "insufficient_inventory"
    DUPLICATE_KEY = "duplicate_key"
    INVALID_REQUEST = "invalid_request"


class FulfillmentError(Exception):
    kind: ErrorKind
    status_code: int = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"detail": self.message, "error": self.kind.value}


class NotFound(FulfillmentError):
    """Unknown booking, delivery or inventory id."""
    kind = ErrorKind.NOT_FOUND
    status_code = 404

    def __init__(self, entity: str, entity_id: str):
        super().__init__(f"{entity} not found with ID: {entity_id}")
        self.entity = entity
        self.entity_id = entity_id


class InvalidStateTransition(FulfillmentError):
    """Lifecycle move outside the allowed graph. Never retried."""
    kind = ErrorKind.INVALID_STATE_TRANSITION
    status_code = 400


class InsufficientInventory(FulfillmentError):
    """Consumption exceeds available stock. Nothing was mutated."""
    kind = ErrorKind.INSUFFICIENT_INVENTORY
    status_code = 400


class DuplicateKey(FulfillmentError):
    kind = ErrorKind.DUPLICATE_KEY
    status_code = 409


class InvalidRequest(FulfillmentError):
    kind = ErrorKind.INVALID_REQUEST
    status_code = 400
