"""Error types shared by the admission, reminder and API layers."""
from typing import Any, Dict, Optional

from fastapi import HTTPException


class ClinicError(Exception):
    status_code = 500
    error = "Internal error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_detail(self) -> Dict[str, Any]:
        return {"error": self.error, "message": self.message}


class ValidationError(ClinicError):
    """Malformed or missing input. The write is never attempted."""

    status_code = 400
    error = "Invalid data"

    def __init__(self, field: str, message: str):
        super().__init__(message)
        self.field = field

    def to_detail(self) -> Dict[str, Any]:
        return {**super().to_detail(), "field": self.field}


class ConflictError(ClinicError):
    status_code = 409
    error = "Conflict"


class SlotFullError(ConflictError):
    error = "Time slot is full"

    def __init__(self, max_patients: int, occupied: Optional[int] = None):
        super().__init__(f"Maximum {max_patients} patients can be scheduled at the same time")
        self.max_patients = max_patients
        self.occupied = occupied

    def to_detail(self) -> Dict[str, Any]:
        return {**super().to_detail(), "max_patients_per_slot": self.max_patients}


class NotFoundError(ClinicError):
    status_code = 404

    def __init__(self, entity: str, entity_id: Any):
        super().__init__(f"{entity} {entity_id} not found")
        self.entity = entity
        self.entity_id = entity_id
        self.error = f"{entity} not found"


class DeliveryError(ClinicError):
    """A single recipient could not be reached."""

    status_code = 502
    error = "Delivery failed"

    def __init__(self, recipient: str, reason: str):
        super().__init__(f"Failed to deliver to {recipient}: {reason}")
        self.recipient = recipient
        self.reason = reason


class PersistenceError(ClinicError):
    error = "Storage unavailable"


def to_http_exception(exc: ClinicError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.to_detail())
