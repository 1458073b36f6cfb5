import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from helpers import slot_admission
from helpers.errors import ClinicError, NotFoundError, ValidationError, to_http_exception
from helpers.timeutils import as_utc, normalize_slot_time
from models.appointment import Appointment, AppointmentStatus
from models.doctor import Doctor
from models.patient import Patient


logger = logging.getLogger(__name__)
appointment_router = APIRouter()


class AppointmentPayload(BaseModel):
    doctor_id: int
    patient_id: int
    appointment_date: datetime
    case_description: Optional[str] = None
    status: Optional[AppointmentStatus] = None
    charge: Optional[float] = Field(default=None, ge=0)


def serialize_appointment(a: Appointment) -> dict:
    """Expects ``doctor`` and ``patient`` to be fetched."""
    return {
        "id": a.id,
        "doctor_id": a.doctor_id,
        "patient_id": a.patient_id,
        "doctor": {"id": a.doctor.id, "name": a.doctor.name},
        "patient": {
            "id": a.patient.id,
            "name": a.patient.name,
            "contact_no": a.patient.contact_no,
            "case_category": a.patient.case_category.value,
        },
        "appointment_date": a.appointment_date.isoformat() if a.appointment_date else None,
        "status": a.status.value,
        "status_label": a.status.label,
        "status_color": a.status.color,
        "case_description": a.case_description,
        "charge": float(a.charge) if a.charge is not None else None,
        "notification_sent": a.notification_sent,
        "created_at": a.created_at.isoformat() if a.created_at else None,
    }


async def check_references(payload: AppointmentPayload) -> None:
    if not await Doctor.exists(id=payload.doctor_id):
        raise ValidationError("doctor_id", f"Doctor {payload.doctor_id} does not exist")
    if not await Patient.exists(id=payload.patient_id):
        raise ValidationError("patient_id", f"Patient {payload.patient_id} does not exist")


@appointment_router.get("/appointments")
async def list_appointments(
    doctor_id: Optional[int] = None,
    patient_id: Optional[int] = None,
    status: Optional[AppointmentStatus] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
):
    try:
        query = Appointment.all()
        if doctor_id is not None:
            query = query.filter(doctor_id=doctor_id)
        if patient_id is not None:
            query = query.filter(patient_id=patient_id)
        if status is not None:
            query = query.filter(status=status)
        if start is not None:
            query = query.filter(appointment_date__gte=as_utc(start))
        if end is not None:
            query = query.filter(appointment_date__lt=as_utc(end))
        appointments = await query.order_by("-appointment_date", "-id").prefetch_related("doctor", "patient")
        return [serialize_appointment(a) for a in appointments]
    except Exception as e:
        logger.exception("Failed to fetch appointments")
        raise HTTPException(status_code=500, detail=f"Failed to fetch appointments: {str(e)}")


@appointment_router.get("/appointments/slot-availability")
async def slot_availability(appointment_date: datetime, exclude_appointment_id: Optional[int] = None):
    try:
        slot_at = normalize_slot_time(appointment_date)
        decision = await slot_admission.can_admit(slot_at, exclude_appointment_id)
        return {
            "appointment_date": slot_at.isoformat(),
            "allowed": decision.allowed,
            "occupied": decision.occupied,
            "max_patients_per_slot": decision.max_per_slot,
            "reason": decision.reason,
        }
    except ClinicError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to check slot: {str(e)}")


@appointment_router.post("/appointments", status_code=201)
async def create_appointment(payload: AppointmentPayload):
    try:
        await check_references(payload)
        appointment = await slot_admission.book_appointment(**payload.model_dump())
        await appointment.fetch_related("doctor", "patient")
        return serialize_appointment(appointment)
    except ClinicError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.exception("Failed to create appointment")
        raise HTTPException(status_code=500, detail=f"Failed to create appointment: {str(e)}")


@appointment_router.get("/appointments/{appointment_id}")
async def get_appointment(appointment_id: int):
    try:
        appointment = await Appointment.get_or_none(id=appointment_id).prefetch_related("doctor", "patient")
        if not appointment:
            raise NotFoundError("Appointment", appointment_id)
        return serialize_appointment(appointment)
    except ClinicError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to fetch appointment: {str(e)}")


@appointment_router.put("/appointments/{appointment_id}")
async def update_appointment(appointment_id: int, payload: AppointmentPayload):
    try:
        await check_references(payload)
        appointment = await slot_admission.update_appointment(appointment_id, **payload.model_dump())
        await appointment.fetch_related("doctor", "patient")
        return serialize_appointment(appointment)
    except ClinicError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.exception(f"Failed to update appointment {appointment_id}")
        raise HTTPException(status_code=500, detail=f"Failed to update appointment: {str(e)}")


@appointment_router.delete("/appointments/{appointment_id}")
async def delete_appointment(appointment_id: int):
    try:
        deleted = await Appointment.filter(id=appointment_id).delete()
        if not deleted:
            raise NotFoundError("Appointment", appointment_id)
        return {"success": True, "detail": "Appointment deleted successfully"}
    except ClinicError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.exception(f"Failed to delete appointment {appointment_id}")
        raise HTTPException(status_code=500, detail=f"Failed to delete appointment: {str(e)}")
