import logging
from typing import List, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, EmailStr, Field, field_validator

from helpers.errors import ClinicError, ConflictError, NotFoundError, to_http_exception
from models.appointment import Appointment
from models.doctor import Doctor


logger = logging.getLogger(__name__)
doctor_router = APIRouter()


class DoctorPayload(BaseModel):
    name: str = Field(min_length=2)
    email: Optional[EmailStr] = None
    phone: str = Field(min_length=10)
    specialization: List[str] = Field(default_factory=list)

    @field_validator("email", mode="before")
    @classmethod
    def blank_email(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("specialization", mode="before")
    @classmethod
    def none_to_empty(cls, value):
        return value or []


def serialize_doctor(d: Doctor) -> dict:
    return {
        "id": d.id,
        "name": d.name,
        "email": d.email,
        "phone": d.phone,
        "specialization": d.specialization or [],
        "created_at": d.created_at.isoformat() if d.created_at else None,
    }


async def check_unique_contact(payload: DoctorPayload, doctor_id: Optional[int] = None) -> None:
    if payload.email:
        query = Doctor.filter(email=payload.email)
        if doctor_id is not None:
            query = query.exclude(id=doctor_id)
        if await query.exists():
            raise ConflictError("Doctor with this email already exists")

    query = Doctor.filter(phone=payload.phone)
    if doctor_id is not None:
        query = query.exclude(id=doctor_id)
    if await query.exists():
        raise ConflictError("Doctor with this phone number already exists")


async def get_doctor_or_404(doctor_id: int) -> Doctor:
    doctor = await Doctor.get_or_none(id=doctor_id)
    if not doctor:
        raise NotFoundError("Doctor", doctor_id)
    return doctor


@doctor_router.get("/doctors")
async def list_doctors():
    try:
        doctors = await Doctor.all().order_by("name")
        return [serialize_doctor(d) for d in doctors]
    except Exception as e:
        logger.exception("Failed to fetch doctors")
        raise HTTPException(status_code=500, detail=f"Failed to fetch doctors: {str(e)}")


@doctor_router.post("/doctors", status_code=201)
async def create_doctor(payload: DoctorPayload):
    try:
        await check_unique_contact(payload)
        doctor = await Doctor.create(**payload.model_dump())
        return serialize_doctor(doctor)
    except ClinicError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.exception("Failed to create doctor")
        raise HTTPException(status_code=500, detail=f"Failed to create doctor: {str(e)}")


@doctor_router.get("/doctors/{doctor_id}")
async def get_doctor(doctor_id: int):
    try:
        return serialize_doctor(await get_doctor_or_404(doctor_id))
    except ClinicError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to fetch doctor: {str(e)}")


@doctor_router.put("/doctors/{doctor_id}")
async def update_doctor(doctor_id: int, payload: DoctorPayload):
    try:
        doctor = await get_doctor_or_404(doctor_id)
        await check_unique_contact(payload, doctor_id=doctor.id)
        doctor.update_from_dict(payload.model_dump())
        await doctor.save()
        return serialize_doctor(doctor)
    except ClinicError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.exception(f"Failed to update doctor {doctor_id}")
        raise HTTPException(status_code=500, detail=f"Failed to update doctor: {str(e)}")


@doctor_router.delete("/doctors/{doctor_id}")
async def delete_doctor(doctor_id: int):
    try:
        doctor = await get_doctor_or_404(doctor_id)
        if await Appointment.filter(doctor=doctor).exists():
            raise ConflictError("Doctor has appointments and cannot be deleted")
        await doctor.delete()
        return {"success": True, "detail": "Doctor deleted successfully"}
    except ClinicError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.exception(f"Failed to delete doctor {doctor_id}")
        raise HTTPException(status_code=500, detail=f"Failed to delete doctor: {str(e)}")
