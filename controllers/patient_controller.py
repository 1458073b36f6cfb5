import logging
from typing import Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, EmailStr, Field, field_validator

from helpers.errors import ClinicError, ConflictError, NotFoundError, to_http_exception
from models.appointment import Appointment
from models.patient import CaseCategory, Patient


logger = logging.getLogger(__name__)
patient_router = APIRouter()


class PatientPayload(BaseModel):
    name: str = Field(min_length=2)
    age: int = Field(ge=1, le=120)
    address: Optional[str] = None
    case_category: CaseCategory
    contact_no: str
    email: Optional[EmailStr] = None

    @field_validator("email", "address", mode="before")
    @classmethod
    def blank_to_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("contact_no")
    @classmethod
    def check_contact_no(cls, value: str) -> str:
        if sum(c.isdigit() for c in value) < 10:
            raise ValueError("Contact number must be at least 10 digits")
        return value.strip()


def serialize_patient(p: Patient) -> dict:
    return {
        "id": p.id,
        "name": p.name,
        "age": p.age,
        "address": p.address,
        "case_category": p.case_category.value,
        "case_category_label": p.case_category.label,
        "contact_no": p.contact_no,
        "email": p.email,
        "created_at": p.created_at.isoformat() if p.created_at else None,
        "updated_at": p.updated_at.isoformat() if p.updated_at else None,
    }


async def get_patient_or_404(patient_id: int) -> Patient:
    patient = await Patient.get_or_none(id=patient_id)
    if not patient:
        raise NotFoundError("Patient", patient_id)
    return patient


@patient_router.get("/patients")
async def list_patients():
    try:
        patients = await Patient.all().order_by("-created_at", "-id")
        return [serialize_patient(p) for p in patients]
    except Exception as e:
        logger.exception("Failed to fetch patients")
        raise HTTPException(status_code=500, detail=f"Failed to fetch patients: {str(e)}")


@patient_router.post("/patients", status_code=201)
async def create_patient(payload: PatientPayload):
    try:
        patient = await Patient.create(**payload.model_dump())
        return serialize_patient(patient)
    except Exception as e:
        logger.exception("Failed to create patient")
        raise HTTPException(status_code=500, detail=f"Failed to create patient: {str(e)}")


@patient_router.get("/patients/{patient_id}")
async def get_patient(patient_id: int):
    try:
        return serialize_patient(await get_patient_or_404(patient_id))
    except ClinicError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to fetch patient: {str(e)}")


@patient_router.put("/patients/{patient_id}")
async def update_patient(patient_id: int, payload: PatientPayload):
    try:
        patient = await get_patient_or_404(patient_id)
        patient.update_from_dict(payload.model_dump())
        await patient.save()
        return serialize_patient(patient)
    except ClinicError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.exception(f"Failed to update patient {patient_id}")
        raise HTTPException(status_code=500, detail=f"Failed to update patient: {str(e)}")


@patient_router.delete("/patients/{patient_id}")
async def delete_patient(patient_id: int):
    try:
        patient = await get_patient_or_404(patient_id)
        if await Appointment.filter(patient=patient).exists():
            raise ConflictError("Patient has appointments and cannot be deleted")
        await patient.delete()
        return {"success": True, "detail": "Patient deleted successfully"}
    except ClinicError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.exception(f"Failed to delete patient {patient_id}")
        raise HTTPException(status_code=500, detail=f"Failed to delete patient: {str(e)}")
