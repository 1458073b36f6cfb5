from tortoise import fields
from tortoise.models import Model
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from models.appointment import Appointment


class CaseCategory(Enum):
    HAIR = "HAIR"
    SKIN = "SKIN"
    MOLES = "MOLES"
    HAIR_REMOVAL = "HAIR_REMOVAL"
    HYDRAFACIAL = "HYDRAFACIAL"
    WEIGHT_LOSS = "WEIGHT_LOSS"
    OTHER = "OTHER"

    @property
    def label(self) -> str:
        return CASE_CATEGORY_LABELS[self]


CASE_CATEGORY_LABELS = {
    CaseCategory.HAIR: "Hair Treatment",
    CaseCategory.SKIN: "Skin Care",
    CaseCategory.MOLES: "Mole Removal",
    CaseCategory.HAIR_REMOVAL: "Hair Removal",
    CaseCategory.HYDRAFACIAL: "Hydrafacial",
    CaseCategory.WEIGHT_LOSS: "Weight Loss",
    CaseCategory.OTHER: "Other",
}


class Patient(Model):
    id = fields.IntField(primary_key=True)
    name = fields.CharField(max_length=255)
    age = fields.IntField()
    address = fields.TextField(null=True)
    case_category = fields.CharEnumField(enum_type=CaseCategory, max_length=20, default=CaseCategory.OTHER)
    contact_no = fields.CharField(max_length=20)  # reminder destination
    email = fields.CharField(max_length=255, null=True)
    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    # Relationship to appointments
    appointments: fields.ReverseRelation["Appointment"]

    class Meta:
        table = "patients"
