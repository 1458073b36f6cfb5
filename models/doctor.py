from tortoise import fields
from tortoise.models import Model
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from models.appointment import Appointment


class Doctor(Model):
    id = fields.IntField(primary_key=True)
    name = fields.CharField(max_length=255)
    email = fields.CharField(max_length=255, unique=True, null=True)
    phone = fields.CharField(max_length=20, unique=True)
    specialization = fields.JSONField(default=list)
    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    appointments: fields.ReverseRelation["Appointment"]

    class Meta:
        table = "doctors"
