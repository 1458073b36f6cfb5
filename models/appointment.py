from tortoise import fields
from tortoise.models import Model
from enum import Enum


class AppointmentStatus(Enum):
    SCHEDULED = "SCHEDULED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"

    @property
    def label(self) -> str:
        return STATUS_LABELS[self]

    @property
    def color(self) -> str:
        return STATUS_COLORS[self]


STATUS_LABELS = {
    AppointmentStatus.SCHEDULED: "Scheduled",
    AppointmentStatus.COMPLETED: "Completed",
    AppointmentStatus.CANCELLED: "Cancelled",
    AppointmentStatus.NO_SHOW: "No Show",
}

STATUS_COLORS = {
    AppointmentStatus.SCHEDULED: "blue",
    AppointmentStatus.COMPLETED: "green",
    AppointmentStatus.CANCELLED: "gray",
    AppointmentStatus.NO_SHOW: "red",
}

# statuses that never receive a reminder
SILENT_STATUSES = (AppointmentStatus.CANCELLED, AppointmentStatus.NO_SHOW)


class Appointment(Model):
    id = fields.IntField(primary_key=True)
    doctor = fields.ForeignKeyField("models.Doctor", related_name="appointments", on_delete=fields.RESTRICT)
    patient = fields.ForeignKeyField("models.Patient", related_name="appointments", on_delete=fields.RESTRICT)
    appointment_date = fields.DatetimeField(db_index=True)
    status = fields.CharEnumField(enum_type=AppointmentStatus, max_length=20, default=AppointmentStatus.SCHEDULED)
    case_description = fields.TextField(null=True)
    charge = fields.DecimalField(max_digits=10, decimal_places=2, null=True)
    notification_sent = fields.BooleanField(default=False)
    notification_sent_at = fields.DatetimeField(null=True)
    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "appointments"


class AppointmentSlot(Model):
    """One row per booked timestamp, locked while admitting into it."""

    id = fields.IntField(primary_key=True)
    slot_at = fields.DatetimeField(unique=True)
    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        table = "appointment_slots"
