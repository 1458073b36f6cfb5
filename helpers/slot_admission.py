"""Appointment slot admission.

A slot is the exact (normalised) appointment timestamp. At most
``MAX_PATIENTS_PER_SLOT`` appointments that are not cancelled may share one.
Creating or moving an appointment locks the slot's ``AppointmentSlot`` row,
counts the occupants and writes, all inside a single transaction, so two
concurrent bookings cannot both see room for one more.
"""
import logging
import os
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from tortoise.backends.base.client import BaseDBAsyncClient
from tortoise.exceptions import DBConnectionError, OperationalError
from tortoise.transactions import in_transaction

from helpers.errors import NotFoundError, PersistenceError, SlotFullError, ValidationError
from helpers.timeutils import normalize_slot_time
from models.appointment import Appointment, AppointmentSlot, AppointmentStatus

logger = logging.getLogger(__name__)

MAX_PATIENTS_PER_SLOT = int(os.getenv("MAX_PATIENTS_PER_SLOT", "5"))


@dataclass
class AdmissionDecision:
    allowed: bool
    occupied: int
    max_per_slot: int
    reason: Optional[str] = None


def _require_datetime(appointment_date: Any) -> datetime:
    if not isinstance(appointment_date, datetime):
        raise ValidationError("appointment_date", "appointment_date must be a valid date and time")
    return normalize_slot_time(appointment_date)


async def count_slot_occupants(
    appointment_date: datetime,
    exclude_appointment_id: Optional[int] = None,
    using_db: Optional[BaseDBAsyncClient] = None,
) -> int:
    query = Appointment.filter(appointment_date=normalize_slot_time(appointment_date)).exclude(
        status=AppointmentStatus.CANCELLED
    )
    if exclude_appointment_id is not None:
        query = query.exclude(id=exclude_appointment_id)
    if using_db is not None:
        query = query.using_db(using_db)
    try:
        return await query.count()
    except (OperationalError, DBConnectionError) as e:
        raise PersistenceError(f"Failed to count appointments: {e}") from e


async def can_admit(
    appointment_date: Any,
    exclude_appointment_id: Optional[int] = None,
    max_per_slot: Optional[int] = None,
    using_db: Optional[BaseDBAsyncClient] = None,
) -> AdmissionDecision:
    """Decide whether one more appointment fits at ``appointment_date``.

    Pure read: nothing is reserved. ``exclude_appointment_id`` keeps an
    appointment that is being moved out of its own count.
    """
    slot_at = _require_datetime(appointment_date)
    limit = MAX_PATIENTS_PER_SLOT if max_per_slot is None else max_per_slot
    occupied = await count_slot_occupants(slot_at, exclude_appointment_id, using_db=using_db)
    if occupied >= limit:
        return AdmissionDecision(
            allowed=False,
            occupied=occupied,
            max_per_slot=limit,
            reason=f"Maximum {limit} patients can be scheduled at the same time",
        )
    return AdmissionDecision(allowed=True, occupied=occupied, max_per_slot=limit)


async def ensure_slot_available(
    appointment_date: Any,
    exclude_appointment_id: Optional[int] = None,
    max_per_slot: Optional[int] = None,
    using_db: Optional[BaseDBAsyncClient] = None,
) -> AdmissionDecision:
    decision = await can_admit(appointment_date, exclude_appointment_id, max_per_slot, using_db)
    if not decision.allowed:
        logger.info(
            f"Slot {normalize_slot_time(appointment_date).isoformat()} is full "
            f"({decision.occupied}/{decision.max_per_slot})"
        )
        raise SlotFullError(decision.max_per_slot, decision.occupied)
    return decision


async def _lock_slot(slot_at: datetime, connection: BaseDBAsyncClient) -> None:
    await AppointmentSlot.get_or_create(slot_at=slot_at, using_db=connection)
    await AppointmentSlot.select_for_update().using_db(connection).get(slot_at=slot_at)


async def book_appointment(max_per_slot: Optional[int] = None, **data) -> Appointment:
    """Create an appointment if its slot has room."""
    slot_at = _require_datetime(data.get("appointment_date"))
    data["appointment_date"] = slot_at
    if data.get("status") is None:
        data["status"] = AppointmentStatus.SCHEDULED
    try:
        async with in_transaction() as connection:
            await _lock_slot(slot_at, connection)
            if data["status"] != AppointmentStatus.CANCELLED:
                await ensure_slot_available(slot_at, max_per_slot=max_per_slot, using_db=connection)
            appointment = await Appointment.create(using_db=connection, **data)
    except (OperationalError, DBConnectionError) as e:
        raise PersistenceError(f"Failed to create appointment: {e}") from e
    logger.info(f"Appointment {appointment.id} booked at {slot_at.isoformat()}")
    return appointment


async def update_appointment(appointment_id: int, max_per_slot: Optional[int] = None, **data) -> Appointment:
    """Replace an appointment's fields, re-checking capacity only if it moves."""
    slot_at = _require_datetime(data.get("appointment_date"))
    data["appointment_date"] = slot_at
    if data.get("status") is None:
        data.pop("status", None)
    try:
        async with in_transaction() as connection:
            appointment = await Appointment.get_or_none(id=appointment_id, using_db=connection)
            if not appointment:
                raise NotFoundError("Appointment", appointment_id)

            moved = normalize_slot_time(appointment.appointment_date) != slot_at
            status = data.get("status", appointment.status)
            # cancelled -> active revives the appointment into its slot
            revived = appointment.status == AppointmentStatus.CANCELLED and status != AppointmentStatus.CANCELLED
            if (moved or revived) and status != AppointmentStatus.CANCELLED:
                await _lock_slot(slot_at, connection)
                await ensure_slot_available(
                    slot_at,
                    exclude_appointment_id=appointment.id,
                    max_per_slot=max_per_slot,
                    using_db=connection,
                )
            if moved:
                data["notification_sent"] = False
                data["notification_sent_at"] = None

            appointment.update_from_dict(data)
            await appointment.save(using_db=connection)
    except (OperationalError, DBConnectionError) as e:
        raise PersistenceError(f"Failed to update appointment: {e}") from e
    logger.info(f"Appointment {appointment.id} updated (moved={moved})")
    return appointment
