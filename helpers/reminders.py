"""Appointment reminder sweep.

One sweep looks up the appointments inside a time window, renders a reminder
for each and hands it to a ``NotificationSender`` once per recipient. A failed
recipient is recorded and the sweep moves on. Each appointment is claimed
(``notification_sent`` set conditionally) before sending, so overlapping sweeps
never remind it twice. The claim is released again if no recipient was reached.
"""
import asyncio
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

from tortoise.exceptions import DBConnectionError, OperationalError

from helpers.errors import DeliveryError, PersistenceError, ValidationError
from helpers.sms import NotificationSender, normalize_phone
from helpers.timeutils import CLINIC_TZ, as_utc, format_local
from models.appointment import Appointment, SILENT_STATUSES
from models.reminder_sweep import ReminderSweep

logger = logging.getLogger(__name__)

CLINIC_NAME = os.getenv("CLINIC_NAME", "Aum Skin Hair Laser Clinic")

REMINDER_TEMPLATE = """🏥 *{clinic}*

👩 *Appointment Reminder:*
Doctor: {doctor}
Patient: {patient}
Contact No: {contact_no}
Case Category: {category}
Date: *{date}*
Case Description: {description}

Please arrive 10 minutes early."""


class ReminderWindow(Enum):
    ROLLING_24H = "rolling_24h"
    CALENDAR_DAY = "calendar_day"


class RecipientPolicy(Enum):
    PATIENT = "patient"
    OPERATORS = "operators"
    PATIENT_AND_OPERATORS = "patient_and_operators"


WINDOW_MODE = ReminderWindow(os.getenv("REMINDER_WINDOW", ReminderWindow.ROLLING_24H.value))
RECIPIENT_POLICY = RecipientPolicy(os.getenv("REMINDER_RECIPIENTS", RecipientPolicy.PATIENT.value))
OPERATOR_NUMBERS = [n.strip() for n in os.getenv("REMINDER_OPERATOR_NUMBERS", "").split(",") if n.strip()]
SEND_ATTEMPTS = int(os.getenv("REMINDER_SEND_ATTEMPTS", "3"))
SEND_TIMEOUT = float(os.getenv("REMINDER_SEND_TIMEOUT", "15"))
RETRY_BACKOFF = float(os.getenv("REMINDER_RETRY_BACKOFF", "2"))


@dataclass
class SweepResult:
    scanned: int = 0
    sent: int = 0
    failed: List[Tuple[str, str]] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return {
            "scanned": self.scanned,
            "sent": self.sent,
            "failed": [{"recipient": r, "reason": reason} for r, reason in self.failed],
        }


def reminder_window(now: datetime, mode: ReminderWindow = ReminderWindow.ROLLING_24H, tz=None) -> Tuple[datetime, datetime]:
    """Return the ``[start, end)`` window in UTC."""
    now = as_utc(now)
    if mode is ReminderWindow.ROLLING_24H:
        return now, now + timedelta(hours=24)

    tz = tz or CLINIC_TZ
    local_day = now.astimezone(tz).date()
    start = tz.localize(datetime.combine(local_day, datetime.min.time()))
    end = tz.localize(datetime.combine(local_day + timedelta(days=1), datetime.min.time()))
    return as_utc(start), as_utc(end)


async def find_appointments_in_range(start: datetime, end: datetime) -> List[Appointment]:
    """Appointments due a reminder with ``start <= appointment_date < end``."""
    try:
        return await (
            Appointment.filter(
                appointment_date__gte=as_utc(start),
                appointment_date__lt=as_utc(end),
                notification_sent=False,
            )
            .exclude(status__in=list(SILENT_STATUSES))
            .order_by("appointment_date", "id")
            .prefetch_related("doctor", "patient")
        )
    except (OperationalError, DBConnectionError) as e:
        raise PersistenceError(f"Failed to fetch appointments: {e}") from e


def render_reminder(appointment: Appointment, clinic_name: Optional[str] = None) -> str:
    doctor = appointment.doctor
    patient = appointment.patient

    def value(v) -> str:
        return str(v) if v not in (None, "") else "N/A"

    return REMINDER_TEMPLATE.format(
        clinic=clinic_name or CLINIC_NAME,
        doctor=value(doctor.name if doctor else None),
        patient=value(patient.name if patient else None),
        contact_no=value(patient.contact_no if patient else None),
        category=value(patient.case_category.label if patient and patient.case_category else None),
        date=format_local(appointment.appointment_date) if appointment.appointment_date else "N/A",
        description=value(appointment.case_description),
    )


def reminder_recipients(
    appointment: Appointment,
    policy: RecipientPolicy = RecipientPolicy.PATIENT,
    operator_numbers: Sequence[str] = (),
) -> Tuple[List[str], List[Tuple[str, str]]]:
    """Return ``(recipients, rejected)``.

    Recipients are in international form with duplicates removed, so one
    handset written two ways is sent to once. Numbers that cannot be
    normalised come back in ``rejected`` with the reason.
    """
    raw: List[str] = []
    if policy in (RecipientPolicy.PATIENT, RecipientPolicy.PATIENT_AND_OPERATORS):
        if appointment.patient and appointment.patient.contact_no:
            raw.append(appointment.patient.contact_no)
    if policy in (RecipientPolicy.OPERATORS, RecipientPolicy.PATIENT_AND_OPERATORS):
        raw.extend(operator_numbers)

    recipients: List[str] = []
    rejected: List[Tuple[str, str]] = []
    for number in raw:
        try:
            recipients.append(normalize_phone(number))
        except ValidationError as e:
            rejected.append((number, e.message))
    return list(dict.fromkeys(recipients)), rejected


async def deliver_reminder(
    sender: NotificationSender,
    body: str,
    recipient: str,
    attempts: int = 1,
    timeout: Optional[float] = None,
    backoff: float = 0,
) -> None:
    """Send with bounded retries. Raises ``DeliveryError`` after the last attempt."""
    error: Optional[DeliveryError] = None
    for attempt in range(1, max(attempts, 1) + 1):
        try:
            await asyncio.wait_for(sender.send(body, recipient), timeout=timeout)
            return
        except asyncio.TimeoutError:
            error = DeliveryError(recipient, f"timed out after {timeout}s")
        except ValidationError as e:
            # a malformed number never succeeds on retry
            raise DeliveryError(recipient, e.message) from e
        except DeliveryError as e:
            error = e
        except Exception as e:
            error = DeliveryError(recipient, str(e))
        logger.warning(f"Attempt {attempt}/{attempts} to {recipient} failed: {error.reason}")
        if attempt < attempts and backoff:
            await asyncio.sleep(backoff * attempt)
    raise error


async def _claim(appointment: Appointment, now: datetime) -> bool:
    """Flag the appointment as notified unless another sweep already has."""
    try:
        claimed = await Appointment.filter(id=appointment.id, notification_sent=False).update(
            notification_sent=True, notification_sent_at=now
        )
    except (OperationalError, DBConnectionError) as e:
        logger.error(f"Could not claim appointment {appointment.id}: {e}")
        return False
    return claimed > 0


async def _release(appointment: Appointment) -> None:
    # nobody was reached, leave it for the next sweep
    try:
        await Appointment.filter(id=appointment.id).update(notification_sent=False, notification_sent_at=None)
    except (OperationalError, DBConnectionError) as e:
        logger.error(f"Could not release appointment {appointment.id}: {e}")


async def run_reminder_sweep(
    now: datetime,
    sender: NotificationSender,
    window_mode: Optional[ReminderWindow] = None,
    recipient_policy: Optional[RecipientPolicy] = None,
    operator_numbers: Optional[Sequence[str]] = None,
    attempts: Optional[int] = None,
    send_timeout: Optional[float] = None,
    retry_backoff: Optional[float] = None,
) -> SweepResult:
    window_mode = window_mode or WINDOW_MODE
    recipient_policy = recipient_policy or RECIPIENT_POLICY
    operator_numbers = OPERATOR_NUMBERS if operator_numbers is None else operator_numbers
    attempts = SEND_ATTEMPTS if attempts is None else attempts
    send_timeout = SEND_TIMEOUT if send_timeout is None else send_timeout
    retry_backoff = RETRY_BACKOFF if retry_backoff is None else retry_backoff

    now = as_utc(now)
    start, end = reminder_window(now, window_mode)
    logger.info(f"Checking appointments between {start.isoformat()} and {end.isoformat()}")

    appointments = await find_appointments_in_range(start, end)
    result = SweepResult(scanned=len(appointments))
    if not appointments:
        logger.info("No appointments due a reminder")
        return result

    for appointment in appointments:
        body = render_reminder(appointment)
        recipients, rejected = reminder_recipients(appointment, recipient_policy, operator_numbers)
        for number, reason in rejected:
            result.failed.append((number, reason))
            logger.error(f"Invalid recipient {number!r} for appointment {appointment.id}: {reason}")
        if not recipients:
            logger.warning(f"No recipients for appointment {appointment.id}, skipping")
            continue
        if not await _claim(appointment, now):
            logger.info(f"Appointment {appointment.id} already claimed by another sweep")
            continue

        delivered = False
        for recipient in recipients:
            try:
                await deliver_reminder(sender, body, recipient, attempts, send_timeout, retry_backoff)
            except DeliveryError as e:
                result.failed.append((recipient, e.reason))
                logger.error(f"Failed to send reminder to {recipient} for appointment {appointment.id}: {e.reason}")
                continue
            result.sent += 1
            delivered = True
            logger.info(f"Reminder sent to {recipient} for appointment {appointment.id}")

        if not delivered:
            await _release(appointment)

    logger.info(f"Reminder sweep done: scanned={result.scanned} sent={result.sent} failed={len(result.failed)}")
    return result


async def trigger_reminder_sweep(
    sender: NotificationSender,
    trigger: str = "manual",
    now: Optional[datetime] = None,
    **options,
) -> Tuple[SweepResult, ReminderSweep]:
    """Run a sweep for ``now`` (default: current time) and store its outcome."""
    now = as_utc(now or datetime.now(timezone.utc))
    start, end = reminder_window(now, options.get("window_mode") or WINDOW_MODE)
    try:
        result = await run_reminder_sweep(now, sender, **options)
    except PersistenceError as e:
        try:
            await ReminderSweep.create(trigger=trigger, window_start=start, window_end=end, error=e.message)
        except (OperationalError, DBConnectionError) as db_error:
            logger.error(f"Could not record failed sweep: {db_error}")
        raise
    record = await ReminderSweep.create(
        trigger=trigger,
        window_start=start,
        window_end=end,
        scanned=result.scanned,
        sent=result.sent,
        failed=len(result.failed),
        failures=result.to_dict()["failed"],
    )
    return result, record
