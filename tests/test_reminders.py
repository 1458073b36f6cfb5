"""
Tests for the reminder sweep: window edges, failure isolation, retries,
de-duplication and recipient policies.
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from tortoise.exceptions import OperationalError

from helpers.errors import DeliveryError, PersistenceError, ValidationError
from helpers.reminders import (
    RecipientPolicy,
    ReminderWindow,
    SweepResult,
    deliver_reminder,
    reminder_recipients,
    reminder_window,
    render_reminder,
    run_reminder_sweep,
    trigger_reminder_sweep,
)
from helpers.slot_admission import book_appointment
from models.appointment import Appointment, AppointmentStatus
from models.patient import CaseCategory
from models.reminder_sweep import ReminderSweep
from tests.conftest import FakeSender, create_patient

APPOINTMENT_AT = datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc)
NOW = datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)
PATIENT_E164 = "+919979872572"


async def book(doctor, patient, when=APPOINTMENT_AT, **kwargs) -> Appointment:
    return await book_appointment(doctor_id=doctor.id, patient_id=patient.id, appointment_date=when, **kwargs)


async def sweep(now, sender, **kwargs) -> SweepResult:
    kwargs.setdefault("attempts", 1)
    kwargs.setdefault("retry_backoff", 0)
    return await run_reminder_sweep(now, sender, **kwargs)


def test_rolling_window_is_24_hours_from_now():
    start, end = reminder_window(NOW, ReminderWindow.ROLLING_24H)
    assert start == NOW
    assert end == NOW + timedelta(hours=24)


def test_calendar_window_follows_clinic_midnight():
    # 20:00 UTC is already 01:30 on Jan 2 in Asia/Kolkata
    start, end = reminder_window(datetime(2024, 1, 1, 20, 0, tzinfo=timezone.utc), ReminderWindow.CALENDAR_DAY)
    assert start == datetime(2024, 1, 1, 18, 30, tzinfo=timezone.utc)
    assert end == datetime(2024, 1, 2, 18, 30, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_empty_window_sends_nothing(db, fake_sender):
    result = await sweep(NOW, fake_sender)

    assert result == SweepResult(scanned=0, sent=0, failed=[])
    assert fake_sender.calls == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "now, included",
    [
        (datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc), True),
        (datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc), True),  # start is inclusive
        (datetime(2023, 12, 31, 10, 0, tzinfo=timezone.utc), False),  # end is exclusive
        (datetime(2023, 12, 31, 9, 0, tzinfo=timezone.utc), False),
        (datetime(2024, 1, 1, 10, 1, tzinfo=timezone.utc), False),
    ],
)
async def test_window_edges(doctor, patient, fake_sender, now, included):
    await book(doctor, patient)

    result = await sweep(now, fake_sender)

    assert result.scanned == (1 if included else 0)
    assert result.sent == (1 if included else 0)


@pytest.mark.asyncio
async def test_one_failing_recipient_does_not_stop_the_sweep(doctor):
    numbers = ["9000000001", "9000000002", "9000000003"]
    for i, number in enumerate(numbers):
        p = await create_patient(name=f"Patient {i}", contact_no=number)
        await book(doctor, p, APPOINTMENT_AT + timedelta(hours=i))
    sender = FakeSender(fail_for={"+919000000002"})

    result = await sweep(NOW, sender)

    assert result.scanned == 3
    assert result.sent == 2
    assert result.failed == [("+919000000002", "unreachable")]
    assert sender.recipients == ["+91" + n for n in numbers]


@pytest.mark.asyncio
async def test_cancelled_and_no_show_are_not_reminded(doctor, fake_sender):
    active = await create_patient(name="Active", contact_no="9000000011")
    cancelled = await create_patient(name="Cancelled", contact_no="9000000012")
    no_show = await create_patient(name="No Show", contact_no="9000000013")
    await book(doctor, active)
    await book(doctor, cancelled, status=AppointmentStatus.CANCELLED)
    await book(doctor, no_show, status=AppointmentStatus.NO_SHOW)

    result = await sweep(NOW, fake_sender)

    assert result.scanned == 1
    assert fake_sender.recipients == ["+919000000011"]


@pytest.mark.asyncio
async def test_second_sweep_does_not_resend(doctor, patient, fake_sender):
    appointment = await book(doctor, patient)

    first = await sweep(NOW, fake_sender)
    second = await sweep(NOW + timedelta(minutes=30), fake_sender)

    assert first.sent == 1
    assert second == SweepResult()
    assert len(fake_sender.calls) == 1
    refreshed = await Appointment.get(id=appointment.id)
    assert refreshed.notification_sent is True
    assert refreshed.notification_sent_at == NOW


@pytest.mark.asyncio
async def test_failed_reminder_is_retried_next_sweep(doctor, patient):
    await book(doctor, patient)

    first = await sweep(NOW, FakeSender(fail_for={PATIENT_E164}))
    retry_sender = FakeSender()
    second = await sweep(NOW + timedelta(minutes=5), retry_sender)

    assert first.sent == 0
    assert len(first.failed) == 1
    assert second.sent == 1
    assert retry_sender.recipients == [PATIENT_E164]


@pytest.mark.asyncio
async def test_slow_recipient_times_out(doctor, patient):
    await book(doctor, patient)

    result = await sweep(NOW, FakeSender(delay=1), send_timeout=0.05)

    assert result.sent == 0
    assert result.failed[0][0] == PATIENT_E164
    assert "timed out" in result.failed[0][1]


@pytest.mark.asyncio
async def test_transient_failure_is_retried(doctor, patient):
    await book(doctor, patient)
    sender = FakeSender(flaky_calls=1)

    result = await sweep(NOW, sender, attempts=3)

    assert result.sent == 1
    assert result.failed == []
    assert len(sender.calls) == 2


@pytest.mark.asyncio
async def test_unexpected_sender_error_is_isolated():
    sender = FakeSender(error=RuntimeError("socket closed"))

    with pytest.raises(DeliveryError) as exc_info:
        await deliver_reminder(sender, "hello", "9000000001", attempts=2)

    assert exc_info.value.reason == "socket closed"
    assert len(sender.calls) == 2


@pytest.mark.asyncio
async def test_operator_policy_sends_to_allow_list(doctor, patient, fake_sender):
    await book(doctor, patient)
    operators = ["9979872572", "9624517000"]

    result = await sweep(NOW, fake_sender, recipient_policy=RecipientPolicy.OPERATORS, operator_numbers=operators)

    assert result.sent == 2
    assert fake_sender.recipients == ["+919979872572", "+919624517000"]


@pytest.mark.asyncio
async def test_patient_and_operators_are_deduplicated(doctor, patient):
    appointment = await book(doctor, patient)
    await appointment.fetch_related("patient")

    recipients, rejected = reminder_recipients(
        appointment,
        RecipientPolicy.PATIENT_AND_OPERATORS,
        ["+91 99798 72572", "9624517000", "--"],
    )

    assert recipients == [PATIENT_E164, "+919624517000"]
    assert rejected == [("--", "Phone number is empty")]


@pytest.mark.asyncio
async def test_same_handset_written_two_ways_gets_one_reminder(doctor, patient, fake_sender):
    await book(doctor, patient)

    result = await sweep(
        NOW,
        fake_sender,
        recipient_policy=RecipientPolicy.PATIENT_AND_OPERATORS,
        operator_numbers=["+91 99798 72572"],
    )

    assert result.sent == 1
    assert fake_sender.recipients == [PATIENT_E164]


@pytest.mark.asyncio
async def test_unusable_number_is_reported_without_sending(doctor, fake_sender):
    p = await create_patient(name="No Phone", contact_no="( )")
    appointment = await book(doctor, p)

    result = await sweep(NOW, fake_sender, attempts=3)

    assert result.sent == 0
    assert result.failed == [("( )", "Phone number is empty")]
    assert fake_sender.calls == []
    refreshed = await Appointment.get(id=appointment.id)
    assert refreshed.notification_sent is False


@pytest.mark.asyncio
async def test_malformed_number_is_not_retried():
    sender = FakeSender(error=ValidationError("recipient", "Phone number is empty"))

    with pytest.raises(DeliveryError) as exc_info:
        await deliver_reminder(sender, "hello", "", attempts=3, backoff=5)

    assert exc_info.value.reason == "Phone number is empty"
    assert len(sender.calls) == 1


@pytest.mark.asyncio
async def test_overlapping_sweeps_send_once(doctor, patient):
    appointment = await book(doctor, patient)
    sender = FakeSender(delay=0.05)

    first, second = await asyncio.gather(sweep(NOW, sender), sweep(NOW, sender))

    assert first.sent + second.sent == 1
    assert sender.recipients == [PATIENT_E164]
    refreshed = await Appointment.get(id=appointment.id)
    assert refreshed.notification_sent is True


@pytest.mark.asyncio
async def test_reminder_message_contents(doctor):
    p = await create_patient(name="Kavya Patel", contact_no="9876543210", case_category=CaseCategory.HAIR_REMOVAL)
    appointment = await book(doctor, p)
    await appointment.fetch_related("doctor", "patient")

    message = render_reminder(appointment)

    assert "*Aum Skin Hair Laser Clinic*" in message
    assert "Doctor: Dr. Anjali Mehta" in message
    assert "Patient: Kavya Patel" in message
    assert "Contact No: 9876543210" in message
    assert "Case Category: Hair Removal" in message
    assert "Date: *01 Jan 2024, 03:30 PM*" in message
    assert "Case Description: N/A" in message
    assert message.endswith("Please arrive 10 minutes early.")


@pytest.mark.asyncio
async def test_fetch_failure_aborts_the_sweep(db, fake_sender, monkeypatch):
    def broken_filter(*args, **kwargs):
        raise OperationalError("database is locked")

    monkeypatch.setattr(Appointment, "filter", broken_filter)

    with pytest.raises(PersistenceError):
        await sweep(NOW, fake_sender)
    assert fake_sender.calls == []


@pytest.mark.asyncio
async def test_aborted_sweep_is_recorded(db, fake_sender, monkeypatch):
    def broken_filter(*args, **kwargs):
        raise OperationalError("database is locked")

    monkeypatch.setattr(Appointment, "filter", broken_filter)

    with pytest.raises(PersistenceError):
        await trigger_reminder_sweep(fake_sender, trigger="manual", now=NOW)

    stored = await ReminderSweep.all()
    assert len(stored) == 1
    assert stored[0].scanned == 0
    assert stored[0].error == "Failed to fetch appointments: database is locked"


@pytest.mark.asyncio
async def test_trigger_records_the_sweep(doctor, patient):
    await book(doctor, patient)

    result, record = await trigger_reminder_sweep(
        FakeSender(fail_for={PATIENT_E164}),
        trigger="scheduler",
        now=NOW,
        attempts=1,
        retry_backoff=0,
    )

    stored = await ReminderSweep.get(id=record.id)
    assert stored.trigger == "scheduler"
    assert stored.scanned == 1
    assert stored.sent == 0
    assert stored.failed == 1
    assert stored.failures == [{"recipient": PATIENT_E164, "reason": "unreachable"}]
    assert stored.error is None
    assert stored.window_start == NOW
    assert result.scanned == 1
