"""
Shared pytest fixtures: an in-memory Tortoise database per test, a few
doctors/patients, and a recording notification sender.
"""

import asyncio
import os

# Fixed configuration before any project module reads the environment
os.environ["DATABASE_URI"] = "sqlite://:memory:"
os.environ["MAX_PATIENTS_PER_SLOT"] = "5"
os.environ["DEFAULT_COUNTRY_CODE"] = "+91"
os.environ["CLINIC_TIMEZONE"] = "Asia/Kolkata"
os.environ["CLINIC_NAME"] = "Aum Skin Hair Laser Clinic"
os.environ["REMINDER_WINDOW"] = "rolling_24h"
os.environ["REMINDER_RECIPIENTS"] = "patient"
os.environ["REMINDER_OPERATOR_NUMBERS"] = ""

import pytest
import pytest_asyncio
from tortoise import Tortoise

from helpers.errors import DeliveryError
from helpers.tortoise_config import MODEL_MODULES
from models.doctor import Doctor
from models.patient import CaseCategory, Patient


@pytest_asyncio.fixture
async def db():
    """Fresh in-memory SQLite database with all tables."""
    await Tortoise.init(
        db_url="sqlite://:memory:",
        modules={"models": MODEL_MODULES},
        use_tz=True,
        timezone="UTC",
    )
    await Tortoise.generate_schemas()
    yield
    await Tortoise.close_connections()


@pytest_asyncio.fixture
async def doctor(db) -> Doctor:
    return await Doctor.create(
        name="Dr. Anjali Mehta",
        email="anjali@aumclinic.test",
        phone="9824000001",
        specialization=["Dermatology", "Trichology"],
    )


async def create_patient(name: str = "Riya Shah", contact_no: str = "9979872572", **kwargs) -> Patient:
    data = {"age": 29, "case_category": CaseCategory.SKIN, "address": "Vadodara"}
    data.update(kwargs)
    return await Patient.create(name=name, contact_no=contact_no, **data)


@pytest_asyncio.fixture
async def patient(db) -> Patient:
    return await create_patient()


class FakeSender:
    """Records every send; raises for numbers in ``fail_for``."""

    def __init__(self, fail_for=(), delay: float = 0, flaky_calls: int = 0, error: Exception = None):
        self.fail_for = set(fail_for)
        self.delay = delay
        self.flaky_calls = flaky_calls
        self.error = error
        self.calls = []

    async def send(self, body: str, recipient: str) -> None:
        self.calls.append((recipient, body))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        if self.flaky_calls:
            self.flaky_calls -= 1
            raise DeliveryError(recipient, "gateway busy")
        if recipient in self.fail_for:
            raise DeliveryError(recipient, "unreachable")

    @property
    def recipients(self):
        return [recipient for recipient, _ in self.calls]


@pytest.fixture
def fake_sender() -> FakeSender:
    return FakeSender()
