from __future__ import annotations

import asyncio
from typing import Callable, Optional

import pytest

from consultpay.core.config import PaymentTimings
from consultpay.core.scheduler import ManualScheduler
from consultpay.integrations.consult_api.base import ApiError
from consultpay.integrations.consult_api.sandbox import SandboxConsultApi
from consultpay.models.booking import Booking, BookingStatus, PaymentRecord, PaymentStatus, Service
from consultpay.models.payment import InitiationReceipt, VerificationResult


class FakeConsultApi:
    """Scriptable backend for driving the payment flow by hand."""

    name = "fake"

    def __init__(self):
        self.booking = Booking(
            id="bk-1",
            status=BookingStatus.PENDING,
            service=Service(name="Farm Consultation", price=2500.0),
        )
        self.reference: Optional[str] = "ws_CO_test"
        self.initiate_error: Optional[ApiError] = None
        self.initiate_gate: Optional[asyncio.Event] = None
        self.verify_status = "pending"
        self.before_get_booking: Optional[Callable[[], None]] = None
        self.get_booking_error: Optional[ApiError] = None
        self.initiate_calls: list[tuple[str, str]] = []
        self.get_booking_calls = 0
        self.verify_calls: list[str] = []

    def mark_paid(self) -> None:
        self.booking.status = BookingStatus.PAID

    def mark_declined(self) -> None:
        self.booking.payments.insert(0, PaymentRecord(status=PaymentStatus.FAILED))

    async def initiate_payment(self, booking_id: str, payment_phone: str) -> InitiationReceipt:
        self.initiate_calls.append((booking_id, payment_phone))
        if self.initiate_gate is not None:
            await self.initiate_gate.wait()
        if self.initiate_error is not None:
            raise self.initiate_error
        return InitiationReceipt(reference=self.reference)

    async def get_booking(self, booking_id: str) -> Booking:
        self.get_booking_calls += 1
        if self.before_get_booking is not None:
            self.before_get_booking()
        if self.get_booking_error is not None:
            raise self.get_booking_error
        return self.booking

    async def verify_payment(self, reference: str) -> VerificationResult:
        self.verify_calls.append(reference)
        return VerificationResult(status=self.verify_status)


@pytest.fixture
def fake_api():
    return FakeConsultApi()


@pytest.fixture
def sandbox():
    return SandboxConsultApi()


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def timings():
    return PaymentTimings()
