from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Iterable, Optional
from uuid import uuid4

from consultpay.integrations.consult_api.base import ApiError
from consultpay.models.booking import (
    Booking,
    BookingStatus,
    PaymentRecord,
    PaymentStatus,
    PricingOption,
    Service,
    Slot,
)
from consultpay.models.payment import InitiationReceipt, VerificationResult

logger = logging.getLogger(__name__)

SLOT_TIMES = ["08:00", "09:00", "10:00", "11:00", "12:00", "14:00", "15:00", "16:00"]


def default_services() -> list[Service]:
    return [
        Service(
            id="6f1c2a8e-3b7d-4c55-9a1e-0d2f4b6c8e01",
            name="Farm Consultation",
            price=2500.0,
            duration_mins=60,
            pricing_options=[
                PricingOption(name="Virtual", price=2500.0),
                PricingOption(name="On-site", price=4000.0),
                PricingOption(name="Large estate", is_custom=True),
            ],
        ),
        Service(
            id="0b9e7d3c-5a41-4f6e-8c2d-7e1a9b3f5d02",
            name="Soil Testing",
            price=1500.0,
            duration_mins=30,
        ),
    ]


class SandboxConsultApi:
    """
    In-memory stand-in for the consultation backend.

    Local development and tests do not hit the real booking service or
    M-Pesa; STK pushes settle after a configurable number of reads so the
    payment flow behaves as if the webhook arrived.

    - confirm_after_polls: reads (booking status or verification) before a
      pending push is marked paid; None never settles.
    - declined_phones: payer numbers whose push fails on the first read.
    - initiation_error: when set, every initiation is rejected with it.
    - issue_reference: whether initiation returns a tracking reference.
    """

    name = "sandbox"

    def __init__(
        self,
        services: Optional[Iterable[Service]] = None,
        confirm_after_polls: Optional[int] = 2,
        declined_phones: Iterable[str] = (),
        initiation_error: Optional[str] = None,
        issue_reference: bool = True,
    ):
        self.services = {service.id: service for service in (services or default_services())}
        self.confirm_after_polls = confirm_after_polls
        self.declined_phones = set(declined_phones)
        self.initiation_error = initiation_error
        self.issue_reference = issue_reference
        self.bookings: dict[str, Booking] = {}
        self.calls: list[tuple[str, Any]] = []
        self._reads_left: dict[str, int] = {}
        self._push_phone: dict[str, str] = {}

    # ─────────────────────────────────────────────────────────────────
    # Bookings
    # ─────────────────────────────────────────────────────────────────

    async def create_booking(self, payload: dict[str, Any]) -> Booking:
        self.calls.append(("create_booking", payload))
        service = self.services.get(str(payload.get("service_id")))
        if service is None:
            raise ApiError("Service not found", status_code=404)

        start_time = payload.get("start_time")
        end_time = None
        if start_time and service.duration_mins:
            start = datetime.strptime(start_time, "%H:%M")
            end_time = (start + timedelta(minutes=service.duration_mins)).strftime("%H:%M")

        booking = Booking(
            id=str(uuid4()),
            status=BookingStatus.PENDING,
            service=service,
            date=payload.get("date"),
            start_time=start_time,
            end_time=end_time,
        )
        self.bookings[booking.id] = booking
        logger.info("🧪 Sandbox booking %s created for %s", booking.id, service.name)
        return booking

    async def get_booking(self, booking_id: str) -> Booking:
        self.calls.append(("get_booking", booking_id))
        booking = self._booking(booking_id)
        self._settle(booking)
        return booking

    async def list_bookings(self) -> list[Booking]:
        return list(self.bookings.values())

    async def get_slots(self, date: str, service_id: str) -> list[Slot]:
        taken = {
            booking.start_time
            for booking in self.bookings.values()
            if booking.date == date
            and booking.service is not None
            and booking.service.id == service_id
            and booking.status != BookingStatus.CANCELLED
        }
        return [Slot(time=time, available=time not in taken) for time in SLOT_TIMES]

    async def list_services(self) -> list[Service]:
        return list(self.services.values())

    # ─────────────────────────────────────────────────────────────────
    # Payments
    # ─────────────────────────────────────────────────────────────────

    async def initiate_payment(self, booking_id: str, payment_phone: str) -> InitiationReceipt:
        self.calls.append(("initiate_payment", (booking_id, payment_phone)))
        if self.initiation_error:
            raise ApiError(
                self.initiation_error,
                status_code=400,
                payload={"error": self.initiation_error},
            )

        booking = self._booking(booking_id)
        if booking.is_paid:
            raise ApiError(
                "Booking is already paid",
                status_code=400,
                payload={"error": "Booking is already paid"},
            )

        reference = f"ws_CO_{uuid4().hex[:12]}"
        amount = booking.service.price if booking.service else None
        booking.payments.insert(
            0,
            PaymentRecord(status=PaymentStatus.PENDING, amount=amount, reference=reference),
        )
        if self.confirm_after_polls is not None:
            self._reads_left[booking_id] = self.confirm_after_polls
        self._push_phone[booking_id] = payment_phone
        logger.info("🧪 Sandbox STK push %s sent to %s", reference, payment_phone)

        if not self.issue_reference:
            return InitiationReceipt(raw={"message": "STK push sent"})
        return InitiationReceipt(reference=reference, raw={"reference": reference})

    async def verify_payment(self, reference: str) -> VerificationResult:
        self.calls.append(("verify_payment", reference))
        for booking in self.bookings.values():
            for payment in booking.payments:
                if payment.reference == reference:
                    self._settle(booking)
                    return VerificationResult(status=str(payment.status.value), booking=booking)
        raise ApiError("Payment not found", status_code=404)

    async def payment_history(self) -> list[PaymentRecord]:
        return [payment for booking in self.bookings.values() for payment in booking.payments]

    # ─────────────────────────────────────────────────────────────────
    # Helpers
    # ─────────────────────────────────────────────────────────────────

    def _booking(self, booking_id: str) -> Booking:
        booking = self.bookings.get(booking_id)
        if booking is None:
            raise ApiError("Booking not found", status_code=404)
        return booking

    def _settle(self, booking: Booking) -> None:
        payment = booking.latest_payment
        if payment is None or payment.status != PaymentStatus.PENDING:
            return

        if self._push_phone.get(booking.id) in self.declined_phones:
            payment.status = PaymentStatus.FAILED
            self._reads_left.pop(booking.id, None)
            return

        if booking.id not in self._reads_left:
            return
        self._reads_left[booking.id] -= 1
        if self._reads_left[booking.id] > 0:
            return

        del self._reads_left[booking.id]
        payment.status = PaymentStatus.SUCCESS
        payment.transaction_id = f"SBX{uuid4().hex[:8].upper()}"
        booking.status = BookingStatus.PAID
        logger.info("🧪 Sandbox booking %s marked paid", booking.id)
