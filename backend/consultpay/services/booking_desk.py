from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from consultpay.core.config import PaymentTimings
from consultpay.core.scheduler import Scheduler
from consultpay.integrations.consult_api.base import ApiError, ConsultApi
from consultpay.models.booking import Booking, BookingStatus, PricingOption, Service
from consultpay.services.payment_flow import PaymentFlow
from consultpay.services.phone import MPESA_PHONE_RE, strip_whitespace

logger = logging.getLogger(__name__)

INVALID_PHONE_MESSAGE = "Enter a valid M-Pesa number (e.g., 0712345678)"


class BookingRequest(BaseModel):
    """Booking form, validated before anything is sent to the backend."""

    service_id: UUID
    date: str = Field(pattern=r"^\d{4}-\d{2}-\d{2}$")
    start_time: str = Field(pattern=r"^\d{2}:\d{2}$")
    payment_phone: str
    user_notes: Optional[str] = None
    pricing_option: Optional[str] = None

    model_config = ConfigDict(extra="ignore")

    @field_validator("payment_phone")
    @classmethod
    def _check_phone(cls, value: str) -> str:
        value = strip_whitespace(value)
        if not MPESA_PHONE_RE.match(value):
            raise ValueError(INVALID_PHONE_MESSAGE)
        return value

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


def resolve_amount(service: Service, option: Optional[PricingOption] = None) -> float:
    """A fixed-price tier overrides the base price; custom quotes never do."""
    if option is not None and option.has_fixed_price:
        return float(option.price)
    return float(service.price)


@dataclass
class PaymentSeed:
    """Everything a payment dialog needs to open for a booking."""

    booking_id: str
    amount: float
    service_name: str
    phone: Optional[str] = None
    booking: Optional[Booking] = None

    @classmethod
    def from_booking(
        cls,
        booking: Booking,
        pricing_option: Optional[PricingOption] = None,
        phone: Optional[str] = None,
    ) -> "PaymentSeed":
        service = booking.service or Service(name="Consultation")
        return cls(
            booking_id=booking.id,
            amount=resolve_amount(service, pricing_option),
            service_name=service.name,
            phone=phone,
            booking=booking,
        )


class BookingDesk:
    """Booking creation and the hand-off into the payment flow."""

    def __init__(self, api: ConsultApi):
        self.api = api

    async def available_slots(self, date: str, service_id: str) -> list[str]:
        slots = await self.api.get_slots(date, service_id)
        return [slot.time for slot in slots if slot.available]

    async def pending_bookings(self) -> list[Booking]:
        bookings = await self.api.list_bookings()
        return [booking for booking in bookings if booking.status == BookingStatus.PENDING]

    async def submit(
        self,
        request: BookingRequest,
        pricing_option: Optional[PricingOption] = None,
    ) -> PaymentSeed:
        """Create the booking; the returned seed opens a pre-filled payment."""
        booking = await self.api.create_booking(request.to_payload())
        option = pricing_option
        if option is None and booking.service is not None:
            option = booking.service.pricing_option(request.pricing_option)
        if option is None and request.pricing_option:
            # Booking responses carry only {name, price}; tiers live in the catalog
            option = await self._catalog_option(str(request.service_id), request.pricing_option)
        seed = PaymentSeed.from_booking(booking, option, phone=request.payment_phone)
        logger.info(
            "📅 Booking %s created for %s on %s at %s (Ksh %s)",
            booking.id,
            seed.service_name,
            request.date,
            request.start_time,
            seed.amount,
        )
        return seed

    async def _catalog_option(self, service_id: str, name: str) -> Optional[PricingOption]:
        try:
            services = await self.api.list_services()
        except ApiError as exc:
            logger.warning("⚠️ Could not load pricing for %s, using base price: %s", service_id, exc.message)
            return None
        for service in services:
            if str(service.id).lower() == service_id:
                return service.pricing_option(name)
        logger.warning("⚠️ Service %s not in catalog, using base price", service_id)
        return None

    def open_payment(
        self,
        seed: PaymentSeed,
        scheduler: Scheduler,
        timings: Optional[PaymentTimings] = None,
    ) -> PaymentFlow:
        return PaymentFlow.enter(
            self.api,
            seed.booking_id,
            seed.amount,
            seed.service_name,
            initial_phone=seed.phone,
            scheduler=scheduler,
            timings=timings,
        )
