from __future__ import annotations

from typing import Any, Optional, Protocol

from consultpay.models.booking import Booking, PaymentRecord, Service, Slot
from consultpay.models.payment import InitiationReceipt, VerificationResult


def error_detail(payload: Any) -> Optional[str]:
    """Pull the human-readable reason out of an error body, if it has one."""
    if isinstance(payload, dict):
        for key in ("error", "message", "detail"):
            value = payload.get(key)
            if isinstance(value, str) and value.strip():
                return value
    return None


class ApiError(Exception):
    """Any failure talking to the consultation backend.

    ``status_code`` is None when the request never got a response
    (DNS, connection refused, timeout).
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        payload: Optional[Any] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload

    @property
    def is_network_error(self) -> bool:
        return self.status_code is None

    @property
    def detail(self) -> Optional[str]:
        return error_detail(self.payload)


class ConsultApi(Protocol):
    """REST collaborators the payment flow and booking desk depend on."""

    name: str

    async def create_booking(self, payload: dict[str, Any]) -> Booking:
        ...

    async def get_booking(self, booking_id: str) -> Booking:
        ...

    async def list_bookings(self) -> list[Booking]:
        ...

    async def get_slots(self, date: str, service_id: str) -> list[Slot]:
        ...

    async def list_services(self) -> list[Service]:
        ...

    async def initiate_payment(self, booking_id: str, payment_phone: str) -> InitiationReceipt:
        ...

    async def verify_payment(self, reference: str) -> VerificationResult:
        ...

    async def payment_history(self) -> list[PaymentRecord]:
        ...
