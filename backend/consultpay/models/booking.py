from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class BookingStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


def _to_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _enum_or_raw(enum_cls, value):
    try:
        return enum_cls(value)
    except ValueError:
        return value


@dataclass
class PricingOption:
    """A named price tier on a service ("Virtual", "On-site", custom quote)."""

    name: str
    price: Optional[float] = None
    is_custom: bool = False

    @property
    def has_fixed_price(self) -> bool:
        return not self.is_custom and self.price is not None

    @classmethod
    def from_payload(cls, data: dict) -> "PricingOption":
        return cls(
            name=data.get("name") or data.get("label") or "",
            price=_to_float(data.get("price")),
            is_custom=bool(data.get("is_custom", False)),
        )


@dataclass
class Service:
    name: str
    price: float = 0.0
    id: Optional[str] = None
    duration_mins: Optional[int] = None
    pricing_options: list[PricingOption] = field(default_factory=list)

    @classmethod
    def from_payload(cls, data: dict) -> "Service":
        return cls(
            id=data.get("id"),
            name=data.get("name") or "Consultation",
            price=_to_float(data.get("price")) or 0.0,
            duration_mins=data.get("duration_mins"),
            pricing_options=[
                PricingOption.from_payload(opt) for opt in data.get("pricing_options") or []
            ],
        )

    def pricing_option(self, name: Optional[str]) -> Optional[PricingOption]:
        if not name:
            return None
        for option in self.pricing_options:
            if option.name == name:
                return option
        return None


@dataclass
class PaymentRecord:
    status: Any
    amount: Optional[float] = None
    reference: Optional[str] = None
    transaction_id: Optional[str] = None

    @classmethod
    def from_payload(cls, data: dict) -> "PaymentRecord":
        return cls(
            status=_enum_or_raw(PaymentStatus, data.get("status")),
            amount=_to_float(data.get("amount")),
            reference=data.get("reference"),
            transaction_id=data.get("transaction_id"),
        )


@dataclass
class Booking:
    """A scheduled consultation as reported by the booking service."""

    id: str
    status: Any
    service: Optional[Service] = None
    date: Optional[str] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    meeting_link: Optional[str] = None
    payments: list[PaymentRecord] = field(default_factory=list)

    @property
    def latest_payment(self) -> Optional[PaymentRecord]:
        # Payments arrive most-recent-first
        return self.payments[0] if self.payments else None

    @property
    def is_paid(self) -> bool:
        return self.status == BookingStatus.PAID

    @classmethod
    def from_payload(cls, data: dict) -> "Booking":
        service = data.get("service")
        return cls(
            id=str(data.get("id", "")),
            status=_enum_or_raw(BookingStatus, data.get("status")),
            service=Service.from_payload(service) if isinstance(service, dict) else None,
            date=data.get("date"),
            start_time=data.get("start_time"),
            end_time=data.get("end_time"),
            meeting_link=data.get("meeting_link"),
            payments=[PaymentRecord.from_payload(p) for p in data.get("payments") or []],
        )


@dataclass
class Slot:
    time: str
    available: bool = True

    @classmethod
    def from_payload(cls, data: dict) -> "Slot":
        return cls(time=data.get("time", ""), available=bool(data.get("available", True)))
