from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from consultpay.models.booking import Booking, PaymentStatus

logger = logging.getLogger(__name__)

GENERIC_INITIATION_ERROR = "Failed to trigger prompt"
DECLINED_MESSAGE = (
    "Payment failed. Please ensure you have sufficient funds or try a different number."
)
TIMEOUT_MESSAGE = (
    "Time's up. We didn't get a confirmation. If you entered your PIN, please wait "
    "a moment, we'll still detect the payment automatically."
)


class PaymentPhase(str, Enum):
    INPUT = "input"
    AWAITING_PROMPT = "awaiting_prompt"
    SUCCESS = "success"
    FAILED = "failed"


class FailureKind(str, Enum):
    INITIATION = "initiation"  # collaborator rejected the STK push
    NETWORK = "network"  # initiation never reached the collaborator
    DECLINED = "declined"  # prompt delivered, payment record failed
    TIMEOUT = "timeout"  # countdown ran out, payment may still land


class RecoveryAction(str, Enum):
    CHANGE_NUMBER = "change_number"
    RETRY_SAME_NUMBER = "retry_same_number"


class ConfirmationChannel(str, Enum):
    BOOKING_STATUS = "booking_status"
    VERIFICATION = "verification"


@dataclass(frozen=True)
class PaymentError:
    """Human-readable failure carried by a session in the Failed phase."""

    kind: FailureKind
    message: str

    @property
    def recovery_actions(self) -> tuple[RecoveryAction, ...]:
        if self.kind == FailureKind.NETWORK:
            return (RecoveryAction.RETRY_SAME_NUMBER,)
        return (RecoveryAction.CHANGE_NUMBER, RecoveryAction.RETRY_SAME_NUMBER)

    @property
    def is_advisory(self) -> bool:
        return self.kind == FailureKind.TIMEOUT

    @classmethod
    def declined(cls) -> "PaymentError":
        return cls(FailureKind.DECLINED, DECLINED_MESSAGE)

    @classmethod
    def timeout(cls) -> "PaymentError":
        return cls(FailureKind.TIMEOUT, TIMEOUT_MESSAGE)


@dataclass
class InitiationReceipt:
    """Body of a successful initiation call."""

    reference: Optional[str] = None
    raw: dict = field(default_factory=dict)


@dataclass
class VerificationResult:
    status: str
    booking: Optional[Booking] = None
    message: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == PaymentStatus.SUCCESS.value

    @classmethod
    def from_payload(cls, data: dict) -> "VerificationResult":
        booking = data.get("booking")
        return cls(
            status=str(data.get("status") or "unknown"),
            booking=Booking.from_payload(booking) if isinstance(booking, dict) else None,
            message=data.get("message"),
        )


@dataclass
class InitiationResult:
    """Outcome of ``PaymentFlow.initiate``.

    - accepted: the collaborator took the request and a prompt is on its way
    - reference: tracking token, when the collaborator returned one
    - error: set when the session moved to Failed
    Neither accepted nor error means the call was skipped (another
    initiation was already in flight, or the session is no longer open).
    """

    accepted: bool = False
    reference: Optional[str] = None
    error: Optional[PaymentError] = None

    @property
    def skipped(self) -> bool:
        return not self.accepted and self.error is None


@dataclass
class PaymentSession:
    """Client-local state of one payment dialog."""

    booking_id: str
    amount: float
    service_name: str
    payer_phone: Optional[str] = None
    phase: PaymentPhase = PaymentPhase.INPUT
    reference: Optional[str] = None
    remaining_seconds: Optional[int] = None
    last_error: Optional[PaymentError] = None
    initiating: bool = False
    # One-shot latch for seeded sessions
    auto_initiated: bool = False


@dataclass(frozen=True)
class PaymentSnapshot:
    """Read-only view handed to UI and API layers."""

    booking_id: str
    phase: PaymentPhase
    amount: float
    service_name: str
    payer_phone: Optional[str]
    reference: Optional[str]
    remaining_seconds: Optional[int]
    initiating: bool
    error: Optional[str]
    error_kind: Optional[FailureKind]
    recovery_actions: tuple[RecoveryAction, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "booking_id": self.booking_id,
            "phase": self.phase.value,
            "amount": self.amount,
            "service_name": self.service_name,
            "payer_phone": self.payer_phone,
            "reference": self.reference,
            "remaining_seconds": self.remaining_seconds,
            "initiating": self.initiating,
            "error": self.error,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "recovery_actions": [action.value for action in self.recovery_actions],
        }


@dataclass
class PaymentMetrics:
    """Per-session counters, logged when the dialog closes."""

    booking_id: str
    opened_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    resolved_at: Optional[datetime] = None
    initiations: int = 0
    status_polls: int = 0
    verification_polls: int = 0
    poll_errors: int = 0
    winning_channel: Optional[ConfirmationChannel] = None
    outcome: Optional[PaymentPhase] = None

    @property
    def time_to_resolution_s(self) -> Optional[float]:
        if self.resolved_at is None:
            return None
        return (self.resolved_at - self.opened_at).total_seconds()

    def log_summary(self) -> None:
        ttr = self.time_to_resolution_s
        logger.info(
            "📊 Payment session %s: outcome=%s channel=%s initiations=%d "
            "status_polls=%d verification_polls=%d poll_errors=%d resolved_in=%s",
            self.booking_id,
            self.outcome.value if self.outcome else "open",
            self.winning_channel.value if self.winning_channel else "-",
            self.initiations,
            self.status_polls,
            self.verification_polls,
            self.poll_errors,
            f"{ttr:.1f}s" if ttr is not None else "N/A",
        )
