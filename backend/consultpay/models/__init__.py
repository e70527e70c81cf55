from consultpay.models.booking import (
    Booking,
    BookingStatus,
    PaymentRecord,
    PaymentStatus,
    PricingOption,
    Service,
    Slot,
)
from consultpay.models.payment import (
    ConfirmationChannel,
    FailureKind,
    InitiationReceipt,
    InitiationResult,
    PaymentError,
    PaymentMetrics,
    PaymentPhase,
    PaymentSession,
    PaymentSnapshot,
    RecoveryAction,
    VerificationResult,
)

__all__ = [
    "Booking",
    "BookingStatus",
    "ConfirmationChannel",
    "FailureKind",
    "InitiationReceipt",
    "InitiationResult",
    "PaymentError",
    "PaymentMetrics",
    "PaymentPhase",
    "PaymentRecord",
    "PaymentSession",
    "PaymentSnapshot",
    "PaymentStatus",
    "PricingOption",
    "RecoveryAction",
    "Service",
    "Slot",
    "VerificationResult",
]
