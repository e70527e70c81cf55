"""
M-Pesa payment confirmation flow.

Drives a PaymentSession from Input to Success or Failed:
- initiate() asks the backend for an STK push
- while awaiting the prompt, three timers race:
  1. a 1s countdown (60s budget)
  2. a 4s booking status poll (webhook landed -> booking is "paid")
  3. a 5s verification poll by reference (works without webhooks)
- the first success signal wins; the countdown running out only fails the
  attempt visibly, the backend may still settle the payment later

Every timer belongs to one attempt. Timers are cancelled the moment the
attempt leaves AwaitingPrompt, and any result that arrives afterwards is
discarded by the phase/attempt check.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, timezone
from functools import partial
from typing import Optional

from consultpay.core.config import PaymentTimings
from consultpay.core.scheduler import Scheduler, Timer
from consultpay.integrations.consult_api.base import ApiError, ConsultApi
from consultpay.models.booking import Booking, PaymentStatus
from consultpay.models.payment import (
    GENERIC_INITIATION_ERROR,
    ConfirmationChannel,
    FailureKind,
    InitiationResult,
    PaymentError,
    PaymentMetrics,
    PaymentPhase,
    PaymentSession,
    PaymentSnapshot,
    RecoveryAction,
    VerificationResult,
)
from consultpay.services.phone import normalize_phone

logger = logging.getLogger(__name__)

TICK_SECONDS = 1.0


class InvalidTransition(RuntimeError):
    """Raised when an action is not allowed from the current phase."""


class PaymentFlow:
    """
    State machine for one payment dialog.

    The flow owns its scheduler: ``close()`` shuts it down, so give each
    flow its own instance.

    Usage:
        flow = PaymentFlow.enter(api, booking.id, 2500, "Farm Consultation",
                                 initial_phone="0712345678",
                                 scheduler=AsyncioScheduler())
        ...
        flow.snapshot().phase
        flow.close()
    """

    def __init__(
        self,
        api: ConsultApi,
        session: PaymentSession,
        scheduler: Scheduler,
        timings: Optional[PaymentTimings] = None,
    ):
        self.api = api
        self.session = session
        self.scheduler = scheduler
        self.timings = timings or PaymentTimings()
        self.metrics = PaymentMetrics(booking_id=session.booking_id)
        self.closed = False

        self._attempt = 0
        self._timers: list[Timer] = []
        self._deadline: Optional[float] = None
        self._expiry: Optional[Timer] = None

    @classmethod
    def enter(
        cls,
        api: ConsultApi,
        booking_id: str,
        amount: float,
        service_name: str,
        initial_phone: Optional[str] = None,
        *,
        scheduler: Scheduler,
        timings: Optional[PaymentTimings] = None,
    ) -> "PaymentFlow":
        """Open a session. A known phone skips Input and pushes right away."""
        seeded = bool(initial_phone and initial_phone.strip())
        session = PaymentSession(
            booking_id=booking_id,
            amount=amount,
            service_name=service_name or "Consultation",
            payer_phone=normalize_phone(initial_phone) if seeded else None,
            phase=PaymentPhase.AWAITING_PROMPT if seeded else PaymentPhase.INPUT,
        )
        flow = cls(api, session, scheduler, timings)
        logger.info(
            "💳 Payment session opened for booking %s (%s, Ksh %s)",
            booking_id,
            session.service_name,
            amount,
        )
        if seeded:
            session.remaining_seconds = flow.timings.countdown_seconds
            flow.auto_initiate()
        return flow

    # ─────────────────────────────────────────────────────────────────
    # Actions
    # ─────────────────────────────────────────────────────────────────

    def auto_initiate(self) -> bool:
        """Schedule the one-time push for a seeded session.

        Returns False when the latch is already set; repeated calls never
        start a second push.
        """
        session = self.session
        if session.auto_initiated or self.closed or not session.payer_phone:
            return False
        session.auto_initiated = True
        # Tracked with the attempt timers so reset() or close() withdraws it
        self._timers.append(self.scheduler.call_later(0, partial(self.initiate, session.payer_phone)))
        return True

    async def initiate(self, phone: Optional[str] = None) -> InitiationResult:
        session = self.session
        if self.closed or session.phase == PaymentPhase.SUCCESS:
            return InitiationResult()
        if session.initiating:
            logger.warning("⏳ STK push already in flight for booking %s", session.booking_id)
            return InitiationResult()

        raw_phone = phone or session.payer_phone
        if not raw_phone or not raw_phone.strip():
            raise ValueError("A payment phone number is required")

        # Old timers go before the new attempt can arm its own
        self._start_attempt()
        attempt = self._attempt
        normalized = normalize_phone(raw_phone)
        session.payer_phone = normalized
        session.reference = None
        session.initiating = True
        self.metrics.initiations += 1
        logger.info("📲 Sending STK push for booking %s to %s", session.booking_id, normalized)

        try:
            receipt = await self.api.initiate_payment(session.booking_id, normalized)
        except ApiError as exc:
            if not self._is_current(attempt):
                return InitiationResult()
            kind = FailureKind.NETWORK if exc.is_network_error else FailureKind.INITIATION
            error = PaymentError(kind, exc.detail or GENERIC_INITIATION_ERROR)
            logger.warning("❌ STK push failed for booking %s: %s", session.booking_id, exc.message)
            self._fail(error)
            return InitiationResult(error=error)
        finally:
            session.initiating = False

        if not self._is_current(attempt) or session.phase == PaymentPhase.SUCCESS:
            # Closed, reset or already paid while the push was in flight
            return InitiationResult(accepted=True, reference=receipt.reference)

        session.reference = receipt.reference
        session.last_error = None
        session.phase = PaymentPhase.AWAITING_PROMPT
        self._arm_timers(attempt)
        logger.info(
            "📨 STK push accepted for booking %s (reference=%s)",
            session.booking_id,
            receipt.reference or "none",
        )
        return InitiationResult(accepted=True, reference=receipt.reference)

    async def retry_same_phone(self) -> InitiationResult:
        if self.session.phase != PaymentPhase.FAILED:
            raise InvalidTransition(
                f"Cannot retry from {self.session.phase.value}; only a failed attempt can be retried"
            )
        return await self.initiate(self.session.payer_phone)

    def reset(self) -> None:
        """Back to Input ("use a different number")."""
        session = self.session
        if session.phase == PaymentPhase.SUCCESS:
            raise InvalidTransition("Payment already completed")
        self._start_attempt()
        session.phase = PaymentPhase.INPUT
        session.reference = None
        session.last_error = None
        session.remaining_seconds = None

    def close(self) -> None:
        """Dialog closed: stop every timer and in-flight poll."""
        if self.closed:
            return
        self.closed = True
        self._attempt += 1
        self._cancel_timers()
        self.scheduler.shutdown()
        self.metrics.log_summary()
        logger.info("🧹 Payment session closed for booking %s", self.session.booking_id)

    # ─────────────────────────────────────────────────────────────────
    # Signals
    # ─────────────────────────────────────────────────────────────────

    def tick(self) -> None:
        session = self.session
        if (
            session.phase != PaymentPhase.AWAITING_PROMPT
            or self._deadline is None
            or self._expiry is not None
        ):
            return

        remaining = max(0, math.ceil(round(self._deadline - self.scheduler.now(), 6)))
        session.remaining_seconds = remaining
        if remaining == 0:
            # Confirmations due at this same instant still get to land first
            self._expiry = self.scheduler.call_later(0, partial(self._expire, self._attempt))
            self._timers.append(self._expiry)

    def on_booking_status_observed(self, booking: Booking) -> None:
        if self.session.phase != PaymentPhase.AWAITING_PROMPT:
            return
        if booking.is_paid:
            self._succeed(ConfirmationChannel.BOOKING_STATUS)
            return
        payment = booking.latest_payment
        if payment is not None and payment.status == PaymentStatus.FAILED:
            logger.info("🚫 Payment declined for booking %s", self.session.booking_id)
            self._fail(PaymentError.declined())

    def on_verification_observed(self, result: VerificationResult) -> None:
        if self.session.phase != PaymentPhase.AWAITING_PROMPT:
            return
        if result.succeeded:
            self._succeed(ConfirmationChannel.VERIFICATION)

    # ─────────────────────────────────────────────────────────────────
    # Views
    # ─────────────────────────────────────────────────────────────────

    @property
    def phase(self) -> PaymentPhase:
        return self.session.phase

    def snapshot(self) -> PaymentSnapshot:
        session = self.session
        error = session.last_error if session.phase == PaymentPhase.FAILED else None
        if error is not None:
            actions = error.recovery_actions
        elif session.phase == PaymentPhase.AWAITING_PROMPT:
            actions = (RecoveryAction.CHANGE_NUMBER,)
        else:
            actions = ()
        return PaymentSnapshot(
            booking_id=session.booking_id,
            phase=session.phase,
            amount=session.amount,
            service_name=session.service_name,
            payer_phone=session.payer_phone,
            reference=session.reference,
            remaining_seconds=(
                session.remaining_seconds
                if session.phase == PaymentPhase.AWAITING_PROMPT
                else None
            ),
            initiating=session.initiating,
            error=error.message if error else None,
            error_kind=error.kind if error else None,
            recovery_actions=actions,
        )

    # ─────────────────────────────────────────────────────────────────
    # Private Methods
    # ─────────────────────────────────────────────────────────────────

    def _start_attempt(self) -> None:
        self._attempt += 1
        self._cancel_timers()

    def _is_current(self, attempt: int) -> bool:
        return not self.closed and attempt == self._attempt

    def _is_live(self, attempt: int) -> bool:
        return self._is_current(attempt) and self.session.phase == PaymentPhase.AWAITING_PROMPT

    def _arm_timers(self, attempt: int) -> None:
        self.session.remaining_seconds = self.timings.countdown_seconds
        self._deadline = self.scheduler.now() + self.timings.countdown_seconds
        self._timers.append(
            self.scheduler.call_every(
                self.timings.status_poll_seconds,
                partial(self._poll_booking, attempt),
            )
        )
        if self.session.reference:
            self._timers.append(
                self.scheduler.call_every(
                    self.timings.verify_poll_seconds,
                    partial(self._poll_verification, attempt),
                )
            )
        self._timers.append(self.scheduler.call_every(TICK_SECONDS, self.tick))

    def _cancel_timers(self) -> None:
        for timer in self._timers:
            timer.cancel()
        self._timers = []
        self._deadline = None
        self._expiry = None

    async def _poll_booking(self, attempt: int) -> None:
        if not self._is_live(attempt):
            return
        self.metrics.status_polls += 1
        try:
            booking = await self.api.get_booking(self.session.booking_id)
        except ApiError as exc:
            self.metrics.poll_errors += 1
            logger.warning(
                "⚠️ Booking status poll failed for %s: %s", self.session.booking_id, exc.message
            )
            return
        if not self._is_live(attempt):
            logger.debug("Discarding stale booking status for %s", self.session.booking_id)
            return
        self.on_booking_status_observed(booking)

    async def _poll_verification(self, attempt: int) -> None:
        reference = self.session.reference
        if not reference or not self._is_live(attempt):
            return
        self.metrics.verification_polls += 1
        try:
            result = await self.api.verify_payment(reference)
        except ApiError as exc:
            # Not confirmed yet; try again next interval
            self.metrics.poll_errors += 1
            logger.debug("Verification pending for %s: %s", reference, exc.message)
            return
        if not self._is_live(attempt):
            return
        self.on_verification_observed(result)

    def _expire(self, attempt: int) -> None:
        if not self._is_live(attempt):
            return
        logger.info("⌛ No confirmation for booking %s before the countdown ended", self.session.booking_id)
        self._fail(PaymentError.timeout())

    def _succeed(self, channel: ConfirmationChannel) -> None:
        session = self.session
        self._cancel_timers()
        session.phase = PaymentPhase.SUCCESS
        session.remaining_seconds = None
        session.last_error = None
        self.metrics.winning_channel = channel
        self._record_outcome()
        logger.info("✅ Booking %s paid (confirmed via %s)", session.booking_id, channel.value)

    def _fail(self, error: PaymentError) -> None:
        session = self.session
        self._cancel_timers()
        session.phase = PaymentPhase.FAILED
        session.remaining_seconds = None
        session.last_error = error
        self._record_outcome()

    def _record_outcome(self) -> None:
        self.metrics.outcome = self.session.phase
        self.metrics.resolved_at = datetime.now(timezone.utc)
