from __future__ import annotations

import logging
from typing import Optional
from uuid import uuid4

from consultpay.services.payment_flow import PaymentFlow

logger = logging.getLogger(__name__)


class PaymentSessionRegistry:
    """Open payment dialogs, keyed by session id.

    One dialog per booking: registering a flow for a booking that already
    has one closes the old flow first, so two STK pushes for the same
    booking never race each other.
    """

    def __init__(self):
        self._sessions: dict[str, PaymentFlow] = {}

    def register(self, flow: PaymentFlow) -> str:
        for session_id, existing in list(self._sessions.items()):
            if existing.session.booking_id == flow.session.booking_id:
                logger.info("♻️ Replacing open payment session for booking %s", flow.session.booking_id)
                self.unregister(session_id)

        session_id = uuid4().hex
        self._sessions[session_id] = flow
        logger.info("📝 Payment session registered: %s (total: %d)", session_id, len(self._sessions))
        return session_id

    def get(self, session_id: str) -> Optional[PaymentFlow]:
        return self._sessions.get(session_id)

    def unregister(self, session_id: str) -> Optional[PaymentFlow]:
        """Remove a session and close its flow."""
        flow = self._sessions.pop(session_id, None)
        if flow is not None:
            flow.close()
            logger.info("📝 Payment session unregistered: %s (total: %d)", session_id, len(self._sessions))
        return flow

    def active_count(self) -> int:
        return len(self._sessions)

    def close_all(self) -> None:
        for session_id in list(self._sessions):
            self.unregister(session_id)
