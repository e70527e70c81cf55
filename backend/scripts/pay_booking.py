from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import replace
from typing import Optional

from consultpay.core.config import load_settings
from consultpay.core.scheduler import AsyncioScheduler
from consultpay.integrations.consult_api import SandboxConsultApi, resolve_api
from consultpay.models.payment import PaymentPhase
from consultpay.services.booking_desk import BookingDesk, BookingRequest, PaymentSeed
from consultpay.services.payment_flow import PaymentFlow


def _print_state(flow: PaymentFlow) -> None:
    print(json.dumps(flow.snapshot().to_dict()))


async def run_payment(
    booking_id: Optional[str],
    phone: str,
    sandbox: bool,
    fast: bool,
) -> bool:
    settings = load_settings()
    if sandbox:
        settings = replace(settings, use_sandbox=True)
    if fast:
        settings = replace(
            settings,
            timings=replace(
                settings.timings,
                countdown_seconds=6,
                status_poll_seconds=0.4,
                verify_poll_seconds=0.5,
            ),
        )

    api = resolve_api(settings)
    desk = BookingDesk(api)

    if booking_id is None:
        if not isinstance(api, SandboxConsultApi):
            raise SystemExit("--booking-id is required outside the sandbox")
        service = (await api.list_services())[0]
        seed = await desk.submit(
            BookingRequest(
                service_id=service.id,
                date="2026-01-15",
                start_time="09:00",
                payment_phone=phone,
            )
        )
    else:
        booking = await api.get_booking(booking_id)
        seed = PaymentSeed.from_booking(booking, phone=phone)

    flow = desk.open_payment(seed, scheduler=AsyncioScheduler(), timings=settings.timings)
    last = None
    try:
        while flow.phase not in (PaymentPhase.SUCCESS, PaymentPhase.FAILED):
            state = (flow.phase, flow.session.remaining_seconds, flow.session.initiating)
            if state != last:
                _print_state(flow)
                last = state
            await asyncio.sleep(0.1)
        _print_state(flow)
        return flow.phase == PaymentPhase.SUCCESS
    finally:
        flow.close()


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Push an M-Pesa prompt for a booking and wait for it.")
    parser.add_argument("--booking-id", help="Booking id (omit with --sandbox to create one)")
    parser.add_argument("--phone", required=True, help="Payer phone number")
    parser.add_argument("--sandbox", action="store_true", help="Use the in-memory sandbox backend")
    parser.add_argument("--fast", action="store_true", help="Shrink the countdown and poll intervals")
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    logging.basicConfig(level=load_settings().log_level.upper())
    paid = asyncio.run(run_payment(args.booking_id, args.phone, args.sandbox, args.fast))
    sys.exit(0 if paid else 1)


if __name__ == "__main__":
    main()
