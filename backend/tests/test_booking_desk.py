import asyncio

import httpx
import pytest
from pydantic import ValidationError

from consultpay.integrations.consult_api.http import HttpConsultApi
from consultpay.models.booking import Booking, BookingStatus, PricingOption, Service
from consultpay.models.payment import PaymentPhase
from consultpay.services.booking_desk import (
    INVALID_PHONE_MESSAGE,
    BookingDesk,
    BookingRequest,
    PaymentSeed,
    resolve_amount,
)

FARM_ID = "6f1c2a8e-3b7d-4c55-9a1e-0d2f4b6c8e01"


def booking_form(**overrides):
    data = {
        "service_id": FARM_ID,
        "date": "2026-01-15",
        "start_time": "09:00",
        "payment_phone": "0712345678",
    }
    data.update(overrides)
    return BookingRequest(**data)


def test_booking_form_accepts_spaced_phone():
    form = booking_form(payment_phone="0712 345 678")

    assert form.payment_phone == "0712345678"


def test_booking_form_rejects_bad_phone():
    with pytest.raises(ValidationError) as excinfo:
        booking_form(payment_phone="0812345678")

    assert INVALID_PHONE_MESSAGE in str(excinfo.value)


@pytest.mark.parametrize(
    "field, value",
    [("date", "15/01/2026"), ("start_time", "9am"), ("service_id", "not-a-uuid")],
)
def test_booking_form_rejects_malformed_fields(field, value):
    with pytest.raises(ValidationError):
        booking_form(**{field: value})


def test_payload_drops_empty_optionals():
    payload = booking_form(user_notes="Maize leaves yellowing").to_payload()

    assert payload == {
        "service_id": FARM_ID,
        "date": "2026-01-15",
        "start_time": "09:00",
        "payment_phone": "0712345678",
        "user_notes": "Maize leaves yellowing",
    }


def test_resolve_amount():
    service = Service(name="Farm Consultation", price=2500.0)

    assert resolve_amount(service) == 2500.0
    assert resolve_amount(service, PricingOption(name="On-site", price=4000.0)) == 4000.0
    assert resolve_amount(service, PricingOption(name="Large estate", price=9000.0, is_custom=True)) == 2500.0
    assert resolve_amount(service, PricingOption(name="Unpriced")) == 2500.0


def test_seed_from_booking_without_service():
    booking = Booking(id="bk-5", status=BookingStatus.PENDING)

    seed = PaymentSeed.from_booking(booking)

    assert seed.service_name == "Consultation"
    assert seed.amount == 0.0
    assert seed.phone is None


def test_submit_uses_selected_tier_price(sandbox):
    desk = BookingDesk(sandbox)

    seed = asyncio.run(desk.submit(booking_form(pricing_option="On-site")))

    assert seed.amount == 4000.0
    assert seed.service_name == "Farm Consultation"
    assert seed.phone == "0712345678"
    assert sandbox.calls[0] == (
        "create_booking",
        {
            "service_id": FARM_ID,
            "date": "2026-01-15",
            "start_time": "09:00",
            "payment_phone": "0712345678",
            "pricing_option": "On-site",
        },
    )


def test_submit_with_custom_tier_keeps_base_price(sandbox):
    desk = BookingDesk(sandbox)

    seed = asyncio.run(desk.submit(booking_form(pricing_option="Large estate")))

    assert seed.amount == 2500.0


def test_submitted_booking_opens_seeded_payment(sandbox, scheduler):
    desk = BookingDesk(sandbox)
    seed = asyncio.run(desk.submit(booking_form()))

    flow = desk.open_payment(seed, scheduler=scheduler)

    assert flow.phase == PaymentPhase.AWAITING_PROMPT
    assert flow.session.payer_phone == "+254712345678"
    asyncio.run(scheduler.advance(0))
    assert sandbox.calls[-1] == ("initiate_payment", (seed.booking_id, "+254712345678"))


def test_pay_now_opens_in_input(sandbox, scheduler):
    desk = BookingDesk(sandbox)
    seed = asyncio.run(desk.submit(booking_form()))

    flow = desk.open_payment(PaymentSeed.from_booking(seed.booking), scheduler=scheduler)

    assert flow.phase == PaymentPhase.INPUT


def test_available_slots_and_pending_bookings(sandbox):
    desk = BookingDesk(sandbox)
    asyncio.run(desk.submit(booking_form(start_time="10:00")))

    slots = asyncio.run(desk.available_slots("2026-01-15", FARM_ID))
    pending = asyncio.run(desk.pending_bookings())

    assert "10:00" not in slots
    assert "09:00" in slots
    assert len(pending) == 1


def catalog_backend(services_status=200):
    """Backend whose booking response carries only the service name and base price."""

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/api/bookings":
            return httpx.Response(
                201,
                json={"booking": {"id": "b1", "status": "pending", "service": {"name": "Farm Consultation", "price": 2500}}},
            )
        if request.url.path == "/api/public/services":
            if services_status != 200:
                return httpx.Response(services_status, json={"error": "Catalog unavailable"})
            return httpx.Response(
                200,
                json={
                    "services": [
                        {
                            "id": FARM_ID.upper(),
                            "name": "Farm Consultation",
                            "price": 2500,
                            "pricing_options": [
                                {"name": "Virtual", "price": 2500},
                                {"name": "On-site", "price": 4000},
                                {"name": "Large estate", "is_custom": True},
                            ],
                        }
                    ]
                },
            )
        return httpx.Response(404, json={"error": "Not found"})

    return HttpConsultApi("http://backend.test/api", transport=httpx.MockTransport(handler))


def test_tier_price_comes_from_catalog_when_booking_omits_tiers():
    desk = BookingDesk(catalog_backend())

    seed = asyncio.run(desk.submit(booking_form(pricing_option="On-site")))

    assert seed.booking_id == "b1"
    assert seed.amount == 4000.0


def test_custom_tier_from_catalog_keeps_base_price():
    desk = BookingDesk(catalog_backend())

    seed = asyncio.run(desk.submit(booking_form(pricing_option="Large estate")))

    assert seed.amount == 2500.0


def test_catalog_outage_falls_back_to_base_price():
    desk = BookingDesk(catalog_backend(services_status=503))

    seed = asyncio.run(desk.submit(booking_form(pricing_option="On-site")))

    assert seed.amount == 2500.0


def test_booking_form_ignores_unknown_fields():
    form = booking_form(referrer="newsletter")

    assert BookingRequest.model_config["extra"] == "ignore"
    assert "referrer" not in form.to_payload()
