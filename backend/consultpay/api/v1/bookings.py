from __future__ import annotations

from fastapi import APIRouter, HTTPException, Request

from consultpay.api.v1.payments import open_flow, session_payload
from consultpay.integrations.consult_api.base import ApiError
from consultpay.services.booking_desk import BookingRequest

router = APIRouter()


def _api_failure(exc: ApiError) -> HTTPException:
    return HTTPException(status_code=exc.status_code or 502, detail=exc.message)


@router.post("", status_code=201)
async def create_booking(payload: BookingRequest, request: Request):
    """Create a booking and open its payment session with the form's phone."""
    try:
        seed = await request.app.state.desk.submit(payload)
    except ApiError as exc:
        raise _api_failure(exc)

    session_id, flow = open_flow(request, seed)
    return {
        "booking_id": seed.booking_id,
        "amount": seed.amount,
        "service_name": seed.service_name,
        "payment": session_payload(session_id, flow),
    }


@router.get("/slots")
async def available_slots(date: str, service_id: str, request: Request):
    try:
        times = await request.app.state.desk.available_slots(date, service_id)
    except ApiError as exc:
        raise _api_failure(exc)
    return {"date": date, "service_id": service_id, "slots": times}


@router.get("/pending")
async def pending_bookings(request: Request):
    try:
        bookings = await request.app.state.desk.pending_bookings()
    except ApiError as exc:
        raise _api_failure(exc)
    return {
        "bookings": [
            {
                "id": booking.id,
                "service": booking.service.name if booking.service else None,
                "amount": booking.service.price if booking.service else None,
                "date": booking.date,
                "start_time": booking.start_time,
            }
            for booking in bookings
        ]
    }


@router.get("/services")
async def list_services(request: Request):
    try:
        services = await request.app.state.api.list_services()
    except ApiError as exc:
        raise _api_failure(exc)
    return {
        "services": [
            {
                "id": service.id,
                "name": service.name,
                "price": service.price,
                "duration_mins": service.duration_mins,
                "pricing_options": [
                    {"name": option.name, "price": option.price, "is_custom": option.is_custom}
                    for option in service.pricing_options
                ],
            }
            for service in services
        ]
    }
