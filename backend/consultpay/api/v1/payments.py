from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, HTTPException, Request, Response
from pydantic import BaseModel, ConfigDict

from consultpay.integrations.consult_api.base import ApiError
from consultpay.services.booking_desk import INVALID_PHONE_MESSAGE, PaymentSeed
from consultpay.services.payment_flow import InvalidTransition, PaymentFlow
from consultpay.services.phone import is_valid_mpesa_phone

router = APIRouter()


class OpenSessionRequest(BaseModel):
    booking_id: str
    phone: Optional[str] = None

    model_config = ConfigDict(extra="ignore")


class InitiateRequest(BaseModel):
    phone: Optional[str] = None


def session_payload(session_id: str, flow: PaymentFlow) -> dict:
    return {"session_id": session_id, **flow.snapshot().to_dict()}


def _get_flow(request: Request, session_id: str) -> PaymentFlow:
    flow = request.app.state.registry.get(session_id)
    if flow is None:
        raise HTTPException(status_code=404, detail="Payment session not found")
    return flow


def _check_phone(phone: Optional[str]) -> None:
    if phone and not is_valid_mpesa_phone(phone):
        raise HTTPException(status_code=422, detail=INVALID_PHONE_MESSAGE)


def open_flow(request: Request, seed: PaymentSeed) -> tuple[str, PaymentFlow]:
    """Start a flow for a seed and register it with the app."""
    state = request.app.state
    flow = state.desk.open_payment(
        seed,
        scheduler=state.scheduler_factory(),
        timings=state.settings.timings,
    )
    return state.registry.register(flow), flow


@router.post("/sessions", status_code=201)
async def open_session(payload: OpenSessionRequest, request: Request):
    """Pay Now on an existing booking; starts in Input unless a phone is given."""
    _check_phone(payload.phone)
    try:
        booking = await request.app.state.api.get_booking(payload.booking_id)
    except ApiError as exc:
        raise HTTPException(status_code=exc.status_code or 502, detail=exc.message)
    if booking.is_paid:
        raise HTTPException(status_code=409, detail="Booking is already paid")

    session_id, flow = open_flow(request, PaymentSeed.from_booking(booking, phone=payload.phone))
    return session_payload(session_id, flow)


@router.get("/sessions/{session_id}")
async def get_session(session_id: str, request: Request):
    return session_payload(session_id, _get_flow(request, session_id))


@router.post("/sessions/{session_id}/initiate")
async def initiate(session_id: str, payload: InitiateRequest, request: Request):
    flow = _get_flow(request, session_id)
    _check_phone(payload.phone)
    try:
        await flow.initiate(payload.phone)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    return session_payload(session_id, flow)


@router.post("/sessions/{session_id}/retry")
async def retry(session_id: str, request: Request):
    flow = _get_flow(request, session_id)
    try:
        await flow.retry_same_phone()
    except InvalidTransition as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    return session_payload(session_id, flow)


@router.post("/sessions/{session_id}/reset")
async def reset(session_id: str, request: Request):
    flow = _get_flow(request, session_id)
    try:
        flow.reset()
    except InvalidTransition as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    return session_payload(session_id, flow)


@router.delete("/sessions/{session_id}", status_code=204)
async def close_session(session_id: str, request: Request):
    if request.app.state.registry.unregister(session_id) is None:
        raise HTTPException(status_code=404, detail="Payment session not found")
    return Response(status_code=204)


@router.get("/history")
async def payment_history(request: Request):
    try:
        records = await request.app.state.api.payment_history()
    except ApiError as exc:
        raise HTTPException(status_code=exc.status_code or 502, detail=exc.message)
    return {
        "payments": [
            {
                "status": record.status,
                "amount": record.amount,
                "reference": record.reference,
                "transaction_id": record.transaction_id,
            }
            for record in records
        ]
    }
