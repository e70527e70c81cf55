from __future__ import annotations

import logging
from typing import Any, Callable, Optional, TypeVar

import httpx

from consultpay.integrations.consult_api.base import ApiError, error_detail
from consultpay.models.booking import Booking, PaymentRecord, Service, Slot
from consultpay.models.payment import InitiationReceipt, VerificationResult

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _decode(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return {"raw_response": response.text}


def _error_message(payload: Any, status_code: int) -> str:
    return error_detail(payload) or f"Request failed with status {status_code}"


def _unwrap(data: Any, key: str) -> dict:
    """Accept both ``{"booking": {...}}`` and a bare ``{...}`` body."""
    if isinstance(data, dict):
        inner = data.get(key)
        if isinstance(inner, dict):
            return inner
        return data
    return {}


def _unwrap_list(data: Any, *keys: str) -> list:
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        for key in keys:
            value = data.get(key)
            if isinstance(value, list):
                return value
    return []


def _parse(path: str, build: Callable[[], T]) -> T:
    """Run a body parser; a 2xx body of the wrong shape is a bad gateway."""
    try:
        return build()
    except (AttributeError, KeyError, TypeError, ValueError) as exc:
        logger.warning("❌ Unexpected response shape from %s: %r", path, exc)
        raise ApiError(f"Unexpected response from {path}", status_code=502) from exc


class HttpConsultApi:
    """Consultation backend over REST (httpx).

    A 401 response means the session token is no longer valid; the
    ``on_unauthorized`` hook lets the host log the user out before the
    error propagates.
    """

    name = "http"

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = 15.0,
        on_unauthorized: Optional[Callable[[], None]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not base_url:
            raise RuntimeError("Missing CONSULT_API_URL")
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.on_unauthorized = on_unauthorized
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[dict] = None,
        params: Optional[dict] = None,
    ) -> Any:
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            ) as client:
                response = await client.request(
                    method,
                    path,
                    json=json,
                    params=params,
                    headers=self._headers(),
                )
        except httpx.HTTPError as exc:
            logger.warning("❌ %s %s failed: %r", method, path, exc)
            raise ApiError(str(exc) or "Network error") from exc

        payload = _decode(response)
        if response.status_code == 401 and self.on_unauthorized is not None:
            logger.info("🔐 Session rejected by backend, logging out")
            self.on_unauthorized()
        if response.status_code >= 400:
            raise ApiError(
                _error_message(payload, response.status_code),
                status_code=response.status_code,
                payload=payload,
            )
        return payload

    async def create_booking(self, payload: dict[str, Any]) -> Booking:
        data = await self._request("POST", "/bookings", json=payload)
        return _parse("/bookings", lambda: Booking.from_payload(_unwrap(data, "booking")))

    async def get_booking(self, booking_id: str) -> Booking:
        path = f"/bookings/{booking_id}"
        data = await self._request("GET", path)
        return _parse(path, lambda: Booking.from_payload(_unwrap(data, "booking")))

    async def list_bookings(self) -> list[Booking]:
        data = await self._request("GET", "/bookings")
        return _parse(
            "/bookings",
            lambda: [Booking.from_payload(item) for item in _unwrap_list(data, "bookings")],
        )

    async def get_slots(self, date: str, service_id: str) -> list[Slot]:
        data = await self._request(
            "GET",
            "/bookings/slots",
            params={"date": date, "service_id": service_id},
        )
        return _parse(
            "/bookings/slots",
            lambda: [Slot.from_payload(item) for item in _unwrap_list(data, "slots")],
        )

    async def list_services(self) -> list[Service]:
        data = await self._request("GET", "/public/services")
        return _parse(
            "/public/services",
            lambda: [Service.from_payload(item) for item in _unwrap_list(data, "services")],
        )

    async def initiate_payment(self, booking_id: str, payment_phone: str) -> InitiationReceipt:
        data = await self._request(
            "POST",
            "/payments/initiate",
            json={"booking_id": booking_id, "payment_phone": payment_phone},
        )
        data = data if isinstance(data, dict) else {}
        return InitiationReceipt(reference=data.get("reference") or None, raw=data)

    async def verify_payment(self, reference: str) -> VerificationResult:
        data = await self._request("POST", "/payments/verify", json={"reference": reference})
        return _parse(
            "/payments/verify",
            lambda: VerificationResult.from_payload(data if isinstance(data, dict) else {}),
        )

    async def payment_history(self) -> list[PaymentRecord]:
        data = await self._request("GET", "/payments/history")
        return _parse(
            "/payments/history",
            lambda: [
                PaymentRecord.from_payload(item)
                for item in _unwrap_list(data, "payments", "history")
            ],
        )
