from __future__ import annotations

import re

KENYA_PREFIX = "+254"

# Same shape the booking form accepts: optional 254/+254/0 prefix, then a
# Safaricom/Airtel subscriber number starting with 7 or 1.
MPESA_PHONE_RE = re.compile(r"^(?:254|\+254|0)?(7|1)\d{8}$")

_WHITESPACE_RE = re.compile(r"\s+")


def strip_whitespace(raw: str) -> str:
    return _WHITESPACE_RE.sub("", raw)


def normalize_phone(raw: str) -> str:
    """Convert a user-entered number to the ``+254XXXXXXXXX`` form.

    No validation happens here; callers check the shape first.
    """
    phone = strip_whitespace(raw)
    if phone.startswith("0"):
        return KENYA_PREFIX + phone[1:]
    if phone.startswith("+"):
        return phone
    if phone.startswith("254"):
        return "+" + phone
    return KENYA_PREFIX + phone


def is_valid_mpesa_phone(raw: str) -> bool:
    return bool(MPESA_PHONE_RE.match(strip_whitespace(raw or "")))
