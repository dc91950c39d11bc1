"""Payer phone number normalization (MSISDN format, e.g. 2547XXXXXXXX)."""

from __future__ import annotations

import re

from shop4me.errors import PhoneNumberError

_STRIP = re.compile(r"[^0-9+]")
SUBSCRIBER_DIGITS = 9


def normalize_msisdn(phone: str, country_code: str = "254", *, field: str = "phone") -> str:
    """Normalize a local or international number to ``<country code><subscriber>``.

    Accepts ``+2547XXXXXXXX``, ``2547XXXXXXXX``, ``07XXXXXXXX`` and the bare
    nine digit subscriber number. Anything else raises PhoneNumberError;
    numbers are never padded or truncated to fit.
    """
    cleaned = _STRIP.sub("", phone or "")

    if cleaned.startswith("+" + country_code):
        cleaned = cleaned[1:]
    elif cleaned.startswith("0"):
        cleaned = country_code + cleaned[1:]
    elif cleaned.startswith(country_code):
        pass
    elif len(cleaned) == SUBSCRIBER_DIGITS:
        cleaned = country_code + cleaned

    expected_length = len(country_code) + SUBSCRIBER_DIGITS
    if (
        len(cleaned) != expected_length
        or not cleaned.isdigit()
        or not cleaned.startswith(country_code)
    ):
        raise PhoneNumberError(phone, field=field)

    return cleaned
