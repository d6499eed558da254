"""Indonesian phone number normalization for WhatsApp correlation."""

import re

COUNTRY_CODE = "62"
MIN_SENDER_DIGITS = 6

_NON_DIGITS = re.compile(r"\D")
_JID_SUFFIXES = ("@c.us", "@s.whatsapp.net", "@g.us", "@lid")


def strip_provider_suffix(jid: str | None) -> str:
    """
    Remove a device-domain marker from a WhatsApp address.

    "6281234@c.us" -> "6281234"; "6281234:12@s.whatsapp.net" -> "6281234".
    """
    if not jid:
        return ""
    value = jid.strip()
    for suffix in _JID_SUFFIXES:
        if value.endswith(suffix):
            value = value[: -len(suffix)]
            break
    # Multi-device addresses carry ":<device>" before the domain
    return value.split(":", 1)[0]


def normalize_phone(raw: str | int | None) -> str:
    """Digits only. Empty string when nothing usable remains."""
    if raw is None:
        return ""
    return _NON_DIGITS.sub("", strip_provider_suffix(str(raw)))


def phone_alternatives(raw: str | int | None) -> list[str]:
    """
    Equivalent local representations of the same number, normalized first.

    - 6281234567890 -> ["6281234567890", "081234567890"]
    - 081234567890  -> ["081234567890", "6281234567890"]
    """
    phone = normalize_phone(raw)
    if not phone:
        return []
    alternatives = [phone]
    if phone.startswith(COUNTRY_CODE) and len(phone) >= 11:
        alternatives.append("0" + phone[len(COUNTRY_CODE):])
    elif phone.startswith("0") and len(phone) >= 10:
        alternatives.append(COUNTRY_CODE + phone[1:])
    return alternatives


def format_whatsapp_number(raw: str | int | None) -> str:
    """
    Canonical outbound form with the 62 country code.

    Raises:
        ValueError: If no digits remain
    """
    phone = normalize_phone(raw)
    if not phone:
        raise ValueError("Phone number is empty")
    if phone.startswith("0"):
        return COUNTRY_CODE + phone[1:]
    if phone.startswith("8") and len(phone) >= 9:
        return COUNTRY_CODE + phone
    if not phone.startswith(COUNTRY_CODE):
        return COUNTRY_CODE + phone
    return phone


def phone_last4(raw: str | int | None) -> str:
    phone = normalize_phone(raw)
    return phone[-4:] if len(phone) >= 4 else phone
