"""Phone number and protocol address helpers."""

from __future__ import annotations

import re

USER_SERVER = "s.whatsapp.net"

_NON_DIALABLE = re.compile(r"[^\d+]")
_COUNTRY_CODE = re.compile(r"^[1-9]\d{1,2}")
_DIALABLE = re.compile(r"^\+?[\d\s\-().]+$")


def session_identity(number: str | None) -> str | None:
    """
    Storage key for a requested phone number.

    Returns the digits of *number*, or None when *number* is empty or holds
    anything besides digits, separators and a leading ``+``.
    """
    number = (number or "").strip()
    if not number or not _DIALABLE.match(number):
        return None
    digits = re.sub(r"\D", "", number)
    return digits or None


def format_phone_number(number: str, default_country_code: str = "62") -> str:
    """
    Normalize a phone number for a pairing-code request.

    Strips everything but digits and ``+``, drops a leading ``+`` and
    prefixes *default_country_code* when the number does not start with one.
    """
    formatted = _NON_DIALABLE.sub("", number)
    if formatted.startswith("+"):
        formatted = formatted[1:]
    if not _COUNTRY_CODE.match(formatted):
        formatted = default_country_code + formatted
    return formatted


def jid_normalized_user(jid: str) -> str:
    """Drop device and agent suffixes from a user JID and lowercase the server."""
    if "@" not in jid:
        return jid
    user, server = jid.split("@", 1)
    user = user.split(":", 1)[0]
    user = user.split("_", 1)[0]
    server = server.lower()
    if server == "c.us":
        server = USER_SERVER
    return f"{user}@{server}"


def user_jid(identity: str) -> str:
    """The protocol address of *identity*'s own account."""
    return jid_normalized_user(f"{identity}@{USER_SERVER}")
