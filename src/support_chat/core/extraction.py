"""Customer identity helpers.

A customer chat is anonymous: its identifier is minted on the client from
the phone number and the current time, and the customer's name and phone
only reach the admin side inside the greeting text. This module owns both
directions of that round trip.
"""

from __future__ import annotations

import re
from datetime import UTC, datetime

from support_chat.models.session import UNKNOWN_PHONE, UNKNOWN_USER, ContactExtraction

NAME_PATTERN = re.compile(r"I['’]m ([^(]+)")
PHONE_PATTERN = re.compile(r"\(([^)]+)\)")


def build_greeting(name: str, phone: str) -> str:
    """The first message a customer widget sends for a new chat."""
    return f"Hello! I'm {name} ({phone}). I'd like to chat with an admin."


def extract_contact(body: str) -> ContactExtraction:
    """Pull a display name and phone number out of a greeting.

    Total: never raises, substitutes sentinels for whatever it cannot find.

    Example:
        >>> extract_contact("Hello! I'm Ama (0551234567). I'd like to chat with an admin.")
        ContactExtraction(display_name='Ama', contact_phone='0551234567', ...)
    """
    text = body or ""

    name_match = NAME_PATTERN.search(text)
    name = name_match.group(1).strip() if name_match else ""

    phone_match = PHONE_PATTERN.search(text)
    phone = phone_match.group(1).strip() if phone_match else ""

    return ContactExtraction(
        display_name=name or UNKNOWN_USER,
        contact_phone=phone or UNKNOWN_PHONE,
        name_found=bool(name),
        phone_found=bool(phone),
    )


def normalize_phone(phone: str) -> str:
    """Keep only the digits of a phone number."""
    return re.sub(r"\D", "", phone)


def generate_chat_id(phone: str, now: datetime | None = None) -> str:
    """Mint a session identifier for a new customer chat.

    Unique per chat start: the same phone starting a chat later gets a new
    identifier, with no link to earlier sessions.
    """
    moment = now or datetime.now(UTC)
    millis = int(moment.timestamp() * 1000)
    return f"chat_{normalize_phone(phone)}_{millis}"
