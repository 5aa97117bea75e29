"""
Scannable code derivation.

A scannable code is the public identifier printed on an item's label.  It is
derived from the item's internal UUID, so it is unique whenever the UUID is
and never has to be stored separately from it to be reproduced.

Format: ``ITM-`` + 32 uppercase hex digits of the UUID.
"""

from __future__ import annotations

import re
from uuid import UUID

CODE_PREFIX = "ITM-"

_CODE_PATTERN = re.compile(r"^ITM-[0-9A-F]{32}$")


def derive_code(item_id: UUID) -> str:
    """Derive the scannable code for an item id (pure, deterministic)."""
    return f"{CODE_PREFIX}{item_id.hex.upper()}"


def is_scannable_code(text: str) -> bool:
    """True iff ``text`` has the scannable code format."""
    return bool(_CODE_PATTERN.match(text))


def parse_item_ref(ref: UUID | str) -> UUID | str:
    """
    Normalize a caller-supplied item reference.

    Returns a ``UUID`` when ``ref`` is (or parses as) an identifier, otherwise
    the stripped, upper-cased text to be looked up as a scannable code.
    """
    if isinstance(ref, UUID):
        return ref
    text = ref.strip()
    try:
        return UUID(text)
    except ValueError:
        return text.upper()
