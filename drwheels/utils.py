import re
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Optional, Tuple

import bleach

# Business rule: money stored rounded to 2 decimals


def round_amount(value: Decimal) -> Decimal:
    return value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def round_rating(value: Decimal) -> Decimal:
    return value.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP)


def sanitize_input(value: Optional[str]) -> str:
    """Sanitize a user-supplied string for use as a search term.

    - Strips HTML tags using bleach.clean(..., strip=True)
    - Removes obvious SQL metacharacters like '--' and ';'
    - Trims whitespace
    """
    if value is None:
        return ""
    # remove NULL bytes
    val = value.replace("\x00", "")
    # strip tags
    val = bleach.clean(val, tags=[], strip=True)
    # remove common SQL comment and statement separators
    val = re.sub(r"(--|;)", "", val)
    return val.strip()


def escape_text(value: Optional[str]) -> Optional[str]:
    """Trim a free-text field and neutralise any markup in it."""
    if value is None:
        return None
    return bleach.clean(value.replace("\x00", "").strip(), tags=[], strip=True)


def strip_markup(value: str) -> str:
    # Only values that carry a tag opener are rewritten
    if "<" not in value:
        return value
    return bleach.clean(value, tags=[], strip=True)


def clean_key(key: str) -> str:
    """Replace query-operator characters ('$' prefix, '.') in a field name."""
    if key.startswith("$"):
        key = "_" + key[1:]
    return key.replace(".", "_")


def scrub_payload(value: Any) -> Tuple[Any, bool]:
    """Recursively clean a decoded JSON payload.

    Returns the cleaned value and whether anything was rewritten.
    """
    if isinstance(value, dict):
        touched = False
        cleaned = {}
        for key, item in value.items():
            new_key = clean_key(key) if isinstance(key, str) else key
            new_item, item_touched = scrub_payload(item)
            touched = touched or item_touched or new_key != key
            cleaned[new_key] = new_item
        return cleaned, touched
    if isinstance(value, list):
        touched = False
        cleaned = []
        for item in value:
            new_item, item_touched = scrub_payload(item)
            touched = touched or item_touched
            cleaned.append(new_item)
        return cleaned, touched
    if isinstance(value, str):
        new_value = strip_markup(value)
        return new_value, new_value != value
    return value, False


def escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
