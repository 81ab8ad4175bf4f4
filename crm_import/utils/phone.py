"""
Phone number standardization for imported contact records.
"""

import re
from typing import Any, Optional
import logging

logger = logging.getLogger(__name__)

_EXTENSION = re.compile(r"(?:x|ext\.?|extension)[\s.]?(\d+)\s*$", re.IGNORECASE)


def standardize_phone(
    value: Any,
    *,
    output_format: str = "national",
    min_digits: int = 7,
    max_digits: int = 15,
) -> Optional[str]:
    """
    Standardize a phone number.

    Handles inputs like ``(415) 555-1234``, ``415.555.1234``, ``+1 415 555 1234``
    and ``555-1234 x123``. Extensions are kept as `` x123``.

    Output formats:
        - national: (415) 555-1234, international numbers as +44 2079461234
        - e164: +14155551234
        - digits_only: 4155551234

    Returns:
        The standardized string, or None when the value has too few or too
        many digits to be a phone number.
    """
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None

    extension = None
    ext_match = _EXTENSION.search(text)
    if ext_match:
        extension = ext_match.group(1)
        text = text[:ext_match.start()].strip()

    digits = re.sub(r"\D", "", text)
    if len(digits) < min_digits or len(digits) > max_digits:
        logger.debug("Phone number '%s' has %d digits, expected %d-%d", value, len(digits), min_digits, max_digits)
        return None

    is_nanp = len(digits) == 10 or (len(digits) == 11 and digits.startswith("1"))
    local = digits[-10:] if is_nanp else digits

    if output_format == "digits_only":
        result = digits
    elif output_format == "e164":
        if is_nanp:
            result = f"+1{local}"
        elif text.startswith("+"):
            result = f"+{digits}"
        else:
            result = digits
    else:
        if is_nanp:
            result = f"({local[:3]}) {local[3:6]}-{local[6:]}"
        elif len(digits) == 7:
            result = f"{digits[:3]}-{digits[3:]}"
        elif text.startswith("+"):
            result = f"+{digits}"
        else:
            result = digits

    if extension:
        result = f"{result} x{extension}"
    return result
