"""
Preset regex validators for text fields with a declared format.
"""

import re
from typing import Optional, Tuple


PRESET_PATTERNS = {
    "email": r"^[a-zA-Z0-9._%+'-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$",
    "phone": r"^\+?[\d\s\-\.\(\)]{7,20}(\s*(x|ext\.?|extension)\s*\d+)?$",
    "url": r"^https?://[^\s/$.?#].[^\s]*$",
}


PRESET_DESCRIPTIONS = {
    "email": "email address",
    "phone": "phone number",
    "url": "HTTP/HTTPS URL",
}


def get_preset_pattern(preset_name: str) -> Optional[str]:
    return PRESET_PATTERNS.get(preset_name)


def get_preset_description(preset_name: str) -> Optional[str]:
    return PRESET_DESCRIPTIONS.get(preset_name)


def validate_with_preset(
    value: str,
    preset_name: str,
    allow_null: bool = True
) -> Tuple[bool, Optional[str]]:
    """
    Validate a value against a preset pattern.

    Args:
        value: Value to validate
        preset_name: Name of the preset validator
        allow_null: Whether to allow null/empty values

    Returns:
        Tuple of (is_valid, error_message)
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        if allow_null:
            return True, None
        return False, "Value is required"

    pattern = get_preset_pattern(preset_name)
    if pattern is None:
        return False, f"Unknown preset validator: {preset_name}"

    str_val = str(value).strip()
    if not re.match(pattern, str_val, re.IGNORECASE):
        description = get_preset_description(preset_name)
        return False, f"'{str_val}' is not a valid {description or preset_name}"
    return True, None
