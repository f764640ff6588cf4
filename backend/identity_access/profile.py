"""
Display-name rules.

A user's display name moves from Unset to Set exactly once. Validation lives
here; the Set state is enforced by the directory (the update only touches rows
whose display name is still null), so two concurrent requests cannot both win.
"""
from __future__ import annotations

import re
from typing import Optional

from coursework.errors import ValidationError

DISPLAY_NAME_MIN = 3
DISPLAY_NAME_MAX = 32
_DISPLAY_NAME_RE = re.compile(r"^[A-Za-z0-9_]+$")


def validate_display_name(value: Optional[str]) -> str:
    """Return the trimmed name or raise ValidationError with a short reason code."""
    name = (value or "").strip()
    if not name:
        raise ValidationError("display_name_required")
    if len(name) < DISPLAY_NAME_MIN or len(name) > DISPLAY_NAME_MAX:
        raise ValidationError("display_name_length")
    if not _DISPLAY_NAME_RE.match(name):
        raise ValidationError("display_name_charset")
    return name


__all__ = ["DISPLAY_NAME_MAX", "DISPLAY_NAME_MIN", "validate_display_name"]
