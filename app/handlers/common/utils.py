"""
Shared handler utilities: display names and command arguments.
"""
import re
from typing import Optional

MAX_DISPLAY_NAME_LENGTH = 64

# Control, zero-width and bidi-override characters
_DANGEROUS_UNICODE_RE = re.compile(
    r"[\u0000-\u001f"
    r"\u007f-\u009f"
    r"\u200b-\u200f"
    r"\u2028-\u202f"
    r"\u2060-\u206f"
    r"\ufeff"
    r"\ufff0-\uffff"
    r"\U000e0000-\U000e007f"
    r"]"
)


def sanitize_display_name(name: Optional[str]) -> str:
    """Strip dangerous characters and cap the length; "" if nothing is left."""
    if not name:
        return ""
    name = _DANGEROUS_UNICODE_RE.sub("", name).strip()
    if len(name) > MAX_DISPLAY_NAME_LENGTH:
        name = name[:MAX_DISPLAY_NAME_LENGTH].rstrip()
    return name


def resolve_display_name(user_obj) -> str:
    """
    Display name of a Telegram user.

    Priority: full name, then @username, then "" (callers fall back to
    "User <last 4 digits>").
    """
    if not user_obj:
        return ""
    full_name = sanitize_display_name(getattr(user_obj, "full_name", None))
    if full_name:
        return full_name
    username = sanitize_display_name(getattr(user_obj, "username", None))
    return f"@{username}" if username else ""


def command_argument(text: Optional[str]) -> str:
    """Text after the command: "/approve 123" → "123"."""
    parts = (text or "").split(maxsplit=1)
    return parts[1].strip() if len(parts) > 1 else ""
