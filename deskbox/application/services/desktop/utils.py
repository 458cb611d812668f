"""Helpers shared by the desktop components."""

import re
import secrets
import string

_RANDOM_ALPHABET = string.ascii_letters + string.digits

# X11 window ids as printed by xdotool
WINDOW_ID_PATTERN = re.compile(r"^\d+$")


def generate_random_string(length: int = 16) -> str:
    """Generate a random alphanumeric string (passwords, temp file names)."""
    return "".join(secrets.choice(_RANDOM_ALPHABET) for _ in range(length))


def break_into_chunks(text: str, size: int) -> list[str]:
    """Split text into consecutive chunks of at most ``size`` characters."""
    if size < 1:
        raise ValueError(f"Chunk size must be positive, got {size}")
    return [text[i : i + size] for i in range(0, len(text), size)]


def check_window_id(window_id: str) -> str:
    """Return ``window_id`` unchanged, or raise ValueError if it is not numeric."""
    if not isinstance(window_id, str) or not WINDOW_ID_PATTERN.fullmatch(window_id):
        raise ValueError(f"Invalid window id: {window_id}")
    return window_id
