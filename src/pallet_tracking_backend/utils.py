"""
Utility functions for file system operations, string sanitization and data URIs.

This module provides helper functions for:
- Sanitizing user-provided strings for safe object keys
- Ensuring directory creation with proper error handling
- Validating image uploads by extension or content type
- Encoding and decoding base64 data URIs
"""

from __future__ import annotations

import base64
import binascii
import re
import time
from pathlib import Path
from typing import Iterable, Optional

# Pattern to match characters that are not safe for filesystem paths or object keys
# Allows: alphanumeric characters, dots, underscores, and hyphens
SANITIZE_PATTERN = re.compile(r"[^a-zA-Z0-9._-]+")

DATA_URI_PATTERN = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)?(?P<params>(;[^;,]+)*)?,(?P<data>.*)$", re.DOTALL)

PNG_MIME = "image/png"


def sanitize_label(label: str, fallback: str) -> str:
    """
    Generate a filesystem-safe label from user input.

    Args:
        label: The original label string to sanitize
        fallback: Default value to return if sanitization results in an empty string

    Returns:
        A lowercase, filesystem-safe label or the fallback value

    Example:
        >>> sanitize_label("My Photo!", "photo")
        "my-photo"
        >>> sanitize_label("@#$", "photo")
        "photo"
    """
    cleaned = SANITIZE_PATTERN.sub("-", label.strip())
    cleaned = cleaned.strip("-_.").lower()
    return cleaned or fallback


def ensure_directory(path: Path) -> Path:
    """
    Create a directory if it doesn't exist, including parent directories.

    Args:
        path: The directory path to create

    Returns:
        The same path object for chaining

    Raises:
        OSError: If directory creation fails due to permissions or other I/O errors
    """
    path.mkdir(parents=True, exist_ok=True)
    return path


def split_extension(filename: str) -> tuple[str, str]:
    """
    Split a filename into stem and extension components.

    Example:
        >>> split_extension("bol.JPG")
        ("bol", ".JPG")
    """
    path = Path(filename)
    return path.stem, path.suffix


def allowed_image_extensions() -> Iterable[str]:
    """Extensions accepted for Bill of Lading photos."""
    return [".jpg", ".jpeg", ".png", ".gif", ".webp", ".heic", ".heif"]


def is_image_upload(filename: str, content_type: Optional[str]) -> bool:
    """True when either the content type or the extension says image."""
    if (content_type or "").lower().startswith("image/"):
        return True
    return split_extension(filename)[1].lower() in allowed_image_extensions()


def now_millis() -> int:
    """Milliseconds since the epoch, used to keep object keys unique."""
    return int(time.time() * 1000)


def encode_data_uri(payload: bytes, mime: str) -> str:
    return f"data:{mime};base64,{base64.b64encode(payload).decode('ascii')}"


def encode_png_data_uri(png: bytes) -> str:
    return encode_data_uri(png, PNG_MIME)


def decode_data_uri(data_uri: str) -> tuple[str, bytes]:
    """
    Decode a base64 data URI.

    Returns:
        A tuple of (mime type, payload bytes)

    Raises:
        ValueError: If the string is not a base64 data URI
    """
    match = DATA_URI_PATTERN.match(data_uri.strip())
    if not match or ";base64" not in (match.group("params") or ""):
        raise ValueError("Expected a base64 data URI")
    try:
        payload = base64.b64decode(match.group("data"), validate=True)
    except binascii.Error as exc:
        raise ValueError(f"Invalid base64 payload: {exc}") from exc
    return match.group("mime") or "text/plain", payload
