"""Filename negotiation and collision-free versioning for stored backups."""

import os
import re
from collections.abc import Container, Mapping
from pathlib import PurePosixPath
from urllib.parse import unquote

import httpx

from src.errors import VersioningExhausted

FALLBACK_FILENAME = "downloaded_file"
MAX_VERSION_ATTEMPTS = 1000
MAX_FILENAME_LENGTH = 255

_UNSAFE_CHARS = re.compile(r'[\x00-\x1f\x7f<>:"/\\|?*]')


def filename_from_content_disposition(header: str | None) -> str | None:
    """Extract the filename from a ``Content-Disposition`` header.

    ``filename*`` (RFC 5987, ``charset''percent-encoded``) wins over ``filename``.
    """
    if not header:
        return None

    plain: str | None = None
    for part in header.split(";"):
        key, sep, value = part.strip().partition("=")
        if not sep:
            continue
        key = key.strip().lower()
        value = value.strip()
        if key == "filename*":
            _, _, encoded = value.partition("''")
            decoded = unquote(encoded or value).strip('"')
            if decoded:
                return decoded
        elif key == "filename":
            plain = value.strip('"') or None
    return plain


def filename_from_url(url: str) -> str | None:
    """Last non-empty path segment of ``url``, or None."""
    segment = PurePosixPath(httpx.URL(url).path).name
    return unquote(segment) or None


def sanitize_filename(name: str) -> str:
    """Reduce ``name`` to a bare, safe file name. May return an empty string."""
    name = name.replace("\\", "/").rsplit("/", 1)[-1]
    name = _UNSAFE_CHARS.sub("", name).strip().strip(".")
    if name in ("", ".", ".."):
        return ""
    if len(name) > MAX_FILENAME_LENGTH:
        stem, suffix = os.path.splitext(name)
        name = stem[: MAX_FILENAME_LENGTH - len(suffix)] + suffix
    return name


def candidate_filename(headers: Mapping[str, str], url: str) -> str:
    """Pick a name: Content-Disposition, else the URL's last segment, else a fallback."""
    for raw in (
        filename_from_content_disposition(headers.get("content-disposition")),
        filename_from_url(url),
    ):
        if raw:
            name = sanitize_filename(raw)
            if name:
                return name
    return FALLBACK_FILENAME


def versioned_filename(directory: str, filename: str, reserved: Container[str] = ()) -> str:
    """Return ``filename`` or, if taken, the first free ``stem_<i>.ext``.

    Raises:
        VersioningExhausted: If no free name is found within MAX_VERSION_ATTEMPTS.
    """

    def taken(name: str) -> bool:
        return name in reserved or os.path.lexists(os.path.join(directory, name))

    if not taken(filename):
        return filename

    path = PurePosixPath(filename)
    stem, suffix = path.stem, path.suffix
    for i in range(MAX_VERSION_ATTEMPTS):
        name = f"{stem}_{i}{suffix}"
        if not taken(name):
            return name

    msg = f"Could not find a unique filename for {filename!r} after {MAX_VERSION_ATTEMPTS} attempts"
    raise VersioningExhausted(msg)
