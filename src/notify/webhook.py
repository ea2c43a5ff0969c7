"""Webhook delivery for warnings: a JSON POST to a central log route."""

import logging
from typing import Any

import httpx

from src.errors import TransportError

logger = logging.getLogger(__name__)


def build_payload(time: str, description: str, logs: list[str]) -> dict[str, Any]:
    """Build the warning body: ``{"time", "description", "logs"}``."""
    return {"time": time, "description": description, "logs": logs}


async def post_warning(
    client: httpx.AsyncClient,
    url: str,
    payload: dict[str, Any],
    headers: dict[str, str] | None = None,
) -> int:
    """POST ``payload`` to ``url``. Returns the status code.

    Raises:
        TransportError: On network failure, timeout or a non-2xx response.
    """
    try:
        response = await client.post(url, json=payload, headers=headers or {})
    except httpx.HTTPError as exc:
        msg = f"POST to {url} failed: {exc.__class__.__name__}: {exc}"
        raise TransportError(msg) from exc

    if not response.is_success:
        msg = f"POST to {url} failed with status {response.status_code}"
        raise TransportError(msg)
    return response.status_code
