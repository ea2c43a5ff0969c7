"""Upload a stored backup file back to its source's restore route."""

import logging
import os

import httpx

from src.errors import TransportError

logger = logging.getLogger(__name__)


async def upload_backup(
    client: httpx.AsyncClient,
    url: str,
    path: str,
    headers: dict[str, str] | None = None,
) -> int:
    """POST ``path`` as multipart form data (field ``file``). Returns the status code.

    Raises:
        TransportError: On network failure, timeout or a non-2xx response.
        OSError: If the file cannot be read.
    """
    with open(path, "rb") as f:
        files = {"file": (os.path.basename(path), f, "application/octet-stream")}
        try:
            response = await client.post(url, files=files, headers=headers or {})
        except httpx.HTTPError as exc:
            msg = f"Restore upload to {url} failed: {exc.__class__.__name__}: {exc}"
            raise TransportError(msg) from exc

    if not response.is_success:
        msg = f"Restore upload to {url} failed with status {response.status_code}"
        raise TransportError(msg)
    logger.info("Uploaded %s to %s", path, url)
    return response.status_code
