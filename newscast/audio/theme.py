import logging
from pathlib import Path
from typing import Optional

import requests

from newscast.storage import BlobStore


logger = logging.getLogger("audio")

THEME_DOWNLOAD_TIMEOUT = 120


def load_theme_audio(location: Optional[str], blob_store: Optional[BlobStore] = None) -> bytes:
    """
    Load the intro theme from a URL, a blob key or a local file.

    Args:
        location: http(s) URL, blob key, or filesystem path
        blob_store: Store searched for non-URL locations before the filesystem

    Returns:
        Theme audio bytes

    Raises:
        FileNotFoundError: If the theme cannot be found
        requests.RequestException: If the download fails
    """
    if not location:
        raise FileNotFoundError("No intro music configured")

    if location.startswith(("http://", "https://")):
        logger.info(f"Downloading intro theme {location}")
        response = requests.get(location, timeout=THEME_DOWNLOAD_TIMEOUT)
        response.raise_for_status()
        return response.content

    if blob_store is not None:
        data = blob_store.get(location)
        if data:
            return data

    path = Path(location)
    if path.is_file():
        return path.read_bytes()
    raise FileNotFoundError(f"Intro theme not found: {location}")
