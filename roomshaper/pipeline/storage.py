"""
Local media storage for pipeline artifacts.

Downloaded videos are written under:
  {MEDIA_DIR}/{session_id}/{uuid}_{filename}

and served by the app at MEDIA_BASE_URL, which makes them addressable for
playback for as long as the process lives.
"""

import os
import asyncio
import logging
from pathlib import Path
from uuid import uuid4

logger = logging.getLogger(__name__)

# ── Config ───────────────────────────────────────────────────────────────────

MEDIA_DIR = os.getenv("MEDIA_DIR", "media")
MEDIA_BASE_URL = os.getenv("MEDIA_BASE_URL", "/media")


# ── Helpers ──────────────────────────────────────────────────────────────────

def media_root() -> Path:
    return Path(MEDIA_DIR)


def artifact_key(session_id: str, filename: str) -> str:
    """Relative key for a session artifact; unique per call."""
    return f"{session_id}/{uuid4().hex}_{filename}"


def media_url(key: str) -> str:
    """Public URL for a stored artifact."""
    return f"{MEDIA_BASE_URL.rstrip('/')}/{key}"


def _write(path: Path, data: bytes):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)


async def store_artifact(session_id: str, filename: str, data: bytes) -> str:
    """Persist `data` under the media directory and return its URL."""
    key = artifact_key(session_id, filename)
    path = media_root() / key
    try:
        await asyncio.to_thread(_write, path, data)
    except OSError as e:
        logger.error(f"Media write failed for key={key}: {e}")
        raise

    url = media_url(key)
    logger.info(f"Stored artifact: {url} ({len(data)} bytes)")
    return url
