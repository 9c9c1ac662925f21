import os
import logging
from typing import Optional

import httpx

from .pipeline.errors import CapabilityError
from .pipeline.models import ImageAsset, VideoOperation

logger = logging.getLogger(__name__)

# ── Config ───────────────────────────────────────────────────────────────────

GEMINI_API_KEY = os.environ.get("GEMINI_API_KEY") or os.environ.get("GOOGLE_API_KEY", "")
API_BASE = os.environ.get("GEMINI_API_BASE", "https://generativelanguage.googleapis.com/v1beta")
VEO_MODEL = os.environ.get("VEO_MODEL", "veo-2.0-generate-001")


def _require_key():
    if not GEMINI_API_KEY:
        raise CapabilityError("GEMINI_API_KEY not set")


def _to_operation(data: dict) -> VideoOperation:
    name = data.get("name")
    if not name:
        raise CapabilityError(f"Veo returned no operation name: {str(data)[:300]}")
    return VideoOperation(
        name=name,
        done=bool(data.get("done", False)),
        response=data.get("response") or {},
        error=data.get("error"),
    )


async def start_video(image: ImageAsset, prompt: str) -> VideoOperation:
    """
    Starts an image-to-video task on Veo.
    Returns the long-running operation handle.
    """
    _require_key()

    payload = {
        "instances": [{
            "prompt": prompt,
            "image": {
                "bytesBase64Encoded": image.to_base64(),
                "mimeType": image.mime_type,
            },
        }],
        "parameters": {"sampleCount": 1},
    }

    logger.info(f"Veo request: model={VEO_MODEL}, prompt={prompt[:60]}...")

    try:
        async with httpx.AsyncClient(timeout=60) as client:
            resp = await client.post(
                f"{API_BASE}/models/{VEO_MODEL}:predictLongRunning",
                params={"key": GEMINI_API_KEY},
                json=payload,
            )
            resp.raise_for_status()
    except httpx.HTTPError as e:
        raise CapabilityError(f"Veo start failed: {e}") from e

    operation = _to_operation(resp.json())
    logger.info(f"Veo operation started: {operation.name}")
    return operation


async def poll_video(operation: VideoOperation) -> VideoOperation:
    """Fetch the latest state of a Veo operation."""
    _require_key()

    try:
        async with httpx.AsyncClient(timeout=30) as client:
            resp = await client.get(
                f"{API_BASE}/{operation.name}",
                params={"key": GEMINI_API_KEY},
            )
            resp.raise_for_status()
    except httpx.HTTPError as e:
        raise CapabilityError(f"Veo status check failed: {e}") from e

    updated = _to_operation(resp.json())
    logger.info(f"Veo poll {updated.name}: done={updated.done}")
    return updated


def get_video_link(operation: VideoOperation) -> Optional[str]:
    """
    Extract the download URI from a finished operation.
    Returns None when the operation finished without a video.
    """
    if operation.error:
        message = operation.error.get("message") or str(operation.error)
        raise CapabilityError(f"Veo generation failed: {message}")

    samples = (
        operation.response.get("generateVideoResponse", {}).get("generatedSamples")
        or operation.response.get("generatedVideos")
        or []
    )
    if not samples or not isinstance(samples, list):
        return None
    return (samples[0].get("video") or {}).get("uri")


async def download_video(uri: str) -> bytes:
    """Download the generated video bytes."""
    _require_key()

    try:
        async with httpx.AsyncClient(timeout=120, follow_redirects=True) as client:
            resp = await client.get(uri, params={"key": GEMINI_API_KEY})
    except httpx.HTTPError as e:
        raise CapabilityError(f"Failed to download video: {e}") from e

    if not resp.is_success:
        raise CapabilityError(f"Failed to download video. Status: {resp.reason_phrase}")

    logger.info(f"Video downloaded: {len(resp.content)} bytes")
    return resp.content
