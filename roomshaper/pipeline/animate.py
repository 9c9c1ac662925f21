"""
Cinematic room video — Veo long-running operation driver.

Drives the start → poll × N → finalize protocol:
  - start:    submit the generated room image with the cinematic prompt
  - poll:     wait POLL_INTERVAL, refresh the operation token, until done
  - finalize: fetch the download link, download the bytes, publish a local URL

Polling has no attempt cap and no timeout.
"""

import os
import asyncio
import logging
from typing import Awaitable, Callable, Optional

from .capabilities import RoomCapabilities
from .errors import CapabilityError
from .models import ImageAsset, VideoOperation, VideoState

logger = logging.getLogger(__name__)

# ── Config ───────────────────────────────────────────────────────────────────

POLL_INTERVAL = float(os.getenv("VIDEO_POLL_INTERVAL", "10"))  # seconds

ANIMATION_PROMPT = (
    "A slow, cinematic panning shot of this beautifully designed room, "
    "highlighting the new features."
)

ProgressCallback = Callable[[str], None]
Publisher = Callable[[bytes], Awaitable[str]]


class VideoPoller:
    """
    One-shot driver for a single video synthesis.

    Usage:
        poller = VideoPoller(capabilities, publish=store, on_progress=print)
        url = await poller.run(image, ANIMATION_PROMPT)

    A failed run is not resumable; build a new poller and call run() again.
    """

    def __init__(
        self,
        capabilities: RoomCapabilities,
        publish: Publisher,
        on_progress: Optional[ProgressCallback] = None,
        poll_interval: float = POLL_INTERVAL,
    ):
        self._capabilities = capabilities
        self._publish = publish
        self._on_progress = on_progress
        self.poll_interval = poll_interval
        self.state = VideoState.IDLE
        self.attempts = 0
        self.operation: Optional[VideoOperation] = None

    def _progress(self, message: str):
        logger.info(f"Video [{self.state.value}] {message}")
        if self._on_progress:
            self._on_progress(message)

    async def run(self, image: ImageAsset, prompt: str = ANIMATION_PROMPT) -> str:
        """Run the whole protocol and return a playable URL."""
        if self.state != VideoState.IDLE:
            raise RuntimeError(f"VideoPoller already used (state={self.state.value})")

        try:
            # ── Start ────────────────────────────────────────────────────
            self.state = VideoState.STARTING
            self._progress("Initiating video generation with the Veo model...")
            self.operation = await self._capabilities.start_video(image, prompt)

            # ── Poll ─────────────────────────────────────────────────────
            self.state = VideoState.POLLING
            self._progress("The AI is now processing your request. Polling for updates...")
            while not self.operation.done:
                self.attempts += 1
                await asyncio.sleep(self.poll_interval)
                self._progress(f"Checking status (attempt {self.attempts})...")
                self.operation = await self._capabilities.poll_video(self.operation)

            # ── Finalize ─────────────────────────────────────────────────
            self.state = VideoState.FINALIZING
            self._progress("Video generation complete! Retrieving the download link...")
            link = await self._capabilities.get_video_link(self.operation)
            if not link:
                raise CapabilityError(
                    "Video generation succeeded, but no download link was provided."
                )

            self._progress("Downloading the video file...")
            video_bytes = await self._capabilities.download_video(link)
            url = await self._publish(video_bytes)

            self.state = VideoState.SUCCEEDED
            self._progress("Download complete. Video is ready for playback.")
            return url

        except Exception:
            self.state = VideoState.FAILED
            self.operation = None
            logger.error(f"Video generation failed after {self.attempts} poll(s)", exc_info=True)
            raise
