"""
RoomSession — the in-memory aggregate one user edits through.

Only the orchestrator mutates a session. Busy flags are kept as a map of
Stage → owner token so that a stage finishing late never clears a flag set by
a newer run of the same stage.
"""

import logging
from typing import Optional
from uuid import uuid4

from .confirmation import ConfirmationGate
from .mask import MaskCompositor
from .models import (
    ImageAsset,
    ParsedTask,
    SessionResponse,
    Stage,
    StyleSuggestion,
    VideoResult,
)

logger = logging.getLogger(__name__)

PLANNING_STAGES = (Stage.PARSE_TASKS, Stage.ENHANCE_PROMPT)
SUGGESTING_STAGES = (Stage.SUGGEST, Stage.REFRESH_SUGGESTIONS)


class RoomSession:
    def __init__(self, session_id: Optional[str] = None):
        self.session_id = session_id or str(uuid4())
        self.generation = 0
        self.busy: dict[Stage, object] = {}
        self.confirmation = ConfirmationGate()
        self.mask_canvas = MaskCompositor()
        self._clear_state()

    def _clear_state(self):
        self.original_image: Optional[ImageAsset] = None
        self.current_image: Optional[ImageAsset] = None
        self.generated_image: Optional[ImageAsset] = None
        self.prompt = ""
        self.planned_tasks: list[ParsedTask] = []
        self.style_suggestions: list[StyleSuggestion] = []
        self.refinement_mode = False
        self.refinement_prompt = ""
        self.refinement_mask: Optional[ImageAsset] = None
        self.furniture_images: list[ImageAsset] = []
        self.furniture_prompt = ""
        self.video: Optional[VideoResult] = None
        self.video_progress = ""
        self.error: Optional[str] = None

    def advance_generation(self) -> int:
        """
        Move the session onto a new base image. Results of in-flight stages
        and any pending confirmation belong to the old base and are dropped.
        """
        self.generation += 1
        self.confirmation.cancel()
        return self.generation

    def reset(self):
        """Back to a blank session. In-flight stages become stale."""
        self.advance_generation()
        self.busy = {}
        self.mask_canvas.clear()
        self._clear_state()
        logger.info(f"[{self.session_id}] session reset (generation {self.generation})")

    def clear_refinement(self):
        """Leave refinement mode and drop any drawn selection."""
        self.refinement_mode = False
        self.refinement_prompt = ""
        self.refinement_mask = None
        self.mask_canvas.clear()

    # ── Busy flags ───────────────────────────────────────────────────────

    def is_stage_busy(self, stage: Stage) -> bool:
        return stage in self.busy

    @property
    def is_planning(self) -> bool:
        return any(stage in self.busy for stage in PLANNING_STAGES)

    @property
    def is_suggesting(self) -> bool:
        return any(stage in self.busy for stage in SUGGESTING_STAGES)

    @property
    def is_busy(self) -> bool:
        return bool(self.busy)

    # ── Presentation ─────────────────────────────────────────────────────

    def snapshot(self) -> SessionResponse:
        def url(image: Optional[ImageAsset]) -> Optional[str]:
            return image.to_data_url() if image else None

        return SessionResponse(
            session_id=self.session_id,
            original_image=url(self.original_image),
            current_image=url(self.current_image),
            generated_image=url(self.generated_image),
            prompt=self.prompt,
            planned_tasks=list(self.planned_tasks),
            style_suggestions=list(self.style_suggestions),
            refinement_mode=self.refinement_mode,
            refinement_prompt=self.refinement_prompt,
            refinement_mask=url(self.refinement_mask),
            furniture_images=[img.to_data_url() for img in self.furniture_images],
            furniture_prompt=self.furniture_prompt,
            video_url=self.video.url if self.video else None,
            video_progress=self.video_progress,
            pending_confirmation=self.confirmation.pending,
            busy_stages=sorted(self.busy, key=lambda s: s.value),
            is_busy=self.is_busy,
            is_planning=self.is_planning,
            is_suggesting=self.is_suggesting,
            error=self.error,
        )
