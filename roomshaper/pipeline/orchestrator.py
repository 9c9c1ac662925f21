"""
WorkflowOrchestrator — the room editing session lifecycle.

Sequences every user-triggerable stage over an explicit RoomSession:
  Upload        → decode photo, fetch style suggestions (non-fatal)
  Plan          → parse tasks, then enhance the prompt (strictly sequential)
  Generate      → full-image edit of the current base
  Refine        → masked / global correction of the generated image
  Furniture     → stage references, enhance placement prompt, integrate
                  (portrait rooms go through the confirmation gate first)
  Video         → Veo long-running operation via VideoPoller
  Use as base   → promote the generated image and start over from it

Each stage sets its busy flag synchronously before its first await and
rejects re-entry with StageBusyError. Results arriving after the session
generation moved on (reset / new upload / new base) are dropped.
"""

import logging
from contextlib import contextmanager
from typing import Awaitable, Callable, Iterable, Optional

from .animate import ANIMATION_PROMPT, POLL_INTERVAL, VideoPoller
from .capabilities import GeminiCapabilities, RoomCapabilities
from .codec import decode_upload, downscale_reference, image_dimensions
from .errors import CapabilityError, ImageDecodeError, StageBusyError
from .models import (
    ImageAsset,
    PendingAction,
    PendingActionKind,
    Stage,
    VideoResult,
)
from .session import RoomSession
from .storage import store_artifact

logger = logging.getLogger(__name__)

PORTRAIT_WARNING = (
    "Your room photo is in portrait mode (taller than wide). For best results, "
    "we recommend using a landscape photo as the AI may crop your image. "
    "Do you want to continue anyway?"
)

ArtifactStore = Callable[[str, str, bytes], Awaitable[str]]


class WorkflowOrchestrator:
    """
    Owns every RoomSession and all mutations applied to it.

    Usage:
        orchestrator = WorkflowOrchestrator()
        session = orchestrator.create_session()

        await orchestrator.upload(session, photo_bytes, "image/jpeg")
        orchestrator.set_prompt(session, "paint the walls sage green")
        await orchestrator.plan_and_enhance(session)
        await orchestrator.generate(session)
    """

    def __init__(
        self,
        capabilities: Optional[RoomCapabilities] = None,
        store: ArtifactStore = store_artifact,
        poll_interval: float = POLL_INTERVAL,
    ):
        self._capabilities = capabilities or GeminiCapabilities()
        self._store = store
        self._poll_interval = poll_interval
        self._sessions: dict[str, RoomSession] = {}
        self._confirm_handlers = {
            PendingActionKind.INTEGRATE_FURNITURE: self._proceed_with_integration,
        }

    # ── Session registry ─────────────────────────────────────────────────

    def create_session(self) -> RoomSession:
        session = RoomSession()
        self._sessions[session.session_id] = session
        logger.info(f"[{session.session_id}] session created")
        return session

    def get_session(self, session_id: str) -> Optional[RoomSession]:
        return self._sessions.get(session_id)

    def drop_session(self, session_id: str):
        session = self._sessions.pop(session_id, None)
        if session:
            session.reset()
            logger.info(f"[{session_id}] session dropped")

    # ── Stage bookkeeping ────────────────────────────────────────────────

    @contextmanager
    def _busy(self, session: RoomSession, *stages: Stage):
        for stage in stages:
            if session.is_stage_busy(stage):
                logger.warning(f"[{session.session_id}] {stage.value} rejected: already running")
                raise StageBusyError(stage)

        token = object()
        for stage in stages:
            session.busy[stage] = token
        logger.info(f"[{session.session_id}] {'+'.join(s.value for s in stages)} started")
        try:
            yield
        finally:
            for stage in stages:
                if session.busy.get(stage) is token:
                    del session.busy[stage]

    @staticmethod
    def _stale(session: RoomSession, generation: int) -> bool:
        if session.generation != generation:
            logger.info(
                f"[{session.session_id}] dropping late result from generation "
                f"{generation} (now {session.generation})"
            )
            return True
        return False

    @staticmethod
    def _invalid(session: RoomSession, message: str) -> bool:
        logger.info(f"[{session.session_id}] validation: {message}")
        session.error = message
        return False

    @staticmethod
    def _fail(session: RoomSession, prefix: str, error: Exception) -> bool:
        logger.error(f"[{session.session_id}] {prefix}: {error}", exc_info=True)
        session.error = f"{prefix}: {error}"
        return False

    # ── Free-text inputs ─────────────────────────────────────────────────

    def set_prompt(self, session: RoomSession, prompt: str):
        session.prompt = prompt

    def set_refinement_prompt(self, session: RoomSession, prompt: str):
        session.refinement_prompt = prompt

    def set_furniture_prompt(self, session: RoomSession, prompt: str):
        session.furniture_prompt = prompt

    # ── Upload & suggestions ─────────────────────────────────────────────

    async def upload(self, session: RoomSession, data: bytes, content_type: Optional[str] = None) -> bool:
        """
        Replace the room photo and fetch style suggestions for it.

        Returns True once the photo is in place, whether or not suggestions
        could be fetched.
        """
        if session.is_stage_busy(Stage.SUGGEST):
            raise StageBusyError(Stage.SUGGEST)

        with self._busy(session, Stage.UPLOAD):
            session.error = None
            session.generated_image = None
            session.video = None
            session.video_progress = ""
            session.style_suggestions = []
            session.prompt = ""
            session.planned_tasks = []
            session.clear_refinement()

            try:
                image = decode_upload(data, content_type)
            except ImageDecodeError as e:
                logger.warning(f"[{session.session_id}] upload decode failed: {e}")
                session.error = "Failed to process image file. Please try another one."
                return False

            session.original_image = image
            session.current_image = image
            generation = session.advance_generation()

            await self._fetch_suggestions(session, Stage.SUGGEST, generation)
            return not self._stale(session, generation)

    async def _fetch_suggestions(self, session: RoomSession, stage: Stage, generation: int) -> bool:
        image = session.current_image
        with self._busy(session, stage):
            try:
                suggestions = await self._capabilities.suggest_styles(image)
            except Exception as e:
                logger.warning(f"[{session.session_id}] Could not fetch style suggestions: {e}")
                if not self._stale(session, generation):
                    session.style_suggestions = []
                return False

            if self._stale(session, generation):
                return False
            session.style_suggestions = list(suggestions)
            return True

    async def refresh_suggestions(self, session: RoomSession) -> bool:
        if not session.current_image:
            return False
        if session.is_stage_busy(Stage.REFRESH_SUGGESTIONS):
            raise StageBusyError(Stage.REFRESH_SUGGESTIONS)
        session.error = None
        return await self._fetch_suggestions(session, Stage.REFRESH_SUGGESTIONS, session.generation)

    def apply_suggestion(self, session: RoomSession, prompt_text: str):
        """A suggestion is a fresh start: it replaces the prompt and drops the plan."""
        session.prompt = prompt_text
        session.planned_tasks = []

    # ── Planning ─────────────────────────────────────────────────────────

    async def plan_and_enhance(self, session: RoomSession) -> bool:
        prompt = session.prompt
        if not prompt.strip():
            return self._invalid(session, "Please enter a description of your desired changes.")

        with self._busy(session, Stage.PARSE_TASKS, Stage.ENHANCE_PROMPT):
            generation = session.generation
            session.error = None
            session.planned_tasks = []

            try:
                tasks = await self._capabilities.parse_tasks(prompt)
                if self._stale(session, generation):
                    return False
                if not tasks:
                    raise CapabilityError(
                        "I couldn't identify specific tasks from your request. "
                        "Please try rephrasing it."
                    )
                session.planned_tasks = list(tasks)

                enhanced = await self._capabilities.enhance_prompt(prompt)
                if self._stale(session, generation):
                    return False
                if not enhanced or not enhanced.strip():
                    raise CapabilityError("The AI returned an empty response.")
            except Exception as e:
                if self._stale(session, generation):
                    return False
                session.planned_tasks = []
                return self._fail(session, "Failed to process your request", e)

            session.prompt = enhanced
            return True

    # ── Generation & refinement ──────────────────────────────────────────

    async def generate(self, session: RoomSession) -> bool:
        if not session.current_image or not session.prompt.strip():
            return self._invalid(session, "Please provide an image and a description of the changes.")

        with self._busy(session, Stage.GENERATE):
            generation = session.generation
            image, prompt = session.current_image, session.prompt
            session.error = None
            session.video = None
            session.video_progress = ""
            session.clear_refinement()

            try:
                result = await self._capabilities.edit_image(image, prompt)
            except Exception as e:
                if self._stale(session, generation):
                    return False
                return self._fail(session, "Generation failed", e)

            if self._stale(session, generation):
                return False
            session.generated_image = result
            return True

    def toggle_refinement_mode(self, session: RoomSession) -> bool:
        """Flip refinement mode. Leaving it drops the drawn selection."""
        if session.refinement_mode:
            session.clear_refinement()
        else:
            session.refinement_mode = True
            session.refinement_prompt = ""
        session.error = None
        return session.refinement_mode

    async def refine(self, session: RoomSession) -> bool:
        if not session.generated_image or not session.refinement_prompt.strip():
            return self._invalid(session, "Please describe the refinement you want to make.")

        with self._busy(session, Stage.REFINE):
            generation = session.generation
            # The latest generated image is the refinement source, never the base
            image = session.generated_image
            prompt, mask = session.refinement_prompt, session.refinement_mask
            session.error = None

            try:
                result = await self._capabilities.refine_image(image, prompt, mask)
            except Exception as e:
                if self._stale(session, generation):
                    return False
                return self._fail(session, "Refinement failed", e)

            if self._stale(session, generation):
                return False
            session.generated_image = result
            session.refinement_prompt = ""
            session.refinement_mask = None
            session.mask_canvas.clear()
            return True

    # ── Selection mask ───────────────────────────────────────────────────

    @staticmethod
    def _require_refinement_mode(session: RoomSession):
        if not session.refinement_mode:
            raise ValueError("Turn on refinement mode before selecting an area.")

    def resize_mask_canvas(self, session: RoomSession, width: int, height: int):
        session.mask_canvas.resize(width, height)

    def begin_mask_stroke(self, session: RoomSession, x: float, y: float):
        self._require_refinement_mode(session)
        session.mask_canvas.begin_stroke(x, y)

    def extend_mask_stroke(self, session: RoomSession, x: float, y: float):
        session.mask_canvas.extend_stroke(x, y)

    def end_mask_stroke(self, session: RoomSession) -> Optional[ImageAsset]:
        if session.mask_canvas.is_drawing:
            session.refinement_mask = session.mask_canvas.end_stroke()
        return session.refinement_mask

    def draw_mask_stroke(self, session: RoomSession, points: Iterable[tuple[float, float]]) -> Optional[ImageAsset]:
        self._require_refinement_mode(session)
        session.refinement_mask = session.mask_canvas.draw_stroke(points)
        return session.refinement_mask

    def clear_mask(self, session: RoomSession):
        session.mask_canvas.clear()
        session.refinement_mask = None

    # ── Furniture ────────────────────────────────────────────────────────

    def upload_furniture(self, session: RoomSession, files: Iterable[tuple[bytes, Optional[str]]]) -> bool:
        """Stage reference images. One bad file rejects the whole batch."""
        session.error = None
        try:
            decoded = [decode_upload(data, content_type) for data, content_type in files]
        except ImageDecodeError as e:
            logger.warning(f"[{session.session_id}] furniture decode failed: {e}")
            session.error = "Failed to process furniture image(s). Please try another file."
            return False

        session.furniture_images = session.furniture_images + decoded
        logger.info(
            f"[{session.session_id}] staged {len(decoded)} furniture image(s), "
            f"{len(session.furniture_images)} total"
        )
        return True

    def remove_furniture(self, session: RoomSession, index: int) -> bool:
        if not 0 <= index < len(session.furniture_images):
            logger.warning(f"[{session.session_id}] no furniture image at index {index}")
            return False
        session.furniture_images = [
            img for i, img in enumerate(session.furniture_images) if i != index
        ]
        return True

    def clear_furniture(self, session: RoomSession):
        session.furniture_images = []
        session.furniture_prompt = ""

    async def enhance_furniture_prompt(self, session: RoomSession) -> bool:
        prompt = session.furniture_prompt
        if not prompt.strip():
            return self._invalid(session, "Please describe how you want to integrate the furniture first.")

        with self._busy(session, Stage.ENHANCE_FURNITURE_PROMPT):
            generation = session.generation
            session.error = None

            try:
                enhanced = await self._capabilities.enhance_furniture_prompt(prompt)
                if not enhanced or not enhanced.strip():
                    raise CapabilityError("The AI returned an empty response.")
            except Exception as e:
                if self._stale(session, generation):
                    return False
                return self._fail(session, "Failed to enhance placement prompt", e)

            if self._stale(session, generation):
                return False
            session.furniture_prompt = enhanced
            return True

    def _integration_problem(self, session: RoomSession) -> Optional[str]:
        if not session.current_image or not session.furniture_images:
            return "Please provide a room image and at least one furniture/decor image."
        if not session.furniture_prompt.strip():
            return (
                "Please describe how you want to integrate the furniture "
                '(e.g., "Place the chair in the corner by the window").'
            )
        return None

    async def integrate_furniture(self, session: RoomSession) -> bool:
        """
        Composite the staged furniture into the current room photo.

        Portrait rooms are parked behind a confirmation; the integration
        call only happens once confirm() is invoked. Returns False in that case.
        """
        problem = self._integration_problem(session)
        if problem:
            return self._invalid(session, problem)
        if session.is_stage_busy(Stage.INTEGRATE_FURNITURE):
            raise StageBusyError(Stage.INTEGRATE_FURNITURE)
        if session.confirmation.is_pending:
            return self._invalid(session, "Please answer the pending confirmation first.")

        try:
            width, height = image_dimensions(session.current_image)
        except ImageDecodeError as e:
            return self._fail(session, "Furniture integration failed", e)

        if width < height:
            session.confirmation.request(PendingAction(
                kind=PendingActionKind.INTEGRATE_FURNITURE,
                message=PORTRAIT_WARNING,
                args={"width": width, "height": height},
            ))
            return False

        return await self._proceed_with_integration(session)

    async def _proceed_with_integration(self, session: RoomSession, action: Optional[PendingAction] = None) -> bool:
        # Staged items may have changed while the confirmation was open
        problem = self._integration_problem(session)
        if problem:
            return self._invalid(session, problem)

        with self._busy(session, Stage.INTEGRATE_FURNITURE):
            generation = session.generation
            room = session.current_image
            staged = list(session.furniture_images)
            prompt = session.furniture_prompt
            session.error = None
            session.video = None
            session.video_progress = ""
            session.clear_refinement()

            try:
                references = [downscale_reference(img) for img in staged]
                result = await self._capabilities.integrate_furniture(room, references, prompt)
            except Exception as e:
                if self._stale(session, generation):
                    return False
                return self._fail(session, "Furniture integration failed", e)

            if self._stale(session, generation):
                return False
            session.generated_image = result
            consumed = {id(img) for img in staged}
            session.furniture_images = [
                img for img in session.furniture_images if id(img) not in consumed
            ]
            session.furniture_prompt = ""
            return True

    # ── Confirmation ─────────────────────────────────────────────────────

    async def confirm(self, session: RoomSession) -> bool:
        action = session.confirmation.confirm()
        if action is None:
            return False
        handler = self._confirm_handlers[action.kind]
        return await handler(session, action)

    def cancel_confirmation(self, session: RoomSession):
        session.confirmation.cancel()

    # ── Video ────────────────────────────────────────────────────────────

    async def generate_video(self, session: RoomSession) -> bool:
        if not session.generated_image:
            return self._invalid(session, "Cannot generate video without a generated image.")

        with self._busy(session, Stage.GENERATE_VIDEO):
            generation = session.generation
            image = session.generated_image
            session.video = None
            session.video_progress = ""
            session.error = None

            def on_progress(message: str):
                if session.generation == generation:
                    session.video_progress = message

            async def publish(data: bytes) -> str:
                return await self._store(session.session_id, "room_video.mp4", data)

            poller = VideoPoller(
                self._capabilities,
                publish=publish,
                on_progress=on_progress,
                poll_interval=self._poll_interval,
            )
            try:
                url = await poller.run(image, ANIMATION_PROMPT)
            except Exception as e:
                if self._stale(session, generation):
                    return False
                return self._fail(session, "Video generation failed", e)

            if self._stale(session, generation):
                return False
            session.video = VideoResult(url=url)
            return True

    # ── Iteration ────────────────────────────────────────────────────────

    async def use_generated_as_base(self, session: RoomSession) -> bool:
        """Promote the generated image to the new editing base."""
        if not session.generated_image:
            return False
        if session.is_stage_busy(Stage.SUGGEST):
            raise StageBusyError(Stage.SUGGEST)

        session.error = None
        session.current_image = session.generated_image
        session.generated_image = None
        session.video = None
        session.video_progress = ""
        session.prompt = ""
        session.planned_tasks = []
        session.style_suggestions = []
        session.clear_refinement()
        generation = session.advance_generation()

        await self._fetch_suggestions(session, Stage.SUGGEST, generation)
        return True

    def reset(self, session: RoomSession):
        """Start over. In-flight calls keep running; their results are dropped."""
        session.reset()
