"""
FastAPI routes for room editing sessions.

Session Endpoints:
  POST   /sessions                                — Create a session
  GET    /sessions/{id}                           — Get session state (poll this)
  DELETE /sessions/{id}                           — Drop a session
  POST   /sessions/{id}/reset                     — Start over

  POST   /sessions/{id}/upload                    — Upload the room photo
  PUT    /sessions/{id}/prompt                    — Edit the prompt
  POST   /sessions/{id}/plan                      — Parse tasks + enhance prompt
  POST   /sessions/{id}/generate                  — Full-image edit
  POST   /sessions/{id}/use-generated             — Promote result to new base
  POST   /sessions/{id}/suggestions/apply         — Use a style suggestion
  POST   /sessions/{id}/suggestions/refresh       — Re-fetch suggestions

  POST   /sessions/{id}/refinement/toggle         — Enter / leave refinement mode
  PUT    /sessions/{id}/refinement/prompt         — Edit the refinement prompt
  PUT    /sessions/{id}/refinement/canvas         — Size the selection canvas
  POST   /sessions/{id}/refinement/strokes        — Add a selection stroke
  DELETE /sessions/{id}/refinement/mask           — Clear the selection
  POST   /sessions/{id}/refine                    — Apply the refinement

  POST   /sessions/{id}/furniture                 — Stage reference images
  DELETE /sessions/{id}/furniture/{index}         — Remove one staged image
  DELETE /sessions/{id}/furniture                 — Clear staged images + prompt
  PUT    /sessions/{id}/furniture/prompt          — Edit the placement prompt
  POST   /sessions/{id}/furniture/enhance         — Enhance the placement prompt
  POST   /sessions/{id}/furniture/integrate       — Integrate (may need confirmation)
  POST   /sessions/{id}/confirmation/confirm      — Accept the pending action
  POST   /sessions/{id}/confirmation/cancel       — Reject the pending action

  POST   /sessions/{id}/video                     — Start video generation (background)
"""

import asyncio
import logging

from fastapi import APIRouter, Depends, HTTPException

from .codec import split_data_url
from .errors import ImageDecodeError, StageBusyError
from .models import (
    FurnitureUploadRequest,
    ImageUploadRequest,
    MaskCanvasRequest,
    MaskStrokeRequest,
    PromptRequest,
    SessionResponse,
    SuggestionApplyRequest,
)
from .orchestrator import WorkflowOrchestrator
from .session import RoomSession

logger = logging.getLogger(__name__)


session_router = APIRouter(prefix="/sessions", tags=["sessions"])

# Singleton orchestrator instance
_orchestrator = WorkflowOrchestrator()

# Strong references to fire-and-forget stage tasks
_background_tasks: set[asyncio.Task] = set()


def get_orchestrator() -> WorkflowOrchestrator:
    return _orchestrator


def _session(orchestrator: WorkflowOrchestrator, session_id: str) -> RoomSession:
    session = orchestrator.get_session(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return session


def _idle_session(orchestrator: WorkflowOrchestrator, session_id: str) -> RoomSession:
    """Mutating endpoints are disabled while any stage of the session runs."""
    session = _session(orchestrator, session_id)
    if session.is_busy:
        raise HTTPException(
            status_code=409,
            detail=f"Session is busy: {', '.join(s.value for s in session.busy)}",
        )
    return session


async def _run(session: RoomSession, coro) -> SessionResponse:
    try:
        await coro
    except StageBusyError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return session.snapshot()


def _decode_or_400(image_base64: str):
    try:
        return split_data_url(image_base64)
    except ImageDecodeError as e:
        raise HTTPException(status_code=400, detail=str(e))


# ── Lifecycle ────────────────────────────────────────────────────────────────

@session_router.post("", response_model=SessionResponse)
async def create_session(orchestrator: WorkflowOrchestrator = Depends(get_orchestrator)):
    return orchestrator.create_session().snapshot()


@session_router.get("/{session_id}", response_model=SessionResponse)
async def get_session(session_id: str, orchestrator: WorkflowOrchestrator = Depends(get_orchestrator)):
    return _session(orchestrator, session_id).snapshot()


@session_router.delete("/{session_id}")
async def drop_session(session_id: str, orchestrator: WorkflowOrchestrator = Depends(get_orchestrator)):
    _session(orchestrator, session_id)
    orchestrator.drop_session(session_id)
    return {"status": "ok", "session_id": session_id}


@session_router.post("/{session_id}/reset", response_model=SessionResponse)
async def reset_session(session_id: str, orchestrator: WorkflowOrchestrator = Depends(get_orchestrator)):
    session = _session(orchestrator, session_id)
    orchestrator.reset(session)
    return session.snapshot()


# ── Room photo, prompt & planning ────────────────────────────────────────────

@session_router.post("/{session_id}/upload", response_model=SessionResponse)
async def upload_image(
    session_id: str,
    request: ImageUploadRequest,
    orchestrator: WorkflowOrchestrator = Depends(get_orchestrator),
):
    """
    Upload the room photo. Undecodable images are reported on the session
    (`error`); a malformed base64 payload is a 400.
    """
    session = _idle_session(orchestrator, session_id)
    data, mime = _decode_or_400(request.image_base64)
    return await _run(session, orchestrator.upload(session, data, mime))


@session_router.put("/{session_id}/prompt", response_model=SessionResponse)
async def set_prompt(
    session_id: str,
    request: PromptRequest,
    orchestrator: WorkflowOrchestrator = Depends(get_orchestrator),
):
    session = _idle_session(orchestrator, session_id)
    orchestrator.set_prompt(session, request.prompt)
    return session.snapshot()


@session_router.post("/{session_id}/plan", response_model=SessionResponse)
async def plan_and_enhance(session_id: str, orchestrator: WorkflowOrchestrator = Depends(get_orchestrator)):
    session = _idle_session(orchestrator, session_id)
    return await _run(session, orchestrator.plan_and_enhance(session))


@session_router.post("/{session_id}/generate", response_model=SessionResponse)
async def generate(session_id: str, orchestrator: WorkflowOrchestrator = Depends(get_orchestrator)):
    session = _idle_session(orchestrator, session_id)
    return await _run(session, orchestrator.generate(session))


@session_router.post("/{session_id}/use-generated", response_model=SessionResponse)
async def use_generated(session_id: str, orchestrator: WorkflowOrchestrator = Depends(get_orchestrator)):
    session = _idle_session(orchestrator, session_id)
    return await _run(session, orchestrator.use_generated_as_base(session))


@session_router.post("/{session_id}/suggestions/apply", response_model=SessionResponse)
async def apply_suggestion(
    session_id: str,
    request: SuggestionApplyRequest,
    orchestrator: WorkflowOrchestrator = Depends(get_orchestrator),
):
    session = _idle_session(orchestrator, session_id)
    orchestrator.apply_suggestion(session, request.prompt)
    return session.snapshot()


@session_router.post("/{session_id}/suggestions/refresh", response_model=SessionResponse)
async def refresh_suggestions(session_id: str, orchestrator: WorkflowOrchestrator = Depends(get_orchestrator)):
    session = _idle_session(orchestrator, session_id)
    return await _run(session, orchestrator.refresh_suggestions(session))


# ── Refinement ───────────────────────────────────────────────────────────────

@session_router.post("/{session_id}/refinement/toggle", response_model=SessionResponse)
async def toggle_refinement(session_id: str, orchestrator: WorkflowOrchestrator = Depends(get_orchestrator)):
    session = _idle_session(orchestrator, session_id)
    orchestrator.toggle_refinement_mode(session)
    return session.snapshot()


@session_router.put("/{session_id}/refinement/prompt", response_model=SessionResponse)
async def set_refinement_prompt(
    session_id: str,
    request: PromptRequest,
    orchestrator: WorkflowOrchestrator = Depends(get_orchestrator),
):
    session = _idle_session(orchestrator, session_id)
    orchestrator.set_refinement_prompt(session, request.prompt)
    return session.snapshot()


@session_router.put("/{session_id}/refinement/canvas", response_model=SessionResponse)
async def size_mask_canvas(
    session_id: str,
    request: MaskCanvasRequest,
    orchestrator: WorkflowOrchestrator = Depends(get_orchestrator),
):
    session = _idle_session(orchestrator, session_id)
    orchestrator.resize_mask_canvas(session, request.width, request.height)
    return session.snapshot()


@session_router.post("/{session_id}/refinement/strokes", response_model=SessionResponse)
async def add_mask_stroke(
    session_id: str,
    request: MaskStrokeRequest,
    orchestrator: WorkflowOrchestrator = Depends(get_orchestrator),
):
    session = _idle_session(orchestrator, session_id)
    try:
        orchestrator.draw_mask_stroke(session, request.points)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return session.snapshot()


@session_router.delete("/{session_id}/refinement/mask", response_model=SessionResponse)
async def clear_mask(session_id: str, orchestrator: WorkflowOrchestrator = Depends(get_orchestrator)):
    session = _idle_session(orchestrator, session_id)
    orchestrator.clear_mask(session)
    return session.snapshot()


@session_router.post("/{session_id}/refine", response_model=SessionResponse)
async def refine(session_id: str, orchestrator: WorkflowOrchestrator = Depends(get_orchestrator)):
    session = _idle_session(orchestrator, session_id)
    return await _run(session, orchestrator.refine(session))


# ── Furniture ────────────────────────────────────────────────────────────────

@session_router.post("/{session_id}/furniture", response_model=SessionResponse)
async def upload_furniture(
    session_id: str,
    request: FurnitureUploadRequest,
    orchestrator: WorkflowOrchestrator = Depends(get_orchestrator),
):
    session = _idle_session(orchestrator, session_id)
    files = [_decode_or_400(item) for item in request.images_base64]
    orchestrator.upload_furniture(session, files)
    return session.snapshot()


@session_router.delete("/{session_id}/furniture/{index}", response_model=SessionResponse)
async def remove_furniture(
    session_id: str,
    index: int,
    orchestrator: WorkflowOrchestrator = Depends(get_orchestrator),
):
    session = _idle_session(orchestrator, session_id)
    if not orchestrator.remove_furniture(session, index):
        raise HTTPException(status_code=404, detail=f"No furniture image at index {index}")
    return session.snapshot()


@session_router.delete("/{session_id}/furniture", response_model=SessionResponse)
async def clear_furniture(session_id: str, orchestrator: WorkflowOrchestrator = Depends(get_orchestrator)):
    session = _idle_session(orchestrator, session_id)
    orchestrator.clear_furniture(session)
    return session.snapshot()


@session_router.put("/{session_id}/furniture/prompt", response_model=SessionResponse)
async def set_furniture_prompt(
    session_id: str,
    request: PromptRequest,
    orchestrator: WorkflowOrchestrator = Depends(get_orchestrator),
):
    session = _idle_session(orchestrator, session_id)
    orchestrator.set_furniture_prompt(session, request.prompt)
    return session.snapshot()


@session_router.post("/{session_id}/furniture/enhance", response_model=SessionResponse)
async def enhance_furniture_prompt(session_id: str, orchestrator: WorkflowOrchestrator = Depends(get_orchestrator)):
    session = _idle_session(orchestrator, session_id)
    return await _run(session, orchestrator.enhance_furniture_prompt(session))


@session_router.post("/{session_id}/furniture/integrate", response_model=SessionResponse)
async def integrate_furniture(session_id: str, orchestrator: WorkflowOrchestrator = Depends(get_orchestrator)):
    """
    Integrate staged furniture. For portrait rooms nothing is sent yet: the
    response carries `pending_confirmation` and the client must confirm or cancel.
    """
    session = _idle_session(orchestrator, session_id)
    return await _run(session, orchestrator.integrate_furniture(session))


@session_router.post("/{session_id}/confirmation/confirm", response_model=SessionResponse)
async def confirm(session_id: str, orchestrator: WorkflowOrchestrator = Depends(get_orchestrator)):
    session = _idle_session(orchestrator, session_id)
    return await _run(session, orchestrator.confirm(session))


@session_router.post("/{session_id}/confirmation/cancel", response_model=SessionResponse)
async def cancel_confirmation(session_id: str, orchestrator: WorkflowOrchestrator = Depends(get_orchestrator)):
    session = _session(orchestrator, session_id)
    orchestrator.cancel_confirmation(session)
    return session.snapshot()


# ── Video ────────────────────────────────────────────────────────────────────

@session_router.post("/{session_id}/video", response_model=SessionResponse)
async def generate_video(session_id: str, orchestrator: WorkflowOrchestrator = Depends(get_orchestrator)):
    """
    Start video generation in the background. Poll GET /sessions/{id} for
    `video_progress` and, once done, `video_url`.
    """
    session = _idle_session(orchestrator, session_id)
    task = asyncio.create_task(orchestrator.generate_video(session))
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    logger.info(f"[{session_id}] video generation scheduled in background")

    # Let the stage validate and take its busy flag before answering
    await asyncio.sleep(0)
    return session.snapshot()
