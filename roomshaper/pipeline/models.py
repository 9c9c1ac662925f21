"""
Pydantic models and enums for the room workflow pipeline.
"""

import base64
from enum import Enum
from typing import Any, Optional
from pydantic import BaseModel, ConfigDict, Field


# ── Stages ───────────────────────────────────────────────────────────────────

class Stage(str, Enum):
    UPLOAD = "UPLOAD"
    SUGGEST = "SUGGEST"
    REFRESH_SUGGESTIONS = "REFRESH_SUGGESTIONS"
    PARSE_TASKS = "PARSE_TASKS"
    ENHANCE_PROMPT = "ENHANCE_PROMPT"
    GENERATE = "GENERATE"
    REFINE = "REFINE"
    ENHANCE_FURNITURE_PROMPT = "ENHANCE_FURNITURE_PROMPT"
    INTEGRATE_FURNITURE = "INTEGRATE_FURNITURE"
    GENERATE_VIDEO = "GENERATE_VIDEO"


class VideoState(str, Enum):
    IDLE = "IDLE"
    STARTING = "STARTING"
    POLLING = "POLLING"
    FINALIZING = "FINALIZING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


# ── Image Asset ──────────────────────────────────────────────────────────────

class ImageAsset(BaseModel):
    """Binary image payload plus its content type."""
    model_config = ConfigDict(frozen=True)

    data: bytes
    mime_type: str = "image/png"

    def to_base64(self) -> str:
        return base64.b64encode(self.data).decode("utf-8")

    def to_data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.to_base64()}"


# ── Planning / Suggestions ───────────────────────────────────────────────────

class ParsedTask(BaseModel):
    model_config = ConfigDict(frozen=True)

    item: str     # e.g. "Cabinets"
    change: str   # e.g. "turn them green"


class StyleSuggestion(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    prompt: str


# ── Video ────────────────────────────────────────────────────────────────────

class VideoOperation(BaseModel):
    """Opaque handle for a long-running video synthesis on the remote side."""
    name: str
    done: bool = False
    response: dict[str, Any] = Field(default_factory=dict)
    error: Optional[dict[str, Any]] = None


class VideoResult(BaseModel):
    url: str


# ── Pending Confirmation ─────────────────────────────────────────────────────

class PendingActionKind(str, Enum):
    INTEGRATE_FURNITURE = "INTEGRATE_FURNITURE"


class PendingAction(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: PendingActionKind
    message: str
    args: dict[str, Any] = Field(default_factory=dict)


# ── API Request Models ───────────────────────────────────────────────────────

class ImageUploadRequest(BaseModel):
    image_base64: str = Field(..., description="Data URL or raw base64 image payload")


class FurnitureUploadRequest(BaseModel):
    images_base64: list[str] = Field(default_factory=list)


class PromptRequest(BaseModel):
    prompt: str = ""


class SuggestionApplyRequest(BaseModel):
    prompt: str


class MaskCanvasRequest(BaseModel):
    width: int = Field(..., gt=0)
    height: int = Field(..., gt=0)


class MaskStrokeRequest(BaseModel):
    points: list[tuple[float, float]] = Field(..., min_length=1)


# ── API Response Models ──────────────────────────────────────────────────────

class SessionResponse(BaseModel):
    session_id: str
    original_image: Optional[str] = None
    current_image: Optional[str] = None
    generated_image: Optional[str] = None
    prompt: str = ""
    planned_tasks: list[ParsedTask] = Field(default_factory=list)
    style_suggestions: list[StyleSuggestion] = Field(default_factory=list)
    refinement_mode: bool = False
    refinement_prompt: str = ""
    refinement_mask: Optional[str] = None
    furniture_images: list[str] = Field(default_factory=list)
    furniture_prompt: str = ""
    video_url: Optional[str] = None
    video_progress: str = ""
    pending_confirmation: Optional[PendingAction] = None
    busy_stages: list[Stage] = Field(default_factory=list)
    is_busy: bool = False
    is_planning: bool = False
    is_suggesting: bool = False
    error: Optional[str] = None
