"""
Room Editing Pipeline

Session orchestration for iterative, AI-mediated room makeovers:
  Upload → Style Suggestions → Plan & Enhance → Generate → Refine (masked)
  → Furniture Integration (confirmation-gated) → Cinematic Video (Veo)
"""

from .orchestrator import WorkflowOrchestrator
from .routes import session_router
from .models import Stage, VideoState

__all__ = [
    "WorkflowOrchestrator",
    "session_router",
    "Stage",
    "VideoState",
]
