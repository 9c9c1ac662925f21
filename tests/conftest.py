"""Shared fixtures: in-memory fake capabilities, image factories, orchestrator."""

import asyncio
from io import BytesIO
from typing import Optional

import pytest
from PIL import Image

from roomshaper.pipeline.models import (
    ImageAsset,
    ParsedTask,
    StyleSuggestion,
    VideoOperation,
)
from roomshaper.pipeline.orchestrator import WorkflowOrchestrator


def make_png(width: int = 64, height: int = 48, color=(200, 180, 160)) -> bytes:
    output = BytesIO()
    Image.new("RGB", (width, height), color).save(output, format="PNG")
    return output.getvalue()


def make_asset(width: int = 64, height: int = 48, color=(200, 180, 160)) -> ImageAsset:
    return ImageAsset(data=make_png(width, height, color), mime_type="image/png")


DEFAULT_SUGGESTIONS = [
    StyleSuggestion(name="Japandi", prompt="Make it Japandi"),
    StyleSuggestion(name="Industrial", prompt="Make it industrial"),
]
DEFAULT_TASKS = [ParsedTask(item="Walls", change="paint sage green")]


class FakeCapabilities:
    """
    Records every call and returns canned results.

    - `fail[name] = exc` makes capability `name` raise `exc`.
    - `gates[name] = asyncio.Event()` makes capability `name` wait on the event.
    """

    def __init__(self):
        self.calls: list[tuple] = []
        self.fail: dict[str, Exception] = {}
        self.gates: dict[str, asyncio.Event] = {}

        self.suggestions = list(DEFAULT_SUGGESTIONS)
        self.tasks = list(DEFAULT_TASKS)
        self.enhanced = "ENHANCED: detailed prompt"
        self.enhanced_furniture = "ENHANCED FURNITURE: place it"
        self.edit_result = make_asset(64, 48, (10, 20, 30))
        self.refine_result = make_asset(64, 48, (40, 50, 60))
        self.integrate_result = make_asset(64, 48, (70, 80, 90))

        self.polls_until_done = 3
        self.video_link: Optional[str] = "https://video.example/room.mp4"
        self.video_bytes = b"\x00\x00\x00\x18ftypmp42"

    def count(self, name: str) -> int:
        return sum(1 for call in self.calls if call[0] == name)

    def args(self, name: str) -> tuple:
        return next(call[1:] for call in reversed(self.calls) if call[0] == name)

    async def _enter(self, name: str, *args):
        self.calls.append((name, *args))
        gate = self.gates.get(name)
        if gate is not None:
            await gate.wait()
        if name in self.fail:
            raise self.fail[name]

    async def suggest_styles(self, image):
        await self._enter("suggest_styles", image)
        return self.suggestions

    async def parse_tasks(self, text):
        await self._enter("parse_tasks", text)
        return self.tasks

    async def enhance_prompt(self, text):
        await self._enter("enhance_prompt", text)
        return self.enhanced

    async def edit_image(self, image, prompt):
        await self._enter("edit_image", image, prompt)
        return self.edit_result

    async def refine_image(self, image, prompt, mask):
        await self._enter("refine_image", image, prompt, mask)
        return self.refine_result

    async def enhance_furniture_prompt(self, text):
        await self._enter("enhance_furniture_prompt", text)
        return self.enhanced_furniture

    async def integrate_furniture(self, room, references, prompt):
        await self._enter("integrate_furniture", room, references, prompt)
        return self.integrate_result

    async def start_video(self, image, prompt):
        await self._enter("start_video", image, prompt)
        return VideoOperation(name="operations/op-1", done=self.polls_until_done == 0)

    async def poll_video(self, operation):
        await self._enter("poll_video", operation)
        done = self.count("poll_video") >= self.polls_until_done
        return VideoOperation(name=operation.name, done=done)

    async def get_video_link(self, operation):
        await self._enter("get_video_link", operation)
        return self.video_link

    async def download_video(self, uri):
        await self._enter("download_video", uri)
        return self.video_bytes


class FakeStore:
    def __init__(self):
        self.saved: list[tuple[str, str, bytes]] = []

    async def __call__(self, session_id: str, filename: str, data: bytes) -> str:
        self.saved.append((session_id, filename, data))
        return f"/media/{session_id}/{filename}"


async def settle():
    """Give scheduled tasks a chance to run up to their next suspension."""
    for _ in range(5):
        await asyncio.sleep(0)


@pytest.fixture
def capabilities():
    return FakeCapabilities()


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def orchestrator(capabilities, store):
    return WorkflowOrchestrator(capabilities=capabilities, store=store, poll_interval=0)


@pytest.fixture
def session(orchestrator):
    return orchestrator.create_session()


@pytest.fixture
async def uploaded(orchestrator, session):
    """A session with a landscape room photo in place."""
    await orchestrator.upload(session, make_png(64, 48), "image/png")
    return session


@pytest.fixture
async def generated(orchestrator, uploaded):
    """A session with a generated image ready for refinement / video."""
    orchestrator.set_prompt(uploaded, "paint the walls sage green")
    await orchestrator.generate(uploaded)
    return uploaded

