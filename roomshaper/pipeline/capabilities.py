"""
Remote capability boundary.

The orchestrator only ever talks to an object satisfying `RoomCapabilities`.
`GeminiCapabilities` binds each capability to the Gemini / Veo REST adapters.
"""

from typing import Optional, Protocol

from .. import gemini, veo
from .models import ImageAsset, ParsedTask, StyleSuggestion, VideoOperation


class RoomCapabilities(Protocol):
    async def suggest_styles(self, image: ImageAsset) -> list[StyleSuggestion]: ...

    async def parse_tasks(self, text: str) -> list[ParsedTask]: ...

    async def enhance_prompt(self, text: str) -> str: ...

    async def edit_image(self, image: ImageAsset, prompt: str) -> ImageAsset: ...

    async def refine_image(
        self, image: ImageAsset, prompt: str, mask: Optional[ImageAsset]
    ) -> ImageAsset: ...

    async def enhance_furniture_prompt(self, text: str) -> str: ...

    async def integrate_furniture(
        self, room: ImageAsset, references: list[ImageAsset], prompt: str
    ) -> ImageAsset: ...

    async def start_video(self, image: ImageAsset, prompt: str) -> VideoOperation: ...

    async def poll_video(self, operation: VideoOperation) -> VideoOperation: ...

    async def get_video_link(self, operation: VideoOperation) -> Optional[str]: ...

    async def download_video(self, uri: str) -> bytes: ...


class GeminiCapabilities:
    """Production capabilities backed by the Gemini and Veo REST APIs."""

    async def suggest_styles(self, image):
        return await gemini.get_style_suggestions(image)

    async def parse_tasks(self, text):
        return await gemini.parse_prompt_to_tasks(text)

    async def enhance_prompt(self, text):
        return await gemini.enhance_prompt(text)

    async def edit_image(self, image, prompt):
        return await gemini.edit_image(image, prompt)

    async def refine_image(self, image, prompt, mask):
        return await gemini.refine_image(image, prompt, mask)

    async def enhance_furniture_prompt(self, text):
        return await gemini.enhance_furniture_prompt(text)

    async def integrate_furniture(self, room, references, prompt):
        return await gemini.integrate_furniture(room, references, prompt)

    async def start_video(self, image, prompt):
        return await veo.start_video(image, prompt)

    async def poll_video(self, operation):
        return await veo.poll_video(operation)

    async def get_video_link(self, operation):
        return veo.get_video_link(operation)

    async def download_video(self, uri):
        return await veo.download_video(uri)
