"""
Gemini integration for room analysis, prompt planning and image editing.

- Text: Gemini 2.5 Flash via REST — style suggestions, task parsing, prompt rewriting
- Image: Gemini 2.5 Flash Image via REST — full edits, masked refinement, furniture compositing
"""

import os
import json
import base64
import logging
from typing import Optional

import httpx

from .pipeline.errors import CapabilityError
from .pipeline.models import ImageAsset, ParsedTask, StyleSuggestion

logger = logging.getLogger(__name__)

# ── Config ───────────────────────────────────────────────────────────────────

GEMINI_API_KEY = os.environ.get("GEMINI_API_KEY") or os.environ.get("GOOGLE_API_KEY", "")
API_BASE = os.environ.get("GEMINI_API_BASE", "https://generativelanguage.googleapis.com/v1beta")
TEXT_MODEL = os.environ.get("GEMINI_TEXT_MODEL", "gemini-2.5-flash")
IMAGE_MODEL = os.environ.get("GEMINI_IMAGE_MODEL", "gemini-2.5-flash-image")

TEXT_TIMEOUT = 60
IMAGE_TIMEOUT = 180

# Fast answers: the rewriting tasks need no reasoning budget
NO_THINKING = {"thinkingConfig": {"thinkingBudget": 0}}
IMAGE_CONFIG = {"responseModalities": ["IMAGE", "TEXT"]}


def _api_url(model: str) -> str:
    return f"{API_BASE}/models/{model}:generateContent"


def _inline_part(image: ImageAsset) -> dict:
    return {"inlineData": {"mimeType": image.mime_type, "data": image.to_base64()}}


def _parse_json_response(text: str):
    """Parse JSON from Gemini response, handling markdown code blocks."""
    text = text.strip()
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        if "```" in text:
            json_block = text.split("```")[1]
            if json_block.startswith("json"):
                json_block = json_block[4:]
            try:
                return json.loads(json_block.strip())
            except json.JSONDecodeError:
                pass
        raise CapabilityError(f"Gemini returned invalid JSON: {text[:200]}")


async def _generate_content(model: str, parts: list, config: Optional[dict] = None,
                            timeout: float = TEXT_TIMEOUT) -> dict:
    """Call Gemini generateContent REST endpoint."""
    if not GEMINI_API_KEY:
        raise CapabilityError("GEMINI_API_KEY not set")

    body: dict = {
        "contents": [{"parts": parts}],
    }
    if config:
        body["generationConfig"] = config

    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            resp = await client.post(
                _api_url(model),
                params={"key": GEMINI_API_KEY},
                json=body,
            )
    except httpx.HTTPError as e:
        raise CapabilityError(f"Gemini API request failed: {e}") from e

    if resp.status_code != 200:
        raise CapabilityError(f"Gemini API error {resp.status_code}: {resp.text[:500]}")

    return resp.json()


def _response_parts(result: dict) -> list:
    candidates = result.get("candidates") or []
    if not candidates:
        raise CapabilityError("Invalid response structure from Gemini API.")
    parts = (candidates[0].get("content") or {}).get("parts")
    if not parts:
        raise CapabilityError("Invalid response structure from Gemini API.")
    return parts


def _response_text(result: dict) -> str:
    try:
        parts = _response_parts(result)
    except CapabilityError:
        return ""
    return "".join(part.get("text", "") for part in parts).strip()


def _extract_image(result: dict) -> ImageAsset:
    """Pull the first inline image out of a generateContent response."""
    parts = _response_parts(result)

    for part in parts:
        if "inlineData" in part:
            image_data = base64.b64decode(part["inlineData"]["data"])
            mime_type = part["inlineData"].get("mimeType", "image/png")
            return ImageAsset(data=image_data, mime_type=mime_type)

    # A text part usually explains why (e.g. a safety block)
    text = "".join(part.get("text", "") for part in parts).strip()
    if text:
        raise CapabilityError(f"API did not return an image. Response: {text}")
    raise CapabilityError("No image data found in the API response.")


# =========================================================================
# 1. Style Suggestions — Gemini Flash (Vision)
# =========================================================================

STYLE_SUGGESTIONS_PROMPT = """Analyze the provided room image. You are an expert interior designer. Suggest four distinct, popular and aesthetically pleasing interior design styles that would suit this specific room.

For each style, provide a 'name' and a 'prompt'. The 'prompt' must be a detailed, ready-to-use set of instructions for an image generation AI, structured as a numbered list of actions that starts with "Apply the following distinct changes to the image:".

Respond ONLY with the JSON array."""

STYLE_SUGGESTIONS_SCHEMA = {
    "type": "ARRAY",
    "items": {
        "type": "OBJECT",
        "properties": {
            "name": {"type": "STRING"},
            "prompt": {"type": "STRING"},
        },
        "required": ["name", "prompt"],
    },
}


async def get_style_suggestions(image: ImageAsset) -> list[StyleSuggestion]:
    """
    Ask Gemini Flash for four interior styles that fit the room in `image`.
    Returns [StyleSuggestion, ...].
    """
    result = await _generate_content(
        model=TEXT_MODEL,
        parts=[_inline_part(image), {"text": STYLE_SUGGESTIONS_PROMPT}],
        config={
            "responseMimeType": "application/json",
            "responseSchema": STYLE_SUGGESTIONS_SCHEMA,
            **NO_THINKING,
        },
    )

    text = _response_text(result)
    if not text:
        raise CapabilityError("The AI returned an empty response for style suggestions.")

    suggestions = [StyleSuggestion(**item) for item in _parse_json_response(text)]
    logger.info(f"Style suggestions: {[s.name for s in suggestions]}")
    return suggestions


# =========================================================================
# 2. Task Parsing — break a request into {item, change} pairs
# =========================================================================

TASK_PARSING_PROMPT = """You are a task deconstruction AI. Read a user's home improvement request and break it down into a structured list of items to be changed and the requested change.

- Identify each distinct object or area the user wants to modify (e.g. "walls", "cabinets", "floor").
- For each item, describe the change the user wants (e.g. "paint them blue", "change to hardwood").
- If the request is a single task, return an array with one object.
- If the request is unclear or too broad, interpret it into concrete items as best you can.
- Respond ONLY with the JSON array.

User Request: "{user_prompt}\""""

TASK_SCHEMA = {
    "type": "ARRAY",
    "items": {
        "type": "OBJECT",
        "properties": {
            "item": {
                "type": "STRING",
                "description": "The object or area to be changed (e.g. 'Walls', 'Sofa').",
            },
            "change": {
                "type": "STRING",
                "description": "The modification requested for the item.",
            },
        },
        "required": ["item", "change"],
    },
}


async def parse_prompt_to_tasks(user_prompt: str) -> list[ParsedTask]:
    """
    Decompose a free-text request into ParsedTask entries.
    An empty model answer yields an empty list.
    """
    result = await _generate_content(
        model=TEXT_MODEL,
        parts=[{"text": TASK_PARSING_PROMPT.format(user_prompt=user_prompt)}],
        config={
            "responseMimeType": "application/json",
            "responseSchema": TASK_SCHEMA,
            **NO_THINKING,
        },
    )

    text = _response_text(result)
    if not text:
        return []

    tasks = [ParsedTask(**item) for item in _parse_json_response(text)]
    logger.info(f"Parsed {len(tasks)} task(s) from prompt")
    return tasks


# =========================================================================
# 3. Prompt Enhancement — room edits and furniture placement
# =========================================================================

ENHANCE_PROMPT = """You are an expert interior design assistant. Rewrite a user's simple home improvement request into a detailed, structured prompt for an image generation AI.

Rules:
1. Identify every distinct change the user requests.
2. Structure the output as a numbered list of actions, starting with the phrase "Apply the following distinct changes to the image:".
3. Start each numbered action with the object being changed (e.g. "1. Walls:", "2. Cabinets:").
4. Elaborate on the instruction with specific, professional details about materials, textures, colors and styles.
5. Do NOT add new elements the user didn't ask for.
6. Respond ONLY with the final, structured prompt text.

User's request: "{user_prompt}\""""

ENHANCE_FURNITURE_PROMPT = """You are an expert photo compositing assistant. Rewrite a user's simple furniture placement instruction into a detailed, professional prompt for an image generation AI.

Rules:
1. Focus on precise location, scale, lighting, shadows and perspective for a photorealistic result.
2. Elaborate on the user's instruction with professional details.
3. Your output must ONLY describe the placement and integration of the new item(s).
4. DO NOT add instructions that change the existing room, its furniture, walls or floor.
5. Respond ONLY with the final, enhanced instruction text.

User's instruction: "{user_prompt}\""""


async def _rewrite(template: str, user_prompt: str, empty_message: str) -> str:
    result = await _generate_content(
        model=TEXT_MODEL,
        parts=[{"text": template.format(user_prompt=user_prompt)}],
        config=NO_THINKING,
    )
    text = _response_text(result)
    if not text:
        raise CapabilityError(empty_message)
    return text


async def enhance_prompt(user_prompt: str) -> str:
    """Rewrite a room-edit request into a numbered instruction set."""
    return await _rewrite(ENHANCE_PROMPT, user_prompt, "The AI returned an empty response.")


async def enhance_furniture_prompt(user_prompt: str) -> str:
    """Rewrite a furniture placement instruction with placement/lighting detail."""
    return await _rewrite(
        ENHANCE_FURNITURE_PROMPT,
        user_prompt,
        "The AI returned an empty response for furniture prompt enhancement.",
    )


# =========================================================================
# 4. Image Editing — Gemini Flash Image
# =========================================================================

EDIT_PROMPT = """You are an expert AI image editor. Follow the user's instructions with extreme precision while preserving the original image's integrity.

CRITICAL REQUIREMENT: PRESERVE ASPECT RATIO
- The output image MUST have the EXACT SAME ASPECT RATIO AND DIMENSIONS as the input image.
- DO NOT CROP the image. The output MUST show the complete scene.

Task Execution:
- Identify every distinct task in the user's request and execute all of them. Partial completion is a failure.
- Maintain the original room's structure, lighting and perspective.

User's prompt:
"{prompt}\""""

REFINE_PROMPT = """You are an AI image refinement specialist. Make a small, specific correction to the provided image based on the user's request, while preserving the original aspect ratio and dimensions.

- The output image MUST have the EXACT SAME ASPECT RATIO AND DIMENSIONS as the input image. DO NOT CROP or resize.
- Focus ONLY on the user's specific instruction.
- {scope}
- The result must be seamless and photorealistic.

User's refinement request: "{prompt}\""""

MASKED_SCOPE = (
    "Apply the changes only to the area indicated by the white shape in the mask image. "
    "All other parts of the image must remain untouched."
)
GLOBAL_SCOPE = "Preserve all other aspects of the image perfectly."

INTEGRATE_PROMPT = """You are a precision AI photo compositing tool. Your SOLE function is to add new objects from reference images into a primary image without changing anything else.

- The FIRST image is the original room. Preserve it perfectly: do not change its furniture, flooring, walls, lighting or structure.
- The subsequent images are reference items to add to the room.
- Follow the user's placement instructions with absolute precision.
- The final image MUST have the same dimensions and aspect ratio as the room image. Do not crop, stretch or warp the scene.

User's Placement Instructions:
"{prompt}\""""


async def edit_image(image: ImageAsset, prompt: str) -> ImageAsset:
    """Apply a full-image edit to the room photo."""
    result = await _generate_content(
        model=IMAGE_MODEL,
        parts=[_inline_part(image), {"text": EDIT_PROMPT.format(prompt=prompt)}],
        config=IMAGE_CONFIG,
        timeout=IMAGE_TIMEOUT,
    )
    edited = _extract_image(result)
    logger.info(f"Image edited: {edited.mime_type}, {len(edited.data)} bytes")
    return edited


async def refine_image(image: ImageAsset, prompt: str, mask: Optional[ImageAsset]) -> ImageAsset:
    """
    Apply a localized correction. With a mask, only the white region may change;
    without one, the correction applies to the whole image.
    """
    parts = [_inline_part(image)]
    if mask:
        parts.append(_inline_part(mask))
    parts.append({
        "text": REFINE_PROMPT.format(
            prompt=prompt,
            scope=MASKED_SCOPE if mask else GLOBAL_SCOPE,
        )
    })

    result = await _generate_content(
        model=IMAGE_MODEL,
        parts=parts,
        config=IMAGE_CONFIG,
        timeout=IMAGE_TIMEOUT,
    )
    refined = _extract_image(result)
    logger.info(f"Image refined (masked={mask is not None})")
    return refined


async def integrate_furniture(room: ImageAsset, references: list[ImageAsset], prompt: str) -> ImageAsset:
    """
    Composite reference items into the room photo. The room goes first at full
    resolution; references are expected to be downscaled already.
    """
    parts = [_inline_part(room)]
    parts.extend(_inline_part(ref) for ref in references)
    parts.append({"text": INTEGRATE_PROMPT.format(prompt=prompt)})

    result = await _generate_content(
        model=IMAGE_MODEL,
        parts=parts,
        config=IMAGE_CONFIG,
        timeout=IMAGE_TIMEOUT,
    )
    composite = _extract_image(result)
    logger.info(f"Furniture integrated: {len(references)} reference item(s)")
    return composite
