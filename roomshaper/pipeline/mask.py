"""
Mask Compositor — turns free-hand selection strokes into a binary mask.

Strokes are captured in display space over a canvas sized to the rendered
container. On stroke release every painted pixel becomes opaque white and
everything else opaque black:

┌───────────────────────┐        ┌───────────────────────┐
│   ~~~~                │        │   ████                │
│  ~    ~~~   (strokes) │  ───▶  │  ██████████  (white)  │
│        ~~~~           │        │        █████  (black) │
└───────────────────────┘        └───────────────────────┘
"""

import logging
from io import BytesIO
from typing import Iterable, Optional

from PIL import Image, ImageDraw

from .models import ImageAsset

logger = logging.getLogger(__name__)

# ── Brush constants ──────────────────────────────────────────────────────────

BRUSH_WIDTH = 20
SELECTED = 255
UNSELECTED = 0

Point = tuple[float, float]


class MaskCompositor:
    """Accumulates strokes over one canvas and derives the refinement mask."""

    def __init__(self, width: int = 0, height: int = 0, brush_width: int = BRUSH_WIDTH):
        self.width = width
        self.height = height
        self.brush_width = brush_width
        self._strokes: list[list[Point]] = []
        self._active: Optional[list[Point]] = None
        self._mask: Optional[ImageAsset] = None

    @property
    def mask(self) -> Optional[ImageAsset]:
        """The last derived mask, or None when nothing has been selected."""
        return self._mask

    @property
    def has_drawing(self) -> bool:
        return bool(self._strokes) or self._active is not None

    @property
    def is_drawing(self) -> bool:
        return self._active is not None

    def resize(self, width: int, height: int):
        """
        Match the canvas to the container's rendered size.

        Like an HTML canvas, resizing resets the painted bitmap. The last
        published mask is left alone.
        """
        if width <= 0 or height <= 0:
            raise ValueError(f"Canvas size must be positive, got {width}x{height}")
        if (width, height) != (self.width, self.height):
            logger.info(f"Mask canvas resized {self.width}x{self.height} → {width}x{height}")
        self.width = width
        self.height = height
        self._strokes = []
        self._active = None

    # ── Pointer events ───────────────────────────────────────────────────

    def begin_stroke(self, x: float, y: float):
        if self.width <= 0 or self.height <= 0:
            raise ValueError("Mask canvas has no size yet; call resize() first.")
        self._active = [(x, y)]

    def extend_stroke(self, x: float, y: float):
        if self._active is None:
            return
        self._active.append((x, y))

    def end_stroke(self) -> Optional[ImageAsset]:
        """Finish the current stroke and re-derive the mask from all strokes."""
        if self._active is None:
            return self._mask
        self._strokes.append(self._active)
        self._active = None
        self._mask = self._render()
        return self._mask

    def draw_stroke(self, points: Iterable[Point]) -> Optional[ImageAsset]:
        """Convenience wrapper: a whole pointer-down → pointer-up path."""
        points = list(points)
        if not points:
            return self._mask
        self.begin_stroke(*points[0])
        for x, y in points[1:]:
            self.extend_stroke(x, y)
        return self.end_stroke()

    def clear(self):
        """Discard every stroke. The mask becomes absent, not all-black."""
        self._strokes = []
        self._active = None
        self._mask = None

    # ── Rendering ────────────────────────────────────────────────────────

    def _paint(self) -> Image.Image:
        coverage = Image.new("L", (self.width, self.height), UNSELECTED)
        draw = ImageDraw.Draw(coverage)
        radius = self.brush_width / 2

        for stroke in self._strokes:
            if len(stroke) > 1:
                draw.line(stroke, fill=SELECTED, width=self.brush_width, joint="curve")
            # Round caps (and the single-click dot)
            for x, y in (stroke[0], stroke[-1]):
                draw.ellipse((x - radius, y - radius, x + radius, y + radius), fill=SELECTED)
        return coverage

    def _render(self) -> ImageAsset:
        coverage = self._paint()
        binary = coverage.point(lambda v: SELECTED if v > 0 else UNSELECTED)
        mask_img = Image.merge("RGB", (binary, binary, binary))

        output = BytesIO()
        mask_img.save(output, format="PNG")
        logger.info(
            f"Mask derived from {len(self._strokes)} stroke(s) at {self.width}x{self.height}"
        )
        return ImageAsset(data=output.getvalue(), mime_type="image/png")
