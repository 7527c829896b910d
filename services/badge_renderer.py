"""
Badge renderer: draws one quality badge per bubble on the page composite.
"""
import io
import logging
import math
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from PIL import ImageDraw, ImageFont

from models.config import RenderConfig
from models.data_models import Detection, Review, Side
from services.edge_locator import EdgeHit, PixelCache, scan_edge
from services.errors import RenderError
from services.image_loader import Composite
from services.labels import hex_to_rgb, style_for


logger = logging.getLogger(__name__)

MIN_RADIUS = 18
MAX_RADIUS = 28
CANVAS_PADDING = 2
COLLISION_GAP = 6
NUDGE_STEP = 12
MAX_NUDGES = 3
GLYPH_COLOR = (255, 255, 255)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def badge_radius(bubble_height: int) -> int:
    return max(MIN_RADIUS, min(MAX_RADIUS, _round_half_up(bubble_height / 3.0)))


def badge_margin(radius: int) -> int:
    return max(20, _round_half_up(radius * 0.9))


def _clamp(value: float, lo: float, hi: float) -> int:
    if lo > hi:
        return _round_half_up((lo + hi) / 2.0)
    return _round_half_up(max(lo, min(hi, value)))


@dataclass(frozen=True)
class BadgePlacement:
    message_index: int
    x: int
    y: int
    radius: int
    label: str
    edge: EdgeHit


def place_badges(messages: List[Detection], composite: Composite,
                 cache: Optional[PixelCache] = None) -> List[BadgePlacement]:
    """
    计算每个气泡的徽章位置（画布坐标）。

    - 发送方气泡徽章在左侧，接收方（及未知）在右侧，朝向对话中线；
    - 先用像素边缘定位找到朝外的真实边缘，再偏移 max(20, 0.9r)；
    - 限制在画布内，并对与已放置徽章的碰撞做 +12/-24/+36 的垂直微调。
    """
    cache = cache if cache is not None else PixelCache.from_composite(composite)
    width, height = composite.width, composite.height
    placed: List[BadgePlacement] = []

    for bubble in messages:
        page = min(max(bubble.image_index, 0), len(composite.pages) - 1)
        offset = composite.offsets[page]
        r = badge_radius(bubble.bbox.height)
        margin = badge_margin(r)

        # 发送方徽章在左，需要左边缘：按接收方方向扫描；反之亦然
        badge_left = bubble.side == Side.SENDER
        hit = scan_edge(cache, page, bubble.bbox, Side.RECEIVER if badge_left else Side.SENDER)
        x = hit.x - margin if badge_left else hit.x + margin
        y = hit.y + offset

        lo = r + CANVAS_PADDING
        x = _clamp(x, lo, width - r - CANVAS_PADDING)
        y = _clamp(y, lo, height - r - CANVAS_PADDING)

        original_y = y
        attempts = 0
        while attempts < MAX_NUDGES:
            collides = any(
                math.hypot(p.x - x, p.y - y) < p.radius + r + COLLISION_GAP for p in placed
            )
            if not collides:
                break
            attempts += 1
            nudge = attempts * NUDGE_STEP * (1 if attempts % 2 == 1 else -1)
            y = _clamp(original_y + nudge, lo, height - r - CANVAS_PADDING)

        placed.append(BadgePlacement(
            message_index=bubble.index, x=x, y=y, radius=r, label=bubble.label.value, edge=hit,
        ))
    return placed


class BadgeRenderer:
    """Draws badges onto a copy of the composite and encodes it as PNG."""

    def __init__(self, config: Optional[RenderConfig] = None):
        self.config = config or RenderConfig()
        self.logger = logging.getLogger(__name__)
        self._fonts: Dict[Tuple[str, int], Optional[ImageFont.ImageFont]] = {}

    def _glyph_font(self, size: int) -> Optional[ImageFont.ImageFont]:
        key = ("glyph", size)
        if key not in self._fonts:
            font = None
            if self.config.glyph_font_path:
                try:
                    font = ImageFont.truetype(self.config.glyph_font_path, size)
                except OSError as exc:
                    self.logger.warning(f"Cannot load glyph font {self.config.glyph_font_path}: {exc}")
            self._fonts[key] = font
        return self._fonts[key]

    def _default_font(self, size: int) -> Optional[ImageFont.ImageFont]:
        key = ("default", size)
        if key not in self._fonts:
            try:
                self._fonts[key] = ImageFont.load_default(size=size)
            except (OSError, TypeError, ImportError) as exc:
                self.logger.warning(f"Default font unavailable, drawing plain badges: {exc}")
                self._fonts[key] = None
        return self._fonts[key]

    def draw_badge(self, draw: ImageDraw.ImageDraw, placement: BadgePlacement) -> None:
        style = style_for(placement.label)
        r = placement.radius
        draw.ellipse(
            (placement.x - r, placement.y - r, placement.x + r, placement.y + r),
            fill=hex_to_rgb(style.color),
        )
        size = _round_half_up(r * 1.2)
        glyph_font = self._glyph_font(size)
        try:
            if glyph_font is not None:
                draw.text((placement.x, placement.y + 1), style.glyph, font=glyph_font,
                          anchor="mm", fill=GLYPH_COLOR, embedded_color=True)
                return
            font = self._default_font(_round_half_up(r * 0.9))
            if font is not None:
                draw.text((placement.x, placement.y + 1), style.ascii_glyph, font=font,
                          anchor="mm", fill=GLYPH_COLOR)
        except (OSError, ValueError) as exc:
            # 字形绘制失败时保留纯色圆形
            self.logger.warning(f"Glyph drawing failed for label {placement.label}: {exc}")

    def render(self, review: Review, composite: Composite) -> bytes:
        """
        Render the annotated composite.

        Args:
            review: Final review
            composite: Stitched page images

        Returns:
            bytes: PNG image

        Raises:
            RenderError: If the badge count does not match the bubble count
        """
        canvas = composite.image.convert("RGB").copy()
        cache = PixelCache.from_composite(composite)
        placements = place_badges(list(review.messages), composite, cache)

        draw = ImageDraw.Draw(canvas)
        drawn = 0
        for placement in placements:
            self.draw_badge(draw, placement)
            drawn += 1

        if drawn != len(review.messages):
            raise RenderError(f"Badge count mismatch: expected {len(review.messages)}, drew {drawn}")

        snapped = sum(1 for p in placements if p.edge.snapped)
        self.logger.info(f"Rendered {drawn} badge(s); {snapped} snapped to detected edges")

        buffer = io.BytesIO()
        canvas.save(buffer, format="PNG")
        return buffer.getvalue()
