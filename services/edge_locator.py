"""
Pixel edge locator: snaps an approximate bubble box to its rendered edge.

Works on a read-only per-page RGB cache built once per render call.
"""
import logging
import math
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np
from PIL import Image

from models.data_models import Rectangle, Side


logger = logging.getLogger(__name__)

MIN_EDGE_SCORE = 10.0
DARK_LUMA = 60
MIN_BRIGHT_SAMPLES = 5

RGB = Tuple[int, int, int]


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def luma(rgb: Sequence[int]) -> float:
    """Rec. 709 luminance, rounded."""
    r, g, b = (int(c) for c in rgb[:3])
    return _round_half_up(0.2126 * r + 0.7152 * g + 0.0722 * b)


@dataclass(frozen=True)
class EdgeHit:
    x: int
    y: int
    score: float
    # True when a real edge was found; False for the literal box-edge fallback
    snapped: bool


class PixelCache:
    """Read-only per-page RGB arrays (H x W x 3, uint8)."""

    def __init__(self, pages: Sequence[Optional[np.ndarray]]):
        frozen = []
        for arr in pages:
            if arr is not None:
                arr = np.ascontiguousarray(arr[:, :, :3], dtype=np.uint8)
                arr.setflags(write=False)
            frozen.append(arr)
        self._pages: Tuple[Optional[np.ndarray], ...] = tuple(frozen)

    @classmethod
    def from_images(cls, images: Sequence[Optional[Image.Image]]) -> "PixelCache":
        return cls([np.asarray(img.convert("RGB")) if img is not None else None for img in images])

    @classmethod
    def from_composite(cls, composite) -> "PixelCache":
        """从拼接后的长图按页偏移切回每页像素（与绘制徽章的画布一致）。"""
        full = np.asarray(composite.image.convert("RGB"))
        pages: List[Optional[np.ndarray]] = []
        for page, offset in zip(composite.pages, composite.offsets):
            pages.append(full[offset:offset + page.height, :page.width])
        return cls(pages)

    def __len__(self) -> int:
        return len(self._pages)

    def page(self, index: int) -> Optional[np.ndarray]:
        if 0 <= index < len(self._pages):
            return self._pages[index]
        return None

    @staticmethod
    def pixel(arr: np.ndarray, x: int, y: int) -> RGB:
        h, w = arr.shape[:2]
        x = max(0, min(int(x), w - 1))
        y = max(0, min(int(y), h - 1))
        r, g, b = arr[y, x]
        return int(r), int(g), int(b)


def _grid_points(bbox: Rectangle) -> List[Tuple[int, int]]:
    inset = min(6, int(math.floor(min(bbox.width, bbox.height) * 0.15)))
    points = []
    for gy in range(3):
        for gx in range(3):
            x = bbox.x + inset + _round_half_up((gx / 2.0) * (bbox.width - 2 * inset))
            y = bbox.y + inset + _round_half_up((gy / 2.0) * (bbox.height - 2 * inset))
            points.append((x, y))
    return points


def estimate_fill_color(arr: np.ndarray, bbox: Rectangle) -> RGB:
    """
    估计气泡底色：在内缩后的 3x3 网格上采样。

    - 丢弃亮度 < 60 的采样点（通常是文字像素）；
    - 剩余有效点 >= 5 时取平均值，否则取全部采样点的亮度中位数。
    """
    samples = [PixelCache.pixel(arr, x, y) for x, y in _grid_points(bbox)]
    bright = [px for px in samples if luma(px) >= DARK_LUMA]
    if len(bright) >= MIN_BRIGHT_SAMPLES:
        n = float(len(bright))
        return (
            _round_half_up(sum(p[0] for p in bright) / n),
            _round_half_up(sum(p[1] for p in bright) / n),
            _round_half_up(sum(p[2] for p in bright) / n),
        )
    ordered = sorted(samples, key=luma)
    return ordered[len(ordered) // 2]


def _color_distance(a: RGB, b: RGB) -> float:
    return math.sqrt(sum((int(x) - int(y)) ** 2 for x, y in zip(a, b)))


def _scan_line(arr: np.ndarray, fill: RGB, y: int, bbox: Rectangle, side: Side,
               edge_pad: int) -> Tuple[int, float]:
    width = arr.shape[1]
    scan_range = min(40, int(math.floor(min(bbox.width, bbox.height) * 0.8)))
    if side == Side.SENDER:
        start = bbox.right - edge_pad
        end = min(width - 1, start + scan_range)
        step = 1
    else:
        start = bbox.x + edge_pad
        end = max(0, start - scan_range)
        step = -1

    best_x, best_score = -1, 0.0
    x = start
    while (x <= end) if step > 0 else (x >= end):
        prev_luma = luma(PixelCache.pixel(arr, x - step, y))
        next_luma = luma(PixelCache.pixel(arr, x + step, y))
        score = 2 * abs(next_luma - prev_luma) + _color_distance(PixelCache.pixel(arr, x, y), fill)
        if score > best_score:
            best_x, best_score = x, score
        x += step
    return (best_x if best_x >= 0 else start), best_score


def _literal_edge(bbox: Rectangle, side: Side) -> int:
    return bbox.right if side == Side.SENDER else bbox.x


def scan_edge(cache: PixelCache, page: int, bbox: Rectangle, side: Side) -> EdgeHit:
    """
    Locate the true rendered edge of a bubble.

    ``sender`` walks toward increasing x from the right boundary; any other
    side walks toward decreasing x from the left boundary. Coordinates are in
    page space.

    Args:
        cache: Pixel cache of the composite
        page: Page index of the bubble
        bbox: Approximate bubble box (page coordinates)
        side: Scan direction

    Returns:
        EdgeHit: Best edge, or the literal box edge at the vertical centre when the signal is weak
    """
    y_mid = bbox.y + _round_half_up(bbox.height / 2.0)
    fallback = EdgeHit(x=_literal_edge(bbox, side), y=y_mid, score=0.0, snapped=False)

    arr = cache.page(page)
    if arr is None or arr.size == 0 or bbox.width <= 0 or bbox.height <= 0:
        logger.debug(f"No pixels for page {page}; using literal box edge")
        return fallback

    fill = estimate_fill_color(arr, bbox)
    quarter = _round_half_up(bbox.height * 0.25)
    lines = [y for y in (y_mid, y_mid - quarter, y_mid + quarter)
             if bbox.y + 2 <= y <= bbox.bottom - 2]
    edge_pad = min(4, _round_half_up(bbox.width * 0.05))

    best: Optional[EdgeHit] = None
    for y in lines:
        x, score = _scan_line(arr, fill, y, bbox, side, edge_pad)
        if best is None or score > best.score:
            best = EdgeHit(x=x, y=y, score=score, snapped=True)

    if best is None or best.score < MIN_EDGE_SCORE:
        logger.debug(f"Weak edge signal for bbox {bbox.to_list()} on page {page}; using literal box edge")
        return fallback
    return best
