"""
Side resolution: decides sender/receiver for each detection from one signal.

Bubble fill colour is authoritative where page pixels exist: a saturated fill
is the sender's bubble, a neutral (white/grey) fill the receiver's. A page
without any saturated fill, or without pixels, falls back to horizontal
position for every bubble on it.
"""
import logging
from typing import Dict, List, Optional, Sequence

from models.data_models import Detection, PageMeta, Side
from services.edge_locator import PixelCache, estimate_fill_color


logger = logging.getLogger(__name__)

SATURATION_THRESHOLD = 0.25
MIN_FILL_BRIGHTNESS = 60


def saturation(rgb) -> float:
    """HSV saturation in [0, 1]."""
    hi = max(rgb)
    lo = min(rgb)
    if hi <= 0:
        return 0.0
    return (hi - lo) / float(hi)


def is_saturated(rgb) -> bool:
    return max(rgb) >= MIN_FILL_BRIGHTNESS and saturation(rgb) >= SATURATION_THRESHOLD


def side_from_position(d: Detection, page: PageMeta) -> Side:
    return Side.SENDER if d.bbox.center_x > page.width / 2.0 else Side.RECEIVER


def resolve_sides(
    detections: Sequence[Detection],
    pages: Sequence[PageMeta],
    cache: Optional[PixelCache] = None,
) -> List[Detection]:
    """
    Assign a side to every detection.

    Args:
        detections: Clamped detections
        pages: Page metadata (for position fallback)
        cache: Optional pixel cache of the input pages

    Returns:
        List[Detection]: Detections with side set to sender or receiver
    """
    if not detections:
        return []

    fills: Dict[int, Optional[bool]] = {}
    by_page: Dict[int, List[int]] = {}
    for i, d in enumerate(detections):
        by_page.setdefault(d.image_index, []).append(i)
        arr = cache.page(d.image_index) if cache is not None else None
        if arr is None or d.bbox.width <= 0 or d.bbox.height <= 0:
            fills[i] = None
        else:
            fills[i] = is_saturated(estimate_fill_color(arr, d.bbox))

    resolved: List[Detection] = list(detections)
    for page_index, members in by_page.items():
        page = pages[min(page_index, len(pages) - 1)] if pages else PageMeta(375, 667)
        use_colour = any(fills[i] for i in members)
        for i in members:
            d = detections[i]
            if use_colour and fills[i] is not None:
                side = Side.SENDER if fills[i] else Side.RECEIVER
            else:
                side = side_from_position(d, page)
            if side != d.side:
                logger.debug(f"Side of message {d.index}: {d.side.value} -> {side.value}")
                resolved[i] = d.with_changes(side=side)
        logger.debug(f"Page {page_index}: sides resolved by {'fill colour' if use_colour else 'position'}")
    return resolved
