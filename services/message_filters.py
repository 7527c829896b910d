"""
Utilities to drop near-noise detections before grouping.
"""
from __future__ import annotations

import logging
from typing import Iterable, List, Optional

from models.data_models import Detection


logger = logging.getLogger(__name__)


def is_noise(d: Detection, min_text_length: int = 2, min_box_size: int = 10) -> bool:
    text = (d.text or "").strip()
    if len(text) < min_text_length:
        return True
    if len(text) == 1 and not text.isalnum():
        return True
    if d.bbox.width < min_box_size or d.bbox.height < min_box_size:
        return True
    return False


def filter_detections(
    detections: Iterable[Detection],
    min_text_length: int = 2,
    min_box_size: int = 10,
    min_confidence: Optional[float] = None,
) -> List[Detection]:
    """Filter detections that are too small to be real messages.

    - text shorter than min_text_length after strip
    - single-character non-alphanumeric text
    - boxes narrower or shorter than min_box_size px
    - min_confidence: optional lower bound on Detection.confidence
    """
    out: List[Detection] = []
    dropped = 0
    for d in detections:
        if is_noise(d, min_text_length, min_box_size):
            dropped += 1
            continue
        if (min_confidence is not None) and (d.confidence < float(min_confidence)):
            dropped += 1
            continue
        out.append(d)
    if dropped:
        logger.debug(f"Filtered {dropped} noise detection(s), kept {len(out)}")
    return out
