"""
Core data models for ChatReview.
"""
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple


class Side(str, Enum):
    """Which participant a chat bubble belongs to."""
    SENDER = "sender"
    RECEIVER = "receiver"
    UNKNOWN = "unknown"


class Label(str, Enum):
    """Quality judgment attached to a message, worst first."""
    MEGABLUNDER = "megablunder"
    BLUNDER = "blunder"
    MISTAKE = "mistake"
    INACCURACY = "inaccuracy"
    INTERESTING = "interesting"
    GOOD = "good"
    GREAT = "great"
    EXCELLENT = "excellent"
    BRILLIANT = "brilliant"
    SUPERBRILLIANT = "superbrilliant"


@dataclass(frozen=True)
class Rectangle:
    """Represents a rectangular region with position and dimensions."""
    x: int
    y: int
    width: int
    height: int

    @property
    def right(self) -> int:
        return self.x + self.width

    @property
    def bottom(self) -> int:
        return self.y + self.height

    @property
    def center_x(self) -> float:
        return self.x + self.width / 2.0

    @property
    def center_y(self) -> float:
        return self.y + self.height / 2.0

    def union(self, other: "Rectangle") -> "Rectangle":
        x1 = min(self.x, other.x)
        y1 = min(self.y, other.y)
        x2 = max(self.right, other.right)
        y2 = max(self.bottom, other.bottom)
        return Rectangle(x=x1, y=y1, width=x2 - x1, height=y2 - y1)

    def clamp(self, page: "PageMeta") -> "Rectangle":
        """Clamp the rectangle so it lies inside ``[0, width] x [0, height]`` of the page."""
        x = max(0, min(self.x, page.width))
        y = max(0, min(self.y, page.height))
        w = max(0, min(self.width, page.width - x))
        h = max(0, min(self.height, page.height - y))
        return Rectangle(x=int(round(x)), y=int(round(y)), width=int(round(w)), height=int(round(h)))

    def to_list(self) -> List[int]:
        return [self.x, self.y, self.width, self.height]

    @classmethod
    def from_list(cls, values: Sequence[float]) -> "Rectangle":
        x, y, w, h = values
        return cls(x=int(round(x)), y=int(round(y)), width=int(round(w)), height=int(round(h)))


@dataclass(frozen=True)
class PageMeta:
    """Dimensions of one input screenshot."""
    width: int
    height: int


def page_offsets(pages: Sequence[PageMeta]) -> List[int]:
    """Vertical stitching offsets: offset[i] is the sum of heights of the pages before i."""
    offsets: List[int] = []
    y = 0
    for page in pages:
        offsets.append(y)
        y += page.height
    return offsets


@dataclass(frozen=True)
class Detection:
    """One transcribed unit of text anchored to a box on its page.

    After grouping the same type represents a whole bubble: the box is the
    union of the merged fragments and the text their newline-joined content.
    """
    index: int
    side: Side
    text: str
    bbox: Rectangle
    label: Label
    image_index: int = 0
    confidence: float = 0.7

    def with_changes(self, **changes) -> "Detection":
        return replace(self, **changes)

    def to_dict(self) -> dict:
        return {
            "index": self.index,
            "side": self.side.value,
            "text": self.text,
            "bbox": self.bbox.to_list(),
            "image_index": self.image_index,
            "label": self.label.value,
            "confidence": float(self.confidence),
        }


# A bubble is a detection after grouping.
Bubble = Detection


@dataclass(frozen=True)
class Review:
    """Top-level validated analysis result."""
    summary_line: str
    elo: int
    ending: str
    messages: Tuple[Detection, ...]
    counts: Dict[str, int] = field(default_factory=dict)
    pages: Tuple[PageMeta, ...] = ()
    provider: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "summary_line": self.summary_line,
            "elo": self.elo,
            "ending": self.ending,
            "messages": [m.to_dict() for m in self.messages],
            "counts": dict(self.counts),
            "pages": [{"width": p.width, "height": p.height} for p in self.pages],
            "provider": self.provider,
        }


@dataclass
class TextRegion:
    """Represents a text line returned by the OCR engine."""
    text: str
    bounding_box: Rectangle
    confidence: float
