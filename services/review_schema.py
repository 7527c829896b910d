"""
Structural validation of repaired model output.

The expected shape is declared as pydantic models (ReviewOut / MessageOut).
validate_review() either returns a Review or raises SchemaError listing every
violation pydantic reports, not just the first.
"""
import logging
import math
from typing import Annotated, Any, Dict, List, Sequence, Tuple, Union

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, FiniteFloat, ValidationError, field_validator

from models.data_models import Detection, Label, Rectangle, Review, Side
from services.errors import FieldViolation, SchemaError


logger = logging.getLogger(__name__)

SUMMARY_MIN, SUMMARY_MAX = 3, 200
ENDING_MIN, ENDING_MAX = 2, 40
ELO_MIN, ELO_MAX = 0, 3500
MESSAGES_MIN, MESSAGES_MAX = 1, 300
TEXT_MIN, TEXT_MAX = 1, 2000
DEFAULT_CONFIDENCE = 0.7

_LABELS = {label.value for label in Label}
_SIDES = {side.value for side in Side}


def _reject_bool(value: Any) -> Any:
    # bool 是 int 的子类，pydantic 宽松模式下会把 True 当作 1
    if isinstance(value, bool):
        raise ValueError("must be a number, not a boolean")
    return value


Number = Annotated[FiniteFloat, BeforeValidator(_reject_bool)]
Integer = Annotated[int, BeforeValidator(_reject_bool)]


class MessageOut(BaseModel):
    """One bubble as the vision model reports it."""
    model_config = ConfigDict(extra="ignore")

    index: Integer = Field(..., ge=0)
    side: Side = Field(default=Side.UNKNOWN, description="Unrecognized values become 'unknown'")
    text: str = Field(..., min_length=TEXT_MIN, max_length=TEXT_MAX)
    bbox: List[Number] = Field(..., min_length=4, max_length=4, description="[x, y, w, h] in page pixels")
    image_index: Integer = Field(default=0, ge=0)
    label: Label
    confidence: Number = Field(default=DEFAULT_CONFIDENCE, ge=0.0, le=1.0)

    @field_validator("side", mode="before")
    @classmethod
    def _coerce_side(cls, v: Any) -> Any:
        if isinstance(v, Side):
            return v
        return v if isinstance(v, str) and v in _SIDES else Side.UNKNOWN.value

    @field_validator("image_index", mode="before")
    @classmethod
    def _default_image_index(cls, v: Any) -> Any:
        return 0 if v is None else v

    @field_validator("confidence", mode="before")
    @classmethod
    def _default_confidence(cls, v: Any) -> Any:
        return DEFAULT_CONFIDENCE if v is None else v

    def to_detection(self) -> Detection:
        return Detection(
            index=self.index,
            side=self.side,
            text=self.text,
            bbox=Rectangle.from_list(self.bbox),
            label=self.label,
            image_index=self.image_index,
            confidence=float(self.confidence),
        )


class ReviewOut(BaseModel):
    """Top-level review object returned by the vision model."""
    model_config = ConfigDict(extra="ignore")

    summary_line: str = Field(..., min_length=SUMMARY_MIN, max_length=SUMMARY_MAX)
    elo: Integer = Field(..., ge=ELO_MIN, le=ELO_MAX)
    ending: str = Field(..., min_length=ENDING_MIN, max_length=ENDING_MAX)
    messages: List[MessageOut] = Field(..., min_length=MESSAGES_MIN, max_length=MESSAGES_MAX)
    counts: Dict[str, int] = Field(default_factory=dict, description="Advisory only; recomputed from bubbles")

    @field_validator("counts", mode="before")
    @classmethod
    def _keep_known_counts(cls, v: Any) -> Dict[str, int]:
        """counts 只作参考，最终会按气泡重算；格式不对的条目直接忽略，不视为校验失败。"""
        if not isinstance(v, dict):
            return {}
        kept = {}
        for key, value in v.items():
            if key in _LABELS and isinstance(value, (int, float)) and not isinstance(value, bool) \
                    and math.isfinite(value):
                kept[key] = int(value)
        return kept


def _violation_path(loc: Sequence[Union[str, int]]) -> str:
    """('messages', 0, 'label') -> 'messages[0].label'; empty location is the root '$'."""
    if not loc:
        return "$"
    path = ""
    for part in loc:
        if isinstance(part, int):
            path += f"[{part}]"
        else:
            path += f".{part}" if path else str(part)
    return path


def validate_review(obj: Any) -> Review:
    """
    Validate a repaired review object.

    Args:
        obj: Parsed (and repaired) model output

    Returns:
        Review: Normalized review; bboxes are rounded but not yet clamped

    Raises:
        SchemaError: With every violation found
    """
    try:
        parsed = ReviewOut.model_validate(obj)
    except ValidationError as exc:
        violations = [FieldViolation(_violation_path(err["loc"]), err["msg"]) for err in exc.errors()]
        logger.debug(f"Review validation found {len(violations)} violation(s)")
        raise SchemaError(violations) from exc

    return Review(
        summary_line=parsed.summary_line,
        elo=parsed.elo,
        ending=parsed.ending,
        messages=tuple(m.to_detection() for m in parsed.messages),
        counts=parsed.counts,
    )


def clamp_to_pages(review_messages: Tuple[Detection, ...], pages) -> Tuple[Detection, ...]:
    """
    将每个气泡的 bbox 限制在其所属页面内。

    image_index 超出页面列表时归入最后一页。
    """
    if not pages:
        return tuple(review_messages)
    clamped = []
    for message in review_messages:
        page_index = min(message.image_index, len(pages) - 1)
        box = message.bbox.clamp(pages[page_index])
        if box != message.bbox:
            logger.debug(f"Clamped bbox of message {message.index}: {message.bbox.to_list()} -> {box.to_list()}")
        clamped.append(message.with_changes(bbox=box, image_index=page_index))
    return tuple(clamped)
