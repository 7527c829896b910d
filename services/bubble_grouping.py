"""
Bubble grouping engine: merges fragmentary line detections into chat bubbles.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Sequence, Tuple

from models.data_models import Detection, Label, Rectangle, Side
from services.severity import worse


logger = logging.getLogger(__name__)

IOU_THRESHOLD = 0.4
ADJACENT_OVERLAP_RATIO = 0.5
ADJACENT_MIN_GAP = 6
ADJACENT_GAP_RATIO = 0.15
RELAXED_OVERLAP_RATIO = 0.6
RELAXED_MAX_CENTER_GAP = 20
RELAXED_CENTER_RATIO = 0.5
EMERGENCY_CEILING = 12
EMERGENCY_MAX_GAP = 100


def iou(a: Rectangle, b: Rectangle) -> float:
    ix = max(0, min(a.right, b.right) - max(a.x, b.x))
    iy = max(0, min(a.bottom, b.bottom) - max(a.y, b.y))
    inter = ix * iy
    union = a.width * a.height + b.width * b.height - inter
    if union <= 0:
        return 0.0
    return inter / float(union)


def horizontal_overlap_ratio(a: Rectangle, b: Rectangle) -> float:
    """Horizontal overlap as a fraction of the narrower box's width."""
    narrower = min(a.width, b.width)
    if narrower <= 0:
        return 0.0
    overlap = max(0, min(a.right, b.right) - max(a.x, b.x))
    return overlap / float(narrower)


def vertical_gap(a: Rectangle, b: Rectangle) -> int:
    """Empty space between the boxes along y; 0 when they overlap vertically."""
    return max(0, max(a.y, b.y) - min(a.bottom, b.bottom))


def should_merge(a: Rectangle, b: Rectangle) -> bool:
    """
    判断两个框是否属于同一气泡（满足任一条件即可）：

    - IoU >= 0.4；
    - 垂直相邻：水平重叠 >= 较窄宽度的 50%，且垂直间隙 <= max(6, 较矮高度的 15%)；
    - 宽松邻近：水平重叠 >= 较窄宽度的 60%，且中心垂直距离 < min(20, 平均高度的 50%)。
    """
    if iou(a, b) >= IOU_THRESHOLD:
        return True
    overlap = horizontal_overlap_ratio(a, b)
    if overlap >= ADJACENT_OVERLAP_RATIO:
        shorter = min(a.height, b.height)
        if vertical_gap(a, b) <= max(ADJACENT_MIN_GAP, ADJACENT_GAP_RATIO * shorter):
            return True
    if overlap >= RELAXED_OVERLAP_RATIO:
        avg_height = (a.height + b.height) / 2.0
        if abs(a.center_y - b.center_y) < min(RELAXED_MAX_CENTER_GAP, RELAXED_CENTER_RATIO * avg_height):
            return True
    return False


@dataclass(eq=False)
class _Group:
    """An open bubble while a partition is being scanned."""
    index: int
    side: Side
    image_index: int
    bbox: Rectangle
    label: Label
    confidence: float
    texts: List[str]
    members: List[Rectangle] = field(default_factory=list)

    @classmethod
    def of(cls, d: Detection) -> "_Group":
        return cls(
            index=d.index,
            side=d.side,
            image_index=d.image_index,
            bbox=d.bbox,
            label=d.label,
            confidence=d.confidence,
            texts=[d.text],
            members=[d.bbox],
        )

    def matches(self, other: "_Group") -> bool:
        if should_merge(self.bbox, other.bbox):
            return True
        return any(should_merge(m, n) for m in self.members for n in other.members)

    def absorb(self, other: "_Group") -> None:
        self.bbox = self.bbox.union(other.bbox)
        self.texts.extend(other.texts)
        self.label = worse(self.label, other.label)
        self.confidence = max(self.confidence, other.confidence)
        self.index = min(self.index, other.index)
        self.members.extend(other.members)

    def to_detection(self) -> Detection:
        return Detection(
            index=self.index,
            side=self.side,
            text="\n".join(self.texts),
            bbox=self.bbox,
            label=self.label,
            image_index=self.image_index,
            confidence=self.confidence,
        )


def _reading_order(d: Detection) -> Tuple[int, int, int, int]:
    return (d.image_index, d.bbox.y, d.bbox.x, d.index)


def _partition(detections: Iterable[Detection]) -> Dict[Tuple[int, str], List[Detection]]:
    parts: Dict[Tuple[int, str], List[Detection]] = {}
    for d in detections:
        parts.setdefault((d.image_index, d.side.value), []).append(d)
    return parts


def _group_partition(items: Sequence[Detection]) -> List[Detection]:
    open_groups: List[_Group] = []
    for d in sorted(items, key=lambda d: (d.bbox.y, d.bbox.x, d.index)):
        incoming = _Group.of(d)
        target = next((g for g in open_groups if g.matches(incoming)), None)
        if target is None:
            open_groups.append(incoming)
            continue
        target.absorb(incoming)
        # 扩大后的气泡可能与其他已开启气泡相接，传递合并直到稳定
        changed = True
        while changed:
            changed = False
            for other in open_groups:
                if other is target or not target.matches(other):
                    continue
                first, second = sorted((target, other), key=open_groups.index)
                first.absorb(second)
                open_groups.remove(second)
                target = first
                changed = True
                break
    return [g.to_detection() for g in open_groups]


def _reindex(bubbles: Iterable[Detection]) -> List[Detection]:
    ordered = sorted(bubbles, key=_reading_order)
    return [b.with_changes(index=i) if b.index != i else b for i, b in enumerate(ordered)]


def _fine_pass(detections: Sequence[Detection]) -> List[Detection]:
    bubbles: List[Detection] = []
    for _, items in sorted(_partition(detections).items()):
        if len(items) == 1:
            bubbles.append(items[0])
        else:
            bubbles.extend(_group_partition(items))
    return _reindex(bubbles)


def _emergency_pass(bubbles: Sequence[Detection]) -> List[Detection]:
    """Coarse pass: merge same-side bubbles whose vertical gap to the open group is at most 100 px."""
    groups: List[_Group] = []
    open_by_key: Dict[Tuple[int, str], _Group] = {}
    for b in sorted(bubbles, key=_reading_order):
        key = (b.image_index, b.side.value)
        current = open_by_key.get(key)
        if current is not None and b.bbox.y - current.bbox.bottom <= EMERGENCY_MAX_GAP:
            current.absorb(_Group.of(b))
            continue
        group = _Group.of(b)
        groups.append(group)
        open_by_key[key] = group
    return _reindex(g.to_detection() for g in groups)


def group_bubbles(detections: Iterable[Detection], emergency_ceiling: int = EMERGENCY_CEILING) -> List[Detection]:
    """
    Merge detections into bubbles, reindexed 0..N-1 in reading order.

    The fine pass and (above ``emergency_ceiling`` bubbles) the emergency pass
    are repeated until neither merges anything, so the result is a fixed
    point: grouping it again returns it unchanged.

    Args:
        detections: Raw detections in any order
        emergency_ceiling: Bubble count above which the coarse pass runs

    Returns:
        List[Detection]: Bubbles, never more than the input detections
    """
    current = list(detections)
    if not current:
        return []
    input_count = len(current)

    while True:
        before = len(current)
        current = _fine_pass(current)
        if len(current) > emergency_ceiling:
            merged = _emergency_pass(current)
            if len(merged) < len(current):
                logger.info(f"Emergency consolidation: {len(current)} -> {len(merged)} bubbles")
            current = merged
        if len(current) == before:
            break

    if len(current) < input_count:
        logger.debug(f"Grouped {input_count} detection(s) into {len(current)} bubble(s)")
    return current
