"""
Rating calculator: derives a chess-style rating from label counts.
"""
import math
import numbers
from types import MappingProxyType
from typing import Dict, Iterable, Mapping, Optional

from models.data_models import Detection, Label


BASE_RATING = 1200
MIN_RATING = 0
MAX_RATING = 3500

WEIGHTS = MappingProxyType({
    Label.SUPERBRILLIANT.value: 80,
    Label.BRILLIANT.value: 60,
    Label.EXCELLENT.value: 40,
    Label.GREAT.value: 25,
    Label.GOOD.value: 10,
    Label.INTERESTING.value: 0,
    Label.INACCURACY.value: -10,
    Label.MISTAKE.value: -25,
    Label.BLUNDER.value: -60,
    Label.MEGABLUNDER.value: -90,
})


def _as_count(value) -> float:
    if isinstance(value, bool) or not isinstance(value, numbers.Real):
        return 0.0
    value = float(value)
    if math.isnan(value) or math.isinf(value):
        return 0.0
    return value


def rating(counts: Optional[Mapping[str, object]]) -> int:
    """
    计算评分：基础分 1200 加上各标签计数乘以权重。

    - 未知标签与非数值计数贡献为 0；
    - 结果四舍五入（0.5 向上）后限制在 [0, 3500]。
    """
    if not counts:
        return BASE_RATING
    total = float(BASE_RATING)
    for label, value in counts.items():
        key = label.value if isinstance(label, Label) else str(label)
        total += WEIGHTS.get(key, 0) * _as_count(value)
    rounded = int(math.floor(total + 0.5))
    return max(MIN_RATING, min(MAX_RATING, rounded))


def count_labels(messages: Iterable[Detection]) -> Dict[str, int]:
    """Label histogram of the given messages."""
    counts: Dict[str, int] = {}
    for message in messages:
        key = message.label.value
        counts[key] = counts.get(key, 0) + 1
    return counts
