"""
Severity ordering of message quality labels.
"""
from types import MappingProxyType
from typing import Union

from models.data_models import Label


# 数值越小越严重；合并气泡时保留更严重的标签
PRIORITY = MappingProxyType({
    Label.MEGABLUNDER.value: 0,
    Label.BLUNDER.value: 1,
    Label.MISTAKE.value: 2,
    Label.INACCURACY.value: 3,
    Label.INTERESTING.value: 4,
    Label.GOOD.value: 5,
    Label.GREAT.value: 6,
    Label.EXCELLENT.value: 7,
    Label.BRILLIANT.value: 8,
    Label.SUPERBRILLIANT.value: 9,
})

UNKNOWN_PRIORITY = PRIORITY[Label.INTERESTING.value]

LabelLike = Union[Label, str]


def priority(label: LabelLike) -> int:
    key = label.value if isinstance(label, Label) else str(label)
    return PRIORITY.get(key, UNKNOWN_PRIORITY)


def worse(a: LabelLike, b: LabelLike) -> LabelLike:
    """Return the more severe of two labels; ties keep ``a``."""
    return b if priority(b) < priority(a) else a
