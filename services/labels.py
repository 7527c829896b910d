"""
Badge style table: glyph and colour for every quality label.

Glyphs are normalized once at import time. Strings that arrive as UTF-8 bytes
decoded with a Windows code page (for example ``"ðŸš€"`` for the rocket) are
repaired; anything still unusable falls back to the ASCII glyph.
"""
import logging
import unicodedata
from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping, Tuple, Union

from models.data_models import Label


logger = logging.getLogger(__name__)

_MOJIBAKE_CODECS = ("cp1252", "cp1254")
_MOJIBAKE_MARKERS = ("ð", "ğ", "â", "Ã")


@dataclass(frozen=True)
class BadgeStyle:
    glyph: str
    ascii_glyph: str
    color: str


def repair_mojibake(text: str) -> str:
    """Undo UTF-8 text that was decoded as cp1252/cp1254; returns input unchanged when not applicable."""
    if not text or not any(marker in text for marker in _MOJIBAKE_MARKERS):
        return text
    for codec in _MOJIBAKE_CODECS:
        try:
            return text.encode(codec).decode("utf-8")
        except UnicodeError:
            continue
    return text


def normalize_glyph(glyph: str, ascii_glyph: str) -> str:
    """
    规范化徽章字形：

    - 修复乱码（UTF-8 被按 cp1252/cp1254 解码）；
    - 统一为 NFC；
    - 空字符串或含替换字符 U+FFFD 时回退为 ASCII 字形。
    """
    repaired = unicodedata.normalize("NFC", repair_mojibake(glyph or ""))
    if not repaired.strip() or "�" in repaired:
        logger.warning(f"Unusable badge glyph {glyph!r}; using ASCII glyph {ascii_glyph!r}")
        return ascii_glyph
    return repaired


_RAW_STYLES: Tuple[Tuple[Label, str, str, str], ...] = (
    (Label.SUPERBRILLIANT, "\U0001F680", "!!!", "#8B5CF6"),
    (Label.BRILLIANT, "\U0001F48E", "!!", "#3B82F6"),
    (Label.EXCELLENT, "⭐", "!", "#F59E0B"),
    (Label.GREAT, "✅", "+!", "#10B981"),
    (Label.GOOD, "\U0001F44D", "+", "#6B7280"),
    (Label.INTERESTING, "\U0001F4D6", "!?", "#D2691E"),
    (Label.INACCURACY, "\U0001F914", "?!", "#F97316"),
    (Label.MISTAKE, "\U0001F605", "?", "#FB923C"),
    (Label.BLUNDER, "\U0001F62C", "??", "#EF4444"),
    (Label.MEGABLUNDER, "❓", "???", "#991B1B"),
)


def _build_table() -> Mapping[str, BadgeStyle]:
    table = {}
    for label, glyph, ascii_glyph, color in _RAW_STYLES:
        table[label.value] = BadgeStyle(
            glyph=normalize_glyph(glyph, ascii_glyph),
            ascii_glyph=ascii_glyph,
            color=color,
        )
    return MappingProxyType(table)


BADGE_STYLES: Mapping[str, BadgeStyle] = _build_table()


def style_for(label: Union[Label, str]) -> BadgeStyle:
    key = label.value if isinstance(label, Label) else str(label)
    return BADGE_STYLES.get(key, BADGE_STYLES[Label.INTERESTING.value])


def hex_to_rgb(color: str) -> Tuple[int, int, int]:
    value = color.lstrip("#")
    if len(value) != 6:
        raise ValueError(f"Expected #RRGGBB colour, got {color!r}")
    return int(value[0:2], 16), int(value[2:4], 16), int(value[4:6], 16)
