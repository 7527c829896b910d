import pytest

from models.data_models import Label
from services.labels import BADGE_STYLES, hex_to_rgb, normalize_glyph, repair_mojibake, style_for


@pytest.mark.unit
def test_every_label_has_a_style():
    assert set(BADGE_STYLES) == {label.value for label in Label}
    for style in BADGE_STYLES.values():
        assert style.glyph
        assert style.ascii_glyph.isascii()
        assert len(hex_to_rgb(style.color)) == 3


@pytest.mark.unit
def test_style_table_is_read_only():
    with pytest.raises(TypeError):
        BADGE_STYLES["good"] = BADGE_STYLES["blunder"]


@pytest.mark.unit
def test_mojibake_is_repaired():
    assert repair_mojibake("ðŸš€") == "\U0001F680"
    assert normalize_glyph("ðŸš€", "!!!") == "\U0001F680"


@pytest.mark.unit
def test_clean_text_is_untouched():
    assert repair_mojibake("\U0001F48E") == "\U0001F48E"
    assert repair_mojibake("plain") == "plain"


@pytest.mark.unit
def test_unusable_glyph_falls_back_to_ascii():
    assert normalize_glyph("�", "??") == "??"
    assert normalize_glyph("", "!") == "!"


@pytest.mark.unit
def test_style_for_unknown_label_uses_interesting():
    assert style_for("nonsense") == BADGE_STYLES["interesting"]
    assert style_for(Label.BLUNDER).color == "#EF4444"


@pytest.mark.unit
def test_hex_to_rgb():
    assert hex_to_rgb("#0f1115") == (15, 17, 21)
    with pytest.raises(ValueError):
        hex_to_rgb("#fff")
