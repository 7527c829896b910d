from services.review_prompt import LABEL_ORDER, system_prompt, user_prompt


def test_label_order_best_to_worst():
    assert LABEL_ORDER[0] == "superbrilliant"
    assert LABEL_ORDER[-1] == "megablunder"
    assert len(LABEL_ORDER) == 10


def test_system_prompt_mentions_schema_and_language():
    text = system_prompt("de")
    for field in ("summary_line", "elo", "ending", "bbox", "image_index", "confidence"):
        assert field in text
    assert "Language: de." in text


def test_user_prompt_hides_inline_data():
    text = user_prompt(["https://cdn.example.test/a.png", "data:image/png;base64,QUJD"])
    assert "0: https://cdn.example.test/a.png" in text
    assert "1: inline image 1" in text
    assert "QUJD" not in text
