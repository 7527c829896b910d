from services.message_filters import filter_detections, is_noise
from conftest import make_detection


def test_short_and_symbol_text_is_noise():
    assert is_noise(make_detection(text="a"))
    assert is_noise(make_detection(text="  "))
    assert is_noise(make_detection(text="·"), min_text_length=1)
    assert not is_noise(make_detection(text="k"), min_text_length=1)
    assert not is_noise(make_detection(text="ok"))


def test_tiny_boxes_are_noise():
    assert is_noise(make_detection(bbox=(0, 0, 9, 40)))
    assert is_noise(make_detection(bbox=(0, 0, 40, 9)))
    assert not is_noise(make_detection(bbox=(0, 0, 10, 10)))


def test_filter_detections_keeps_order_and_applies_confidence():
    detections = [
        make_detection(0, text="hello", confidence=0.9),
        make_detection(1, text="x"),
        make_detection(2, text="world", confidence=0.3),
        make_detection(3, text="again", confidence=0.6),
    ]
    out = filter_detections(detections)
    assert [d.index for d in out] == [0, 2, 3]

    out2 = filter_detections(detections, min_confidence=0.5)
    assert [d.index for d in out2] == [0, 3]
