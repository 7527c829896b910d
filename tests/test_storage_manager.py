import csv
import json
from pathlib import Path

import pytest

from models.config import OutputConfig
from models.data_models import Label, PageMeta, Review, Side
from services.storage_manager import StorageManager
from conftest import make_detection


def make_review():
    messages = (
        make_detection(0, "你好，这是第一条消息", (20, 100, 160, 40), side=Side.RECEIVER, label=Label.GOOD),
        make_detection(1, "line one\nline two", (200, 160, 150, 60), side=Side.SENDER, label=Label.BLUNDER),
    )
    return Review(
        summary_line="Opening went fine.",
        elo=1150,
        ending="resign",
        messages=messages,
        counts={"good": 1, "blunder": 1},
        pages=(PageMeta(375, 667),),
        provider="gemini",
    )


@pytest.mark.unit
def test_save_review_json(tmp_path: Path):
    storage = StorageManager(OutputConfig(directory=str(tmp_path / "out_json")))
    path = storage.save_review(make_review(), filename_prefix="testjson")
    assert path.exists()
    assert path.suffix == ".json"
    assert path.name.startswith("testjson_")

    data = json.loads(path.read_text(encoding="utf-8"))
    assert data["elo"] == 1150
    assert data["counts"] == {"good": 1, "blunder": 1}
    assert data["messages"][0]["text"] == "你好，这是第一条消息"
    assert data["messages"][1]["bbox"] == [200, 160, 150, 60]
    assert data["pages"] == [{"width": 375, "height": 667}]
    assert set(data["messages"][0]) == {"index", "side", "text", "bbox", "image_index", "label", "confidence"}


@pytest.mark.unit
def test_save_review_csv(tmp_path: Path):
    storage = StorageManager(OutputConfig(directory=str(tmp_path / "out_csv")))
    path = storage.save_review_csv(make_review(), filename_prefix="testcsv")
    assert path.suffix == ".csv"

    with path.open(encoding="utf-8", newline="") as f:
        rows = list(csv.DictReader(f))
    assert len(rows) == 2
    assert rows[1]["side"] == "sender"
    assert rows[1]["label"] == "blunder"
    assert rows[1]["text"] == "line one\nline two"
    assert (rows[1]["x"], rows[1]["height"]) == ("200", "60")


@pytest.mark.unit
def test_save_review_multiple(tmp_path: Path):
    storage = StorageManager(OutputConfig(directory=str(tmp_path)))
    paths = storage.save_review_multiple(make_review(), "multi", ["json", "CSV"])
    assert [p.suffix for p in paths] == [".json", ".csv"]

    with pytest.raises(ValueError):
        storage.save_review_multiple(make_review(), "multi", ["xml"])


@pytest.mark.unit
def test_save_image(tmp_path: Path):
    storage = StorageManager(OutputConfig(directory=str(tmp_path / "nested" / "dir")))
    path = storage.save_image(b"\x89PNG fake", "annotated")
    assert path.suffix == ".png"
    assert path.read_bytes() == b"\x89PNG fake"
