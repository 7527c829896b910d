import json
from pathlib import Path
from unittest.mock import patch

import pytest

from cli import run_review
from conftest import mock_response


REVIEW = {
    "summary_line": "Short and sweet.",
    "elo": 1200,
    "ending": "draw",
    "messages": [
        {"index": 0, "side": "receiver", "text": "hey there", "bbox": [20, 100, 180, 60], "label": "great"},
    ],
}


def gemini_body(payload):
    return {"candidates": [{"content": {"parts": [{"text": json.dumps(payload)}]}}]}


def write_config(tmp_path: Path) -> Path:
    path = tmp_path / "config.yaml"
    path.write_text(
        "vision:\n  backoff_base_seconds: 0\n"
        f"logging:\n  file: '{(tmp_path / 'logs' / 'test.log').as_posix()}'\n",
        encoding="utf-8",
    )
    return path


@pytest.mark.unit
def test_parser_defaults():
    args = run_review.build_parser().parse_args(["a.png", "b.png"])
    assert args.images == ["a.png", "b.png"]
    assert args.lang == "en"
    assert args.prefix == "review"
    assert not args.render


@pytest.mark.integration
def test_main_writes_review_and_image(tmp_path, monkeypatch, chat_page):
    page = tmp_path / "page.png"
    chat_page.save(page)
    monkeypatch.setenv("GOOGLE_API_KEY", "g-key")
    out_dir = tmp_path / "out"

    with patch("requests.Session.post", return_value=mock_response(200, gemini_body(REVIEW))):
        code = run_review.main([
            str(page), "--config", str(write_config(tmp_path)), "--outdir", str(out_dir),
            "--formats", "json,csv", "--render", "--prefix", "t",
        ])

    assert code == 0
    suffixes = sorted(p.suffix for p in out_dir.iterdir())
    assert suffixes == [".csv", ".json", ".png"]
    data = json.loads(next(out_dir.glob("*.json")).read_text(encoding="utf-8"))
    assert data["counts"] == {"great": 1}
    assert data["elo"] == 1225


@pytest.mark.integration
def test_main_without_credentials_exits_2(tmp_path, chat_page):
    page = tmp_path / "page.png"
    chat_page.save(page)
    code = run_review.main([str(page), "--config", str(write_config(tmp_path)),
                            "--outdir", str(tmp_path / "out")])
    assert code == 2
    assert not (tmp_path / "out").exists()
