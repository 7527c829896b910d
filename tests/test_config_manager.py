import json

import pytest
import yaml

from models.config import AppConfig
from services.config_manager import ConfigManager


@pytest.mark.unit
def test_defaults_without_file(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    cfg = ConfigManager(environ={}).load_config()
    assert isinstance(cfg, AppConfig)
    assert cfg.vision.prefer_gemini is True
    assert cfg.pipeline.emergency_bubble_ceiling == 12
    assert cfg.output.formats == ["json"]
    assert not cfg.vision.has_credentials


@pytest.mark.unit
def test_yaml_file_sections(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump({
        "vision": {"prefer_gemini": False, "timeout_seconds": 45, "unknown_key": 1},
        "pipeline": {"min_box_size": 8},
        "output": {"directory": str(tmp_path / "out"), "formats": ["json", "csv"]},
    }), encoding="utf-8")

    cfg = ConfigManager(str(path), environ={}).load_config()
    assert cfg.vision.prefer_gemini is False
    assert cfg.vision.timeout_seconds == 45
    assert cfg.pipeline.min_box_size == 8
    assert cfg.output.formats == ["json", "csv"]
    # 未出现的段使用默认值
    assert cfg.ocr.confidence_threshold == 0.5


@pytest.mark.unit
def test_env_overrides(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"vision": {"prefer_gemini": True}}), encoding="utf-8")
    env = {
        "GOOGLE_API_KEY": " g-key ",
        "OPENAI_API_KEY": "o-key",
        "OPENAI_VISION_MODEL": "gpt-4o",
        "PREFER_GEMINI": "false",
        "DISABLE_OCR_FALLBACK": "yes",
        "VISION_TIMEOUT_SECONDS": "12.5",
    }
    cfg = ConfigManager(str(path), environ=env).load_config()
    assert cfg.vision.google_api_key == "g-key"
    assert cfg.vision.openai_api_key == "o-key"
    assert cfg.vision.openai_model == "gpt-4o"
    assert cfg.vision.prefer_gemini is False
    assert cfg.pipeline.disable_ocr_fallback is True
    assert cfg.vision.timeout_seconds == 12.5


@pytest.mark.unit
def test_invalid_env_timeout(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    with pytest.raises(ValueError):
        ConfigManager(environ={"VISION_TIMEOUT_SECONDS": "soon"}).load_config()


@pytest.mark.unit
def test_missing_explicit_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        ConfigManager(str(tmp_path / "nope.yaml"), environ={}).load_config()


@pytest.mark.unit
def test_validation_errors(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump({
        "vision": {"timeout_seconds": 0},
        "output": {"formats": ["xml"]},
    }), encoding="utf-8")
    with pytest.raises(ValueError) as exc_info:
        ConfigManager(str(path), environ={}).load_config()
    assert "timeout_seconds" in str(exc_info.value)
    assert "xml" in str(exc_info.value)


@pytest.mark.unit
def test_section_must_be_mapping(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("vision: [1, 2]\n", encoding="utf-8")
    with pytest.raises(ValueError):
        ConfigManager(str(path), environ={}).load_config()


@pytest.mark.unit
def test_save_never_writes_credentials(tmp_path):
    cfg = AppConfig()
    cfg.vision.google_api_key = "secret"
    target = tmp_path / "saved.yaml"
    ConfigManager(str(target), environ={}).save_config(cfg)

    text = target.read_text(encoding="utf-8")
    assert "secret" not in text
    reloaded = ConfigManager(str(target), environ={}).load_config()
    assert reloaded.to_dict() == AppConfig().to_dict()


@pytest.mark.unit
def test_reload_picks_up_changes(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump({"pipeline": {"min_text_length": 3}}), encoding="utf-8")
    mgr = ConfigManager(str(path), environ={})
    assert mgr.get_config().pipeline.min_text_length == 3

    path.write_text(yaml.safe_dump({"pipeline": {"min_text_length": 1}}), encoding="utf-8")
    assert mgr.get_config().pipeline.min_text_length == 3
    assert mgr.reload_config().pipeline.min_text_length == 1
