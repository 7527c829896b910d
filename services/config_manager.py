"""
评审配置的加载、环境变量覆盖与保存。

查找顺序：显式路径 > 当前目录下的 config.yaml / config.yml / config.json > 内置默认值。
API key 只从环境变量读取，保存配置时不会写出。
"""
import json
import os
from dataclasses import fields
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

import yaml

from models.config import (
    AppConfig,
    LoggingConfig,
    OCRConfig,
    OutputConfig,
    PipelineConfig,
    RenderConfig,
    VisionConfig,
)


DEFAULT_CONFIG_FILES = ("config.yaml", "config.yml", "config.json")

_SECTIONS = {
    "vision": VisionConfig,
    "pipeline": PipelineConfig,
    "ocr": OCRConfig,
    "render": RenderConfig,
    "output": OutputConfig,
    "logging": LoggingConfig,
}

_TRUE_VALUES = ("1", "true", "yes", "on")
_FALSE_VALUES = ("0", "false", "no", "off")


def _parse_bool(raw: str, current: bool) -> bool:
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    return current


def _parse_text(raw: str, current: Any) -> str:
    return raw.strip()


def _parse_seconds(raw: str, current: Any) -> float:
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"VISION_TIMEOUT_SECONDS must be a number, got {raw!r}") from None


# 环境变量 -> (配置段, 字段, 解析函数)
ENV_OVERRIDES: Dict[str, Tuple[str, str, Callable[[str, Any], Any]]] = {
    "GOOGLE_API_KEY": ("vision", "google_api_key", _parse_text),
    "OPENAI_API_KEY": ("vision", "openai_api_key", _parse_text),
    "GEMINI_VISION_MODEL": ("vision", "gemini_model", _parse_text),
    "OPENAI_VISION_MODEL": ("vision", "openai_model", _parse_text),
    "PREFER_GEMINI": ("vision", "prefer_gemini", _parse_bool),
    "DISABLE_OCR_FALLBACK": ("pipeline", "disable_ocr_fallback", _parse_bool),
    "VISION_TIMEOUT_SECONDS": ("vision", "timeout_seconds", _parse_seconds),
}


def _file_format(path: str) -> str:
    ext = os.path.splitext(path)[1].lower()
    if ext in (".yaml", ".yml"):
        return "yaml"
    if ext == ".json":
        return "json"
    raise ValueError(f"Unsupported configuration file format: {ext}")


class ConfigManager:
    """Loads AppConfig once and caches it until reload_config()."""

    def __init__(self, config_path: Optional[str] = None, environ: Optional[Mapping[str, str]] = None):
        self.config_path = config_path or next((p for p in DEFAULT_CONFIG_FILES if os.path.exists(p)), None)
        self.environ = os.environ if environ is None else environ
        self._config: Optional[AppConfig] = None

    def load_config(self) -> AppConfig:
        """
        读取配置文件（若有），套用环境变量覆盖后做整体校验。

        Raises:
            FileNotFoundError: 显式给出的配置文件不存在
            ValueError: 文件格式不支持、段结构错误或校验未通过
        """
        if self._config is not None:
            return self._config

        if self.config_path is None:
            config = AppConfig()
        elif os.path.exists(self.config_path):
            config = self._build(self._read(self.config_path))
        else:
            raise FileNotFoundError(f"Configuration file not found: {self.config_path}")

        for env_name, (section, attr, parse) in ENV_OVERRIDES.items():
            raw = self.environ.get(env_name)
            if raw:
                target = getattr(config, section)
                setattr(target, attr, parse(raw, getattr(target, attr)))

        config.validate()
        self._config = config
        return config

    @staticmethod
    def _read(path: str) -> Dict[str, Any]:
        fmt = _file_format(path)
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) if fmt == "yaml" else json.load(f)
        return data or {}

    @staticmethod
    def _build(data: Any) -> AppConfig:
        # 未知键忽略，缺失键取默认值
        if not isinstance(data, dict):
            raise ValueError("Configuration root must be a mapping")
        sections = {}
        for name, cls in _SECTIONS.items():
            raw = data.get(name) or {}
            if not isinstance(raw, dict):
                raise ValueError(f"Configuration section '{name}' must be a mapping")
            known = {f.name for f in fields(cls)}
            sections[name] = cls(**{k: v for k, v in raw.items() if k in known})
        return AppConfig(**sections)

    def save_config(self, config: AppConfig, file_path: Optional[str] = None) -> None:
        """Write config as YAML or JSON (by extension); credentials are excluded by AppConfig.to_dict()."""
        path = file_path or self.config_path or DEFAULT_CONFIG_FILES[0]
        fmt = _file_format(path)
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            if fmt == "yaml":
                yaml.safe_dump(config.to_dict(), f, default_flow_style=False, allow_unicode=True)
            else:
                json.dump(config.to_dict(), f, indent=2, ensure_ascii=False)

    def get_config(self) -> AppConfig:
        return self._config if self._config is not None else self.load_config()

    def reload_config(self) -> AppConfig:
        self._config = None
        return self.load_config()
