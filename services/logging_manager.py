"""
日志配置：根据 AppConfig.logging 安装控制台与滚动文件处理器。

评审流程中的字段修复、气泡合并、降级回退与边缘弱信号都通过模块级 logger 输出，
这里只负责一次性地把它们接到根 logger 上。
"""
import logging
import os
import re
from logging.handlers import RotatingFileHandler

from models.config import AppConfig


_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
_SIZE_UNITS = {"": 1, "B": 1, "KB": 1024, "MB": 1024 ** 2, "GB": 1024 ** 3}
_DEFAULT_MAX_BYTES = 10 * 1024 * 1024

# 第三方库的 DEBUG 输出过于冗长（连接池、图像插件、OCR 推理）
NOISY_LOGGERS = ("urllib3", "PIL", "ppocr")


class LoggingManager:
    def __init__(self):
        self._configured = False

    def setup(self, cfg: AppConfig, console: bool = True) -> None:
        """Install handlers on the root logger once; later calls are no-ops."""
        if self._configured:
            return

        level = getattr(logging, cfg.logging.level.upper(), logging.INFO)
        formatter = logging.Formatter(_FORMAT)
        handlers = []

        if console:
            handlers.append(logging.StreamHandler())

        log_path = cfg.logging.file
        if log_path:
            os.makedirs(os.path.dirname(log_path) or ".", exist_ok=True)
            handlers.append(RotatingFileHandler(
                log_path,
                maxBytes=self._parse_size(cfg.logging.max_size),
                backupCount=3,
                encoding="utf-8",
            ))

        root = logging.getLogger()
        root.setLevel(level)
        root.handlers.clear()
        for handler in handlers:
            handler.setLevel(level)
            handler.setFormatter(formatter)
            root.addHandler(handler)

        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(max(level, logging.WARNING))
        self._configured = True

    @staticmethod
    def _parse_size(size_str: str) -> int:
        """'512KB' / '10MB' / '1gb' / '2048' -> bytes; anything unparseable falls back to 10MB."""
        match = re.fullmatch(r"\s*(\d+(?:\.\d+)?)\s*([KMG]B|B)?\s*", (size_str or "").upper())
        if not match:
            return _DEFAULT_MAX_BYTES
        return int(float(match.group(1)) * _SIZE_UNITS[match.group(2) or ""])
