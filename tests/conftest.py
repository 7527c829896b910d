"""
Pytest configuration and shared fixtures for ChatReview tests.
"""
import base64
import io
import logging
import os
import sys
from unittest.mock import Mock

import pytest
from PIL import Image, ImageDraw

"""
将项目根目录加入 Python 导入路径，确保在以 tests 目录为起点执行时，
可以正常导入位于项目根目录下的内部模块（如 services/*）。
"""
PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from models.data_models import Detection, Label, Rectangle, Side


PAGE_BG = (237, 237, 237)
SENDER_FILL = (149, 236, 105)
RECEIVER_FILL = (255, 255, 255)

# 这些变量会通过 ConfigManager 覆盖配置，测试中统一清除
_ENV_KEYS = (
    "GOOGLE_API_KEY",
    "OPENAI_API_KEY",
    "GEMINI_VISION_MODEL",
    "OPENAI_VISION_MODEL",
    "PREFER_GEMINI",
    "DISABLE_OCR_FALLBACK",
    "VISION_TIMEOUT_SECONDS",
)


@pytest.fixture(autouse=True)
def setup_logging():
    """Setup logging for tests."""
    logging.basicConfig(
        level=logging.DEBUG,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


def make_detection(index=0, text="hello there", bbox=(40, 100, 150, 40), side=Side.RECEIVER,
                   label=Label.GOOD, image_index=0, confidence=0.8):
    return Detection(
        index=index,
        side=side,
        text=text,
        bbox=Rectangle(*bbox),
        label=label,
        image_index=image_index,
        confidence=confidence,
    )


def draw_chat_page(width=375, height=667, bubbles=()):
    """
    函数级注释：
    - 生成一张模拟聊天截图：浅灰背景上绘制纯色圆角矩形气泡；
    - bubbles 为 (x, y, w, h, fill) 元组序列；
    - 用于边缘定位与左右判定的确定性测试。
    """
    img = Image.new("RGB", (width, height), PAGE_BG)
    draw = ImageDraw.Draw(img)
    for x, y, w, h, fill in bubbles:
        draw.rectangle((x, y, x + w - 1, y + h - 1), fill=fill)
    return img


def png_bytes(img):
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def data_url(img):
    return "data:image/png;base64," + base64.b64encode(png_bytes(img)).decode("ascii")


def mock_response(status_code=200, payload=None, text=""):
    """Mock requests.Response with json()/text/status_code."""
    response = Mock()
    response.status_code = status_code
    response.text = text
    if payload is None:
        response.json.side_effect = ValueError("no json")
    else:
        response.json.return_value = payload
    return response


@pytest.fixture
def chat_page():
    """A 375x667 page with one receiver (left, white) and one sender (right, green) bubble."""
    return draw_chat_page(bubbles=[
        (20, 100, 180, 60, RECEIVER_FILL),
        (175, 220, 180, 60, SENDER_FILL),
    ])


@pytest.fixture
def chat_page_url(chat_page):
    return data_url(chat_page)
