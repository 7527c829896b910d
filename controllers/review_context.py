"""
Runtime context: the long-lived objects shared by every review request.
"""
import logging
from dataclasses import dataclass
from typing import Optional

import requests

from models.config import AppConfig
from services.badge_renderer import BadgeRenderer
from services.image_loader import ImageLoader
from services.ocr_processor import OCRProcessor
from services.vision_providers import VisionClient


@dataclass
class ReviewContext:
    """Created once at startup and passed to the controller; close() at shutdown."""
    config: AppConfig
    session: requests.Session
    image_loader: ImageLoader
    vision: VisionClient
    renderer: BadgeRenderer
    ocr: Optional[OCRProcessor] = None

    @classmethod
    def from_config(cls, cfg: AppConfig, session: Optional[requests.Session] = None) -> "ReviewContext":
        session = session or requests.Session()
        session.headers.setdefault("User-Agent", "chat-review/0.1")
        ocr = None if cfg.pipeline.disable_ocr_fallback else OCRProcessor(cfg.ocr)
        logging.getLogger(__name__).debug(
            f"Review context ready (prefer_gemini={cfg.vision.prefer_gemini}, ocr_fallback={ocr is not None})"
        )
        return cls(
            config=cfg,
            session=session,
            image_loader=ImageLoader(session, cfg.pipeline),
            vision=VisionClient.from_config(cfg.vision, session),
            renderer=BadgeRenderer(cfg.render),
            ocr=ocr,
        )

    def close(self) -> None:
        if self.ocr is not None:
            self.ocr.cleanup()
        self.session.close()

    def __enter__(self) -> "ReviewContext":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
