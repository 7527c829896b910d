"""
OCR line source for the review fallback tier.
Handles PaddleOCR integration and normalizes its output across versions.
"""
import logging
import os
from typing import Any, List, Optional

import numpy as np
from PIL import Image

# 模块级占位符：PaddleOCR
# - 单元测试通过 patch('services.ocr_processor.PaddleOCR') 替换该符号；
# - 运行时在 initialize_engine 中延迟导入，避免导入本模块时加载 paddle。
PaddleOCR = None

# Fix for OpenMP runtime conflict on macOS (common in PaddleOCR/PyTorch)
os.environ.setdefault("KMP_DUPLICATE_LIB_OK", "TRUE")

from models.config import OCRConfig
from models.data_models import Rectangle, TextRegion
from services.image_preprocessor import ImagePreprocessor


class OCRProcessor:
    """
    OCR processor using PaddleOCR engine for text line recognition.
    """

    def __init__(self, config: Optional[OCRConfig] = None):
        """
        Initialize OCR processor. The engine itself is created on first use.

        Args:
            config: OCR configuration. If None, uses default settings.
        """
        self.config = config or OCRConfig()
        self.ocr_engine: Optional[Any] = None
        self.preprocessor = ImagePreprocessor()
        self.logger = logging.getLogger(__name__)

    def initialize_engine(self) -> bool:
        """
        Initialize PaddleOCR engine.

        Tries the configured language first and English second; for each
        language the full keyword set is tried before a minimal one, since
        PaddleOCR 2.x and 3.x accept different constructor arguments.

        Returns:
            bool: True if initialization successful, False otherwise
        """
        if self.ocr_engine is not None:
            return True

        engine_cls = PaddleOCR
        if engine_cls is None:
            try:
                from paddleocr import PaddleOCR as engine_cls
            except ImportError as exc:
                self.logger.error(f"PaddleOCR is not installed; OCR fallback unavailable: {exc}")
                return False

        requested = (self.config.language or "en").strip()
        languages = [requested] + (["en"] if requested != "en" else [])
        for lang in languages:
            attempts = [
                {
                    "lang": lang,
                    "use_angle_cls": bool(self.config.use_angle_cls),
                    "use_gpu": bool(self.config.use_gpu),
                    "show_log": False,
                },
                {"lang": lang},
            ]
            for kwargs in attempts:
                try:
                    self.logger.info(f"Initializing PaddleOCR with language: {lang}")
                    self.ocr_engine = engine_cls(**kwargs)
                    return True
                except Exception as exc:
                    self.logger.warning(f"PaddleOCR init failed with {sorted(kwargs)}: {exc}")

        self.logger.error("Failed to initialize PaddleOCR for any language")
        return False

    def is_engine_ready(self) -> bool:
        return self.ocr_engine is not None

    def extract_text_regions(self, image: Image.Image) -> List[TextRegion]:
        """
        Recognize text lines in a page.

        Args:
            image: Page image

        Returns:
            List[TextRegion]: Lines in original-image coordinates, above the confidence threshold

        Raises:
            RuntimeError: If the OCR engine cannot be initialized
        """
        if not self.initialize_engine():
            raise RuntimeError("OCR engine is not available")

        processed, scale_back = self.preprocessor.prepare_for_ocr(image, self.config.upscale_min_width)
        raw = self.ocr_engine.ocr(np.asarray(processed))
        regions = self._build_text_regions(self._normalize_ocr_output(raw), scale_factor=scale_back)
        self.logger.debug(f"OCR recognized {len(regions)} line(s)")
        return regions

    def _normalize_ocr_output(self, ocr_results: Any) -> list:
        """
        统一标准化 PaddleOCR 的原始输出为 [bbox, [text, confidence]] 行列表。

        - 2.x：[[ [poly, (text, score)], ... ]]，空页面为 [None]；
        - 3.x：结果对象列表，字典式访问 rec_texts/rec_scores/rec_polys。
        """
        if not ocr_results:
            return []
        if hasattr(ocr_results, "get"):
            ocr_results = [ocr_results]
        if not isinstance(ocr_results, (list, tuple)):
            self.logger.warning(f"Unexpected OCR output type: {type(ocr_results).__name__}")
            return []

        lines: list = []
        for page in ocr_results:
            if page is None:
                continue
            if hasattr(page, "get") and page.get("rec_texts") is not None:
                texts = page.get("rec_texts") or []
                scores = page.get("rec_scores")
                scores = [] if scores is None else list(scores)
                polys = page.get("rec_polys")
                if polys is None:
                    polys = page.get("rec_boxes")
                polys = [] if polys is None else list(polys)
                for i, text in enumerate(texts):
                    score = float(scores[i]) if i < len(scores) else 0.0
                    bbox = polys[i] if i < len(polys) else None
                    lines.append([bbox, [text, score]])
            elif isinstance(page, (list, tuple)):
                lines.extend(page)
        return lines

    def _build_text_regions(self, lines: list, scale_factor: float = 1.0) -> List[TextRegion]:
        """
        根据标准行列表构建 TextRegion 列表，并执行置信度过滤与边界框转换。

        - 跳过低于 config.confidence_threshold 的条目；
        - 边界框可为 np.ndarray、点列表或 [x1, y1, x2, y2]，统一转换为 Rectangle；
        - scale_factor 把预处理后的坐标映射回原图。
        """
        regions: List[TextRegion] = []
        for line in lines:
            if not isinstance(line, (list, tuple)) or len(line) < 2:
                continue
            bbox, rec = line[0], line[1]
            if not isinstance(rec, (list, tuple)) or len(rec) < 2:
                continue
            text, confidence = rec[0], float(rec[1])
            if not isinstance(text, str) or not text.strip():
                continue
            if confidence < self.config.confidence_threshold:
                continue
            box = self._to_rectangle(bbox, scale_factor)
            if box is None:
                continue
            regions.append(TextRegion(text=text.strip(), bounding_box=box, confidence=confidence))
        return regions

    @staticmethod
    def _to_rectangle(bbox: Any, scale_factor: float) -> Optional[Rectangle]:
        if bbox is None:
            return None
        pts = np.asarray(bbox, dtype=float)
        if pts.ndim == 1 and pts.size == 4:
            xs, ys = pts[[0, 2]], pts[[1, 3]]
        elif pts.ndim == 2 and pts.shape[1] >= 2 and pts.shape[0] >= 1:
            xs, ys = pts[:, 0], pts[:, 1]
        else:
            return None
        xs = xs * scale_factor
        ys = ys * scale_factor
        x0, y0 = int(round(xs.min())), int(round(ys.min()))
        return Rectangle(x=x0, y=y0, width=int(round(xs.max())) - x0, height=int(round(ys.max())) - y0)

    def cleanup(self) -> None:
        """Release the OCR engine."""
        self.ocr_engine = None
