"""
Image preprocessing for the OCR fallback.
Upscales small screenshots and boosts contrast on low-quality pages.
"""
import logging
from typing import Tuple

import cv2
import numpy as np
from PIL import Image


class ImagePreprocessor:
    """
    Image preprocessing utilities for OCR.
    """

    QUALITY_THRESHOLD = 0.6

    def __init__(self):
        self.logger = logging.getLogger(__name__)
        cv2.setUseOptimized(True)

    def prepare_for_ocr(self, image: Image.Image, min_width: int = 720) -> Tuple[Image.Image, float]:
        """
        Prepare a screenshot for OCR.

        Args:
            image: Input PIL Image
            min_width: Screenshots narrower than this are upscaled; 0 disables upscaling

        Returns:
            Tuple[Image.Image, float]: Processed image and the factor that maps
            processed coordinates back to the original image
        """
        processed = image.convert("RGB")
        scale_back = 1.0

        if min_width and processed.width < min_width:
            factor = min_width / float(processed.width)
            size = (int(round(processed.width * factor)), int(round(processed.height * factor)))
            arr = cv2.resize(np.asarray(processed), size, interpolation=cv2.INTER_CUBIC)
            processed = Image.fromarray(arr)
            scale_back = image.width / float(processed.width)
            self.logger.debug(f"Upscaled {image.width}x{image.height} to {size[0]}x{size[1]} for OCR")

        quality = self.calculate_image_quality_score(processed)
        if quality < self.QUALITY_THRESHOLD:
            self.logger.debug(f"Low image quality ({quality:.3f}), applying CLAHE")
            processed = self.enhance_local_contrast(processed)

        return processed, scale_back

    def enhance_local_contrast(self, image: Image.Image, clip_limit: float = 2.0,
                               tile_grid_size: tuple = (8, 8)) -> Image.Image:
        """
        Apply CLAHE on the L channel (LAB space).
        Helps dark-mode and washed-out screenshots.
        """
        img_bgr = cv2.cvtColor(np.asarray(image.convert("RGB")), cv2.COLOR_RGB2BGR)
        lab = cv2.cvtColor(img_bgr, cv2.COLOR_BGR2LAB)
        l, a, b = cv2.split(lab)

        clahe = cv2.createCLAHE(clipLimit=clip_limit, tileGridSize=tile_grid_size)
        merged = cv2.merge((clahe.apply(l), a, b))
        final_bgr = cv2.cvtColor(merged, cv2.COLOR_LAB2BGR)
        return Image.fromarray(cv2.cvtColor(final_bgr, cv2.COLOR_BGR2RGB))

    def calculate_image_quality_score(self, image: Image.Image) -> float:
        """
        图像质量评分（0~1）：清晰度（拉普拉斯方差）、对比度（灰度标准差）
        与亮度（接近 128 的程度）加权组合。
        """
        gray = cv2.cvtColor(np.asarray(image.convert("RGB")), cv2.COLOR_RGB2GRAY)

        sharpness_score = min(cv2.Laplacian(gray, cv2.CV_64F).var() / 1000.0, 1.0)
        contrast_score = min(gray.std() / 128.0, 1.0)
        brightness_score = 1.0 - abs(gray.mean() - 128) / 128.0

        quality_score = 0.4 * sharpness_score + 0.3 * contrast_score + 0.3 * brightness_score
        self.logger.debug(f"Image quality score: {quality_score:.3f}")
        return float(quality_score)
