"""
Review controller orchestrating page loading, vision analysis, repair,
validation, grouping and the fallback ladder.
"""
import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Union

from PIL import Image

from controllers.review_context import ReviewContext
from models.data_models import Detection, Label, PageMeta, Rectangle, Review, Side
from services.bubble_grouping import group_bubbles
from services.edge_locator import PixelCache
from services.errors import ConfigurationError, FieldViolation, ReviewError, SchemaError, VisionCallError
from services.field_repair import repair
from services.image_loader import compose_pages
from services.message_filters import filter_detections
from services.rating import count_labels, rating
from services.review_prompt import system_prompt, user_prompt
from services.review_schema import clamp_to_pages, validate_review
from services.side_resolver import resolve_sides


OCR_SUMMARY = "OCR fallback used; text recognition was challenging."
OCR_ENDING = "draw"
OCR_CONFIDENCE = 0.4
OCR_PLACEHOLDER_TEXT = "Chat content could not be read clearly"
OCR_PLACEHOLDER_BBOX = Rectangle(50, 100, 200, 50)

EMERGENCY_SUMMARY = "Analysis unavailable due to technical limitations."
EMERGENCY_ENDING = "Analysis incomplete"
EMERGENCY_TEXT = "Unable to analyze chat content - please try uploading a clearer image."
EMERGENCY_BBOX = Rectangle(50, 100, 300, 50)
EMERGENCY_CONFIDENCE = 0.3


@dataclass(frozen=True)
class Success:
    review: Review


@dataclass(frozen=True)
class Degraded:
    review: Review
    reason: str


@dataclass(frozen=True)
class Fatal:
    error: ConfigurationError


ReviewOutcome = Union[Success, Degraded, Fatal]


def _finalize(bubbles: Sequence[Detection], summary_line: str, ending: str,
              pages: Sequence[PageMeta], provider: str) -> Review:
    """以最终气泡为准重新计算 counts 与 elo。"""
    counts = count_labels(bubbles)
    return Review(
        summary_line=summary_line,
        elo=rating(counts),
        ending=ending,
        messages=tuple(bubbles),
        counts=counts,
        pages=tuple(pages),
        provider=provider,
    )


def emergency_review(pages: Sequence[PageMeta]) -> Review:
    """Minimal valid review with a single placeholder bubble."""
    page = pages[0] if pages else PageMeta(375, 667)
    bubble = Detection(
        index=0,
        side=Side.UNKNOWN,
        text=EMERGENCY_TEXT,
        bbox=EMERGENCY_BBOX.clamp(page),
        label=Label.INTERESTING,
        image_index=0,
        confidence=EMERGENCY_CONFIDENCE,
    )
    return _finalize([bubble], EMERGENCY_SUMMARY, EMERGENCY_ENDING, pages or [page], "emergency")


class ReviewController:
    """Coordinates one review request end to end."""

    def __init__(self, context: ReviewContext):
        self.context = context
        self.config = context.config
        self.logger = logging.getLogger(__name__)

    def analyze(self, image_refs: Sequence[str], language: str = "en") -> Review:
        """
        Analyze chat screenshots.

        Args:
            image_refs: data URLs, http(s) URLs or local paths, one per page
            language: Language hint for the model

        Returns:
            Review: Always a structurally valid review (possibly a degraded one)

        Raises:
            ConfigurationError: If no vision provider has credentials
        """
        outcome = self.run(image_refs, language)
        if isinstance(outcome, Fatal):
            raise outcome.error
        return outcome.review

    def run(self, image_refs: Sequence[str], language: str = "en") -> ReviewOutcome:
        """Same as analyze() but reports how the review was obtained."""
        refs = list(image_refs)
        if not refs:
            raise ValueError("At least one image reference is required")

        try:
            self.context.vision.require_configured()
        except ConfigurationError as exc:
            self.logger.error(f"视觉服务未配置：{exc}")
            return Fatal(exc)

        images, pages = self.context.image_loader.load_pages(refs)

        try:
            return Success(self._analyze_primary(refs, images, pages, language))
        except ConfigurationError as exc:
            return Fatal(exc)
        except ReviewError as exc:
            reason = f"vision analysis failed: {exc}"
            self.logger.warning(f"主分析路径失败，进入降级流程：{exc}")
        except Exception as exc:
            reason = f"unexpected error during analysis: {exc}"
            self.logger.exception("主分析路径出现未预期异常，进入降级流程")

        if not self.config.pipeline.disable_ocr_fallback and self.context.ocr is not None:
            try:
                review = self._analyze_with_ocr(images, pages)
                self.logger.info(f"OCR 回退成功：{len(review.messages)} 个气泡")
                return Degraded(review, f"{reason}; used OCR fallback")
            except Exception as exc:
                self.logger.warning(f"OCR 回退失败：{exc}")
                reason = f"{reason}; OCR fallback failed: {exc}"

        self.logger.warning("返回应急占位结果")
        return Degraded(emergency_review(pages), reason)

    def _analyze_primary(self, refs: List[str], images: List[Optional[Image.Image]],
                         pages: List[PageMeta], language: str) -> Review:
        loader = self.context.image_loader
        inline = []
        for i, ref in enumerate(refs):
            try:
                inline.append(loader.to_inline(ref))
            except Exception as exc:
                raise VisionCallError(f"Could not read image {i} for the vision request: {exc}") from exc

        payload, provider = self.context.vision.analyze(system_prompt(language), user_prompt(refs), inline)
        review = validate_review(repair(payload))

        detections = clamp_to_pages(review.messages, pages)
        detections = resolve_sides(detections, pages, PixelCache.from_images(images))
        bubbles = self._filter_and_group(detections)
        if not bubbles:
            raise SchemaError([FieldViolation("messages", "no usable messages left after filtering")])
        return _finalize(bubbles, review.summary_line, review.ending, pages, provider)

    def _filter_and_group(self, detections: Sequence[Detection]) -> List[Detection]:
        cfg = self.config.pipeline
        kept = filter_detections(detections, cfg.min_text_length, cfg.min_box_size)
        return group_bubbles(kept, cfg.emergency_bubble_ceiling)

    def _analyze_with_ocr(self, images: List[Optional[Image.Image]], pages: List[PageMeta]) -> Review:
        """
        OCR 回退：逐页识别文本行，按页面左右半区判断发送方/接收方。

        - 标签统一为 interesting，置信度 0.4；
        - 没有任何可用文本行时返回单个占位气泡；
        - 没有任何可加载页面时抛出异常，交由应急结果处理。
        """
        if not any(img is not None for img in images):
            raise RuntimeError("no page image available for OCR")

        detections: List[Detection] = []
        for page_index, (img, page) in enumerate(zip(images, pages)):
            if img is None:
                continue
            for region in self.context.ocr.extract_text_regions(img):
                box = region.bounding_box.clamp(page)
                side = Side.SENDER if box.x > page.width / 2.0 else Side.RECEIVER
                detections.append(Detection(
                    index=len(detections),
                    side=side,
                    text=region.text,
                    bbox=box,
                    label=Label.INTERESTING,
                    image_index=page_index,
                    confidence=OCR_CONFIDENCE,
                ))

        bubbles = self._filter_and_group(detections)
        if not bubbles:
            self.logger.info("OCR 未识别到可用文本，使用占位气泡")
            first = next(i for i, img in enumerate(images) if img is not None)
            bubbles = [Detection(
                index=0,
                side=Side.UNKNOWN,
                text=OCR_PLACEHOLDER_TEXT,
                bbox=OCR_PLACEHOLDER_BBOX.clamp(pages[first]),
                label=Label.INTERESTING,
                image_index=first,
                confidence=OCR_CONFIDENCE,
            )]
        return _finalize(bubbles, OCR_SUMMARY, OCR_ENDING, pages, "ocr")

    def render_annotated(self, review: Review, image_refs: Sequence[str]) -> bytes:
        """
        Compose the pages and draw the badges.

        Raises:
            RenderError: If no page can be loaded or badges cannot be placed
        """
        images, pages = self.context.image_loader.load_pages(list(image_refs))
        composite = compose_pages(images, pages, self.config.render.background_color)
        return self.context.renderer.render(review, composite)
