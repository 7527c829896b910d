"""
Configuration data models for the chat reviewer.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class VisionConfig:
    """Vision model providers and call policy."""
    google_api_key: str = ""
    openai_api_key: str = ""
    # 为 True 时优先调用 Gemini，失败后再尝试 OpenAI；为 False 时顺序相反
    prefer_gemini: bool = True
    gemini_model: str = "gemini-1.5-flash"
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    openai_model: str = "gpt-4o-mini"
    openai_base_url: str = "https://api.openai.com/v1"
    timeout_seconds: float = 30.0
    # 仅对 429/5xx 重试；重试间隔为 backoff_base_seconds * 第几次重试
    max_retries: int = 2
    backoff_base_seconds: float = 0.5

    @property
    def has_credentials(self) -> bool:
        return bool(self.google_api_key.strip() or self.openai_api_key.strip())


@dataclass
class PipelineConfig:
    """Repair, filtering and fallback behaviour of the analysis pipeline."""
    disable_ocr_fallback: bool = False
    min_text_length: int = 2
    min_box_size: int = 10
    # 合并后气泡数超过该值时触发粗粒度的应急合并
    emergency_bubble_ceiling: int = 12
    # 无法读取页面尺寸时假定的标准手机截图尺寸
    default_page_width: int = 375
    default_page_height: int = 667
    image_timeout_seconds: float = 15.0


@dataclass
class OCRConfig:
    """OCR engine configuration (used only by the OCR fallback tier)."""
    language: str = "en"
    confidence_threshold: float = 0.5
    use_gpu: bool = False
    use_angle_cls: bool = False
    # 短边小于该值的截图在识别前放大，0 表示关闭
    upscale_min_width: int = 720


@dataclass
class RenderConfig:
    """Annotated image rendering options."""
    # 可选的徽章字形字体（例如彩色 emoji 字体）；为空时使用 ASCII 字形与默认字体
    glyph_font_path: Optional[str] = None
    background_color: str = "#0f1115"


@dataclass
class OutputConfig:
    """Output configuration."""
    directory: str = "./output"
    formats: List[str] = field(default_factory=lambda: ["json"])


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"
    file: str = "./logs/chat_review.log"
    max_size: str = "10MB"


@dataclass
class AppConfig:
    """Main application configuration."""
    vision: VisionConfig = field(default_factory=VisionConfig)
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)
    ocr: OCRConfig = field(default_factory=OCRConfig)
    render: RenderConfig = field(default_factory=RenderConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def validate(self) -> bool:
        """Validate configuration parameters."""
        errors = []

        if self.vision.timeout_seconds <= 0 or self.vision.timeout_seconds > 300:
            errors.append("vision.timeout_seconds must be between 0 and 300 seconds")
        if self.vision.max_retries < 0 or self.vision.max_retries > 10:
            errors.append("vision.max_retries must be between 0 and 10")
        if self.vision.backoff_base_seconds < 0:
            errors.append("vision.backoff_base_seconds must not be negative")

        if self.pipeline.min_text_length < 0:
            errors.append("pipeline.min_text_length must not be negative")
        if self.pipeline.min_box_size < 0:
            errors.append("pipeline.min_box_size must not be negative")
        if self.pipeline.emergency_bubble_ceiling < 1:
            errors.append("pipeline.emergency_bubble_ceiling must be at least 1")
        if self.pipeline.default_page_width < 1 or self.pipeline.default_page_height < 1:
            errors.append("pipeline default page size must be positive")

        if self.ocr.confidence_threshold < 0.0 or self.ocr.confidence_threshold > 1.0:
            errors.append("ocr.confidence_threshold must be between 0.0 and 1.0")

        unknown = [f for f in self.output.formats if f not in ("json", "csv")]
        if unknown:
            errors.append(f"output.formats contains unsupported format(s): {unknown}")

        color = (self.render.background_color or "").lstrip("#")
        if len(color) != 6 or any(c not in "0123456789abcdefABCDEF" for c in color):
            errors.append("render.background_color must be a #RRGGBB hex colour")

        if errors:
            raise ValueError(f"Configuration validation failed: {'; '.join(errors)}")

        return True

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary (credentials are not exported)."""
        return {
            "vision": {
                "prefer_gemini": self.vision.prefer_gemini,
                "gemini_model": self.vision.gemini_model,
                "gemini_base_url": self.vision.gemini_base_url,
                "openai_model": self.vision.openai_model,
                "openai_base_url": self.vision.openai_base_url,
                "timeout_seconds": self.vision.timeout_seconds,
                "max_retries": self.vision.max_retries,
                "backoff_base_seconds": self.vision.backoff_base_seconds,
            },
            "pipeline": {
                "disable_ocr_fallback": self.pipeline.disable_ocr_fallback,
                "min_text_length": self.pipeline.min_text_length,
                "min_box_size": self.pipeline.min_box_size,
                "emergency_bubble_ceiling": self.pipeline.emergency_bubble_ceiling,
                "default_page_width": self.pipeline.default_page_width,
                "default_page_height": self.pipeline.default_page_height,
                "image_timeout_seconds": self.pipeline.image_timeout_seconds,
            },
            "ocr": {
                "language": self.ocr.language,
                "confidence_threshold": self.ocr.confidence_threshold,
                "use_gpu": self.ocr.use_gpu,
                "use_angle_cls": self.ocr.use_angle_cls,
                "upscale_min_width": self.ocr.upscale_min_width,
            },
            "render": {
                "glyph_font_path": self.render.glyph_font_path,
                "background_color": self.render.background_color,
            },
            "output": {
                "directory": self.output.directory,
                "formats": list(self.output.formats),
            },
            "logging": {
                "level": self.logging.level,
                "file": self.logging.file,
                "max_size": self.logging.max_size,
            },
        }
