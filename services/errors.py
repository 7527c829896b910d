"""
Error taxonomy for the review pipeline.

SchemaError and VisionCallError are handled inside the review controller and
drive its fallback ladder. ConfigurationError reaches the caller. RenderError
is raised only when the composite or badge layer cannot be produced at all.
"""
import re
from dataclasses import dataclass
from typing import List, Optional, Sequence


RETRYABLE_STATUS = frozenset({429, 500, 502, 503, 504})


class ReviewError(Exception):
    """Base class for all chat review errors."""


@dataclass(frozen=True)
class FieldViolation:
    """One structural problem in the model output."""
    path: str
    message: str

    def __str__(self) -> str:
        return f"{self.path}: {self.message}"


class SchemaError(ReviewError):
    """Model output failed structural validation after repair."""

    def __init__(self, violations: Sequence[FieldViolation]):
        self.violations: List[FieldViolation] = list(violations)
        shown = "; ".join(str(v) for v in self.violations[:10])
        more = f" (+{len(self.violations) - 10} more)" if len(self.violations) > 10 else ""
        super().__init__(f"Review validation failed: {shown}{more}")


class VisionCallError(ReviewError):
    """The external vision capability failed."""

    def __init__(self, message: str, status: Optional[int] = None, provider: Optional[str] = None):
        super().__init__(message)
        self.status = status
        self.provider = provider

    @property
    def retryable(self) -> bool:
        return self.status in RETRYABLE_STATUS


class RetryableVisionCallError(VisionCallError):
    """Rate-limit or server-side failure (429/5xx) that may succeed on retry."""


class ConfigurationError(ReviewError):
    """No vision capability can be reached at all (no credentials)."""


class RenderError(ReviewError):
    """Compositing or glyph loading failed during badge rendering."""


def vision_error_for_status(status: int, message: str, provider: Optional[str] = None) -> VisionCallError:
    """Build the right VisionCallError subtype for an HTTP status."""
    if status in RETRYABLE_STATUS:
        return RetryableVisionCallError(message, status=status, provider=provider)
    return VisionCallError(message, status=status, provider=provider)


def friendly_message(err: BaseException) -> str:
    """Short user-facing text for an error."""
    msg = str(err) or err.__class__.__name__
    status = getattr(err, "status", None)

    if isinstance(err, ConfigurationError) or re.search(r"api key|auth", msg, re.I):
        return "Config error: the vision API key is missing or invalid."
    if status == 429 or re.search(r"quota|rate", msg, re.I):
        return "Rate limited: the vision service is busy. Please try again in a minute."
    if re.search(r"timeout|timed out", msg, re.I):
        return "Timeout: analysis took too long. Try a smaller or clearer image."
    if re.search(r"network|connection|reset", msg, re.I):
        return "Network issue: connection problem. Please try again."
    if isinstance(err, SchemaError) or re.search(r"json|invalid|parse|validation", msg, re.I):
        return "The model returned invalid data. Please try again."
    if isinstance(err, RenderError):
        return "Render issue: the annotated image could not be produced."
    if re.search(r"image|unsupported|size", msg, re.I):
        return "Image issue: try a different image (PNG/JPG)."
    return f"Unexpected error: {msg[:100]}"
