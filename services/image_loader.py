"""
Image loading for review input: data URLs, http(s) URLs and local paths.
Also stitches pages into the vertical composite used for rendering.
"""
import base64
import binascii
import io
import logging
import mimetypes
import os
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import requests
from PIL import Image, UnidentifiedImageError

from models.config import PipelineConfig
from models.data_models import PageMeta, page_offsets
from services.errors import RenderError
from services.labels import hex_to_rgb


logger = logging.getLogger(__name__)

DEFAULT_MIME = "image/png"


@dataclass(frozen=True)
class Composite:
    """All pages stitched top to bottom on one canvas."""
    image: Image.Image
    pages: Tuple[PageMeta, ...]
    offsets: Tuple[int, ...]

    @property
    def width(self) -> int:
        return self.image.width

    @property
    def height(self) -> int:
        return self.image.height


class ImageLoader:
    """Reads image references into bytes and decoded PIL images."""

    def __init__(self, session: Optional[requests.Session] = None, config: Optional[PipelineConfig] = None):
        self.session = session or requests.Session()
        self.config = config or PipelineConfig()

    def read_bytes(self, ref: str) -> Tuple[bytes, str]:
        """
        读取图片引用的原始字节与 MIME 类型。

        - data: URL 直接 base64 解码；
        - http(s) URL 通过共享 session 下载（带超时）；
        - 其他视为本地路径。

        Raises:
            ValueError: data URL 格式错误
            OSError: 本地文件读取失败
            requests.RequestException: 下载失败
        """
        if ref.startswith("data:"):
            header, sep, data = ref.partition(",")
            if not sep or ";base64" not in header:
                raise ValueError("Only base64 data URLs are supported")
            mime = header[5:].split(";", 1)[0] or DEFAULT_MIME
            try:
                return base64.b64decode(data, validate=False), mime
            except (binascii.Error, ValueError) as exc:
                raise ValueError(f"Invalid base64 image data: {exc}") from exc

        if ref.startswith(("http://", "https://")):
            response = self.session.get(ref, timeout=self.config.image_timeout_seconds)
            response.raise_for_status()
            mime = (response.headers.get("Content-Type") or "").split(";", 1)[0].strip()
            return response.content, (mime if mime.startswith("image/") else self._guess_mime(ref))

        with open(os.path.expanduser(ref), "rb") as f:
            return f.read(), self._guess_mime(ref)

    @staticmethod
    def _guess_mime(ref: str) -> str:
        mime, _ = mimetypes.guess_type(ref.split("?", 1)[0])
        return mime if mime and mime.startswith("image/") else DEFAULT_MIME

    def load(self, ref: str) -> Image.Image:
        """Decode an image reference into an RGB image."""
        data, _ = self.read_bytes(ref)
        try:
            with Image.open(io.BytesIO(data)) as img:
                img.load()
                return img.convert("RGB")
        except UnidentifiedImageError as exc:
            raise ValueError(f"Unsupported image format for {self._describe(ref)}") from exc
        except Image.DecompressionBombError as exc:
            # 超过 Image.MAX_IMAGE_PIXELS 两倍的长截图，按无法加载处理
            raise ValueError(f"Image too large to decode for {self._describe(ref)}: {exc}") from exc

    def to_inline(self, ref: str) -> Tuple[str, str]:
        """(mime_type, base64 data) for sending the image inline to a vision model."""
        data, mime = self.read_bytes(ref)
        return mime, base64.b64encode(data).decode("ascii")

    def load_pages(self, refs: Sequence[str]) -> Tuple[List[Optional[Image.Image]], List[PageMeta]]:
        """
        Load every page; failed pages yield ``None`` and the default page size.

        Returns:
            Tuple of images (or None) and page metadata, index-aligned with refs
        """
        images: List[Optional[Image.Image]] = []
        pages: List[PageMeta] = []
        for i, ref in enumerate(refs):
            try:
                img = self.load(ref)
                images.append(img)
                pages.append(PageMeta(width=img.width, height=img.height))
            except (OSError, ValueError, requests.RequestException) as exc:
                logger.warning(f"Could not load page {i} ({self._describe(ref)}): {exc}; "
                               f"assuming {self.config.default_page_width}x{self.config.default_page_height}")
                images.append(None)
                pages.append(PageMeta(width=self.config.default_page_width,
                                      height=self.config.default_page_height))
        return images, pages

    @staticmethod
    def _describe(ref: str) -> str:
        return "inline data URL" if ref.startswith("data:") else ref

    def close(self) -> None:
        self.session.close()


def compose_pages(images: Sequence[Optional[Image.Image]], pages: Optional[Sequence[PageMeta]] = None,
                  background: str = "#0f1115") -> Composite:
    """
    Stitch pages vertically on a solid background.

    Raises:
        RenderError: When no page image is available
    """
    if not any(img is not None for img in images):
        raise RenderError("No page image could be loaded for rendering")
    if pages is None:
        pages = [PageMeta(img.width, img.height) if img is not None else PageMeta(375, 667) for img in images]
    offsets = page_offsets(pages)
    width = max(p.width for p in pages)
    height = sum(p.height for p in pages)

    canvas = Image.new("RGB", (width, height), hex_to_rgb(background))
    for img, offset in zip(images, offsets):
        if img is not None:
            canvas.paste(img.convert("RGB"), (0, offset))
    logger.debug(f"Composed {len(pages)} page(s) into {width}x{height} canvas")
    return Composite(image=canvas, pages=tuple(pages), offsets=tuple(offsets))
