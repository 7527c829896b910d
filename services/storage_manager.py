"""
Storage manager for exporting reviews and annotated images to files.
Supports JSON and CSV for reviews, PNG for rendered images.
"""
import csv
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Sequence

from models.config import OutputConfig
from models.data_models import Review


class StorageManager:
    """
    Handles persistence of Review objects and rendered images to disk.
    """

    CSV_FIELDS = ["index", "image_index", "side", "label", "confidence", "x", "y", "width", "height", "text"]

    def __init__(self, output_config: Optional[OutputConfig] = None):
        self.logger = logging.getLogger(__name__)
        self.config = output_config or OutputConfig()
        self._ensure_output_dir()

    def _ensure_output_dir(self) -> None:
        """Create output directory if it does not exist."""
        out_dir = Path(self.config.directory)
        out_dir.mkdir(parents=True, exist_ok=True)
        self.logger.debug(f"Output directory ready: {out_dir}")

    def _generate_filename(self, prefix: str, ext: str) -> Path:
        ts = datetime.now().strftime("%Y%m%d_%H%M%S")
        return Path(self.config.directory) / f"{prefix}_{ts}.{ext}"

    def save_review(self, review: Review, filename_prefix: str = "review") -> Path:
        """Write the review as JSON and return its path."""
        path = self._generate_filename(filename_prefix, "json")
        with path.open("w", encoding="utf-8") as f:
            json.dump(review.to_dict(), f, ensure_ascii=False, indent=2)
        self.logger.info(f"Saved review with {len(review.messages)} message(s) to {path}")
        return path

    def save_review_csv(self, review: Review, filename_prefix: str = "review") -> Path:
        """每个气泡一行，bbox 展开为 x/y/width/height 四列。"""
        path = self._generate_filename(filename_prefix, "csv")
        with path.open("w", encoding="utf-8", newline="") as f:
            writer = csv.DictWriter(f, fieldnames=self.CSV_FIELDS)
            writer.writeheader()
            for m in review.messages:
                writer.writerow({
                    "index": m.index,
                    "image_index": m.image_index,
                    "side": m.side.value,
                    "label": m.label.value,
                    "confidence": f"{m.confidence:.2f}",
                    "x": m.bbox.x,
                    "y": m.bbox.y,
                    "width": m.bbox.width,
                    "height": m.bbox.height,
                    "text": m.text,
                })
        self.logger.info(f"Saved review CSV to {path}")
        return path

    def save_review_multiple(self, review: Review, filename_prefix: str, formats: Sequence[str]) -> List[Path]:
        writers = {"json": self.save_review, "csv": self.save_review_csv}
        paths: List[Path] = []
        for fmt in formats:
            key = fmt.lower().strip()
            if key not in writers:
                raise ValueError(f"Unsupported output format: {fmt}")
            paths.append(writers[key](review, filename_prefix))
        return paths

    def save_image(self, png_bytes: bytes, filename_prefix: str = "review") -> Path:
        """Write rendered PNG bytes and return the path."""
        path = self._generate_filename(filename_prefix, "png")
        path.write_bytes(png_bytes)
        self.logger.info(f"Saved annotated image ({len(png_bytes)} bytes) to {path}")
        return path
