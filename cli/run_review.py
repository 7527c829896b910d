import argparse
import json
import logging
import sys
from typing import List, Optional

from controllers.review_context import ReviewContext
from controllers.review_controller import Degraded, Fatal, ReviewController
from services.config_manager import ConfigManager
from services.errors import ReviewError, friendly_message
from services.logging_manager import LoggingManager
from services.storage_manager import StorageManager


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Chat screenshot reviewer")
    parser.add_argument("images", nargs="+", help="image paths, http(s) URLs or data URLs, one per page")
    parser.add_argument("--lang", default="en", help="language hint for the model")
    parser.add_argument("--prefer", choices=["gemini", "openai"], help="vision provider to try first")
    parser.add_argument("--no-ocr-fallback", action="store_true", help="skip the OCR fallback tier")
    parser.add_argument("--render", action="store_true", help="also write the annotated PNG")
    parser.add_argument("--outdir", help="override output directory")
    parser.add_argument("--prefix", default="review", help="filename prefix for output")
    parser.add_argument("--formats", help="review output formats, comma-separated (json,csv)")
    parser.add_argument("--config", help="path to config.yaml/config.json")
    parser.add_argument("--print", dest="print_json", action="store_true", help="print the review JSON to stdout")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """
    评审 CLI 入口。

    - 命令行参数覆盖配置文件中的提供方偏好、OCR 回退与输出目录；
    - 未配置任何 API key 时以退出码 2 结束；
    - 降级结果（OCR/应急）仍会保存，并在日志中说明原因。
    """
    args = build_parser().parse_args(argv)

    cfg_mgr = ConfigManager(args.config)
    app_cfg = cfg_mgr.get_config()
    if args.prefer:
        app_cfg.vision.prefer_gemini = args.prefer == "gemini"
    if args.no_ocr_fallback:
        app_cfg.pipeline.disable_ocr_fallback = True
    if args.outdir:
        app_cfg.output.directory = args.outdir
    if args.formats:
        app_cfg.output.formats = [f.strip().lower() for f in args.formats.split(",") if f.strip()]
    app_cfg.validate()

    LoggingManager().setup(app_cfg)
    logger = logging.getLogger(__name__)

    with ReviewContext.from_config(app_cfg) as context:
        controller = ReviewController(context)
        outcome = controller.run(args.images, args.lang)
        if isinstance(outcome, Fatal):
            logger.error(friendly_message(outcome.error))
            return 2
        if isinstance(outcome, Degraded):
            logger.warning(f"Degraded review: {outcome.reason}")

        review = outcome.review
        storage = StorageManager(app_cfg.output)
        paths = storage.save_review_multiple(review, args.prefix, app_cfg.output.formats)

        if args.render:
            try:
                png = controller.render_annotated(review, args.images)
                paths.append(storage.save_image(png, args.prefix))
            except ReviewError as exc:
                logger.error(f"Render failed: {friendly_message(exc)} ({exc})")

    if args.print_json:
        print(json.dumps(review.to_dict(), ensure_ascii=False, indent=2))
    logger.info(f"Review: elo {review.elo}, {len(review.messages)} message(s), ending '{review.ending}'")
    for p in paths:
        logger.info(f"Wrote {p}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
