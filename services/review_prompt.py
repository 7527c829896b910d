"""
Prompt text sent to the vision model.
"""
from typing import Sequence

from models.data_models import Label


# 从好到坏排列，便于模型理解标签强度
LABEL_ORDER = tuple(label.value for label in reversed(list(Label)))


def system_prompt(language: str = "en") -> str:
    return "\n".join([
        'You are "Game Review", a reviewer of chat screenshots in the style of a chess game analysis.',
        "Read the conversation and judge every message in a single pass over the images provided.",
        "Respond with strict JSON only: no prose and no markdown.",
        "For every message bubble return: index (reading order, 0-based), side (sender|receiver), "
        "text, bbox [x, y, w, h] in pixels of the original image, image_index, label and confidence (0-1).",
        f"Valid labels, best to worst: {', '.join(LABEL_ORDER)}.",
        "Also return summary_line (one witty but safe line), counts (label -> number), "
        "ending (at most 40 characters) and elo (integer 0-3500).",
        "If you are unsure about a bbox, estimate it; never omit it.",
        f"Language: {language}.",
    ])


def user_prompt(image_refs: Sequence[str]) -> str:
    lines = [
        "TASK:",
        "- Decide sender vs receiver from the usual chat layout (sender bubbles sit on the right).",
        "- One entry per visual bubble; do not split a bubble into separate lines.",
        "- Bounding boxes must be tight rectangles around each bubble.",
        "- When several images are given, set image_index (0-based) for each message.",
        "- Keep your reasoning internal; output only the fields listed.",
        "Return ONLY JSON.",
        "IMAGES:",
    ]
    for i, ref in enumerate(image_refs):
        shown = ref if not ref.startswith("data:") else f"inline image {i}"
        lines.append(f"{i}: {shown}")
    return "\n".join(lines)
