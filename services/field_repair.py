"""
Field-mapping repair applied to model output before validation.

Each rule is a pure function ``(obj) -> obj`` that returns a new object and
logs every decision it makes. REPAIR_RULES fixes the order.
"""
import logging
import math
import numbers
from typing import Any, Callable, Dict, List, Tuple

from models.data_models import Label
from services.rating import rating


logger = logging.getLogger(__name__)

DEFAULT_ENDING = "Analysis complete"
DEFAULT_SUMMARY = "Chat analysis completed successfully."
DEFAULT_BBOX = [0, 0, 100, 50]
ENDING_LIMIT = 40
SUMMARY_LIMIT = 200

_LABELS = {label.value for label in Label}

RepairRule = Callable[[Any], Any]


def _messages(obj: Dict[str, Any]) -> List[Any]:
    value = obj.get("messages")
    return value if isinstance(value, list) else []


def _is_real(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, numbers.Real):
        return False
    return not (math.isnan(float(value)) or math.isinf(float(value)))


def wrap_bare_message_list(obj: Any) -> Any:
    if isinstance(obj, list):
        logger.info(f"Repair: wrapped bare list of {len(obj)} message(s) into an object")
        return {"messages": list(obj)}
    return obj


def flatten_conversation_layout(obj: Any) -> Any:
    """
    将旧版 {conversation: {messages}, analysis: {...}} 结构展开为扁平结构。

    analysis.moves 中的 label/confidence 按 index 合并回对应消息。
    """
    if not isinstance(obj, dict) or not isinstance(obj.get("conversation"), dict):
        return obj
    conversation = obj["conversation"]
    analysis = obj.get("analysis") if isinstance(obj.get("analysis"), dict) else {}

    moves = {}
    for move in analysis.get("moves") or []:
        if isinstance(move, dict) and "index" in move:
            moves[move["index"]] = move

    messages = []
    for position, raw in enumerate(conversation.get("messages") or []):
        if not isinstance(raw, dict):
            messages.append(raw)
            continue
        message = dict(raw)
        move = moves.get(message.get("index", position))
        if move is not None:
            if "label" in move and "label" not in message:
                message["label"] = move["label"]
            if "confidence" in move and "confidence" not in message:
                message["confidence"] = move["confidence"]
        messages.append(message)

    flat = {k: v for k, v in obj.items() if k not in ("conversation", "analysis")}
    flat["messages"] = messages
    for source, target in (("summary_line", "summary_line"), ("elo_estimate", "elo"), ("ending", "ending")):
        if source in analysis and target not in flat:
            flat[target] = analysis[source]
    logger.info(f"Repair: flattened conversation/analysis layout ({len(messages)} message(s), {len(moves)} move(s))")
    return flat


def rename_legacy_fields(obj: Any) -> Any:
    if not isinstance(obj, dict):
        return obj
    out = dict(obj)
    for legacy, canonical in (("counts_per_label", "counts"), ("summary", "summary_line")):
        if legacy in out:
            value = out.pop(legacy)
            if canonical not in out:
                out[canonical] = value
                logger.info(f"Repair: renamed '{legacy}' to '{canonical}'")
            else:
                logger.info(f"Repair: dropped '{legacy}' because '{canonical}' is present")

    messages = _messages(out)
    if messages:
        renamed = 0
        fixed = []
        for message in messages:
            if isinstance(message, dict) and "quality" in message:
                message = dict(message)
                quality = message.pop("quality")
                message.setdefault("label", quality)
                renamed += 1
            fixed.append(message)
        if renamed:
            out["messages"] = fixed
            logger.info(f"Repair: renamed 'quality' to 'label' on {renamed} message(s)")
    return out


def sanitize_messages(obj: Any) -> Any:
    """Fill per-message defaults; entries that are not objects are left for validation."""
    if not isinstance(obj, dict) or not isinstance(obj.get("messages"), list):
        return obj
    out = dict(obj)
    sanitized = []
    for position, raw in enumerate(obj["messages"]):
        if not isinstance(raw, dict):
            sanitized.append(raw)
            continue
        message = dict(raw)
        text = message.get("text")
        if text is None or (isinstance(text, str) and not text.strip()):
            message["text"] = f"[Message {position + 1}]"
            logger.info(f"Repair: message {position} has empty text; using placeholder")
        elif not isinstance(text, str):
            message["text"] = str(text)

        side = message.get("side")
        if isinstance(side, str):
            message["side"] = side.strip().lower()
        elif side is None:
            message["side"] = "unknown"

        label = message.get("label")
        if label is None:
            message["label"] = Label.INTERESTING.value
            logger.info(f"Repair: message {position} has no label; using 'interesting'")
        elif isinstance(label, str):
            message["label"] = label.strip().lower()

        if not isinstance(message.get("bbox"), (list, tuple)):
            message["bbox"] = list(DEFAULT_BBOX)
            logger.info(f"Repair: message {position} has no usable bbox; using {DEFAULT_BBOX}")

        if message.get("index") is None:
            message["index"] = position
        sanitized.append(message)
    out["messages"] = sanitized
    return out


def prune_counts(obj: Any) -> Any:
    """
    counts 仅作参考（最终按气泡重算），不能因为它让整份分析校验失败。

    - 标签键去空白并转小写；
    - 未知标签、非数值或负数条目丢弃并记录；
    - counts 不是字典时整体移除，交给 synthesize_counts 重建。
    """
    if not isinstance(obj, dict) or "counts" not in obj:
        return obj
    out = dict(obj)
    counts = out["counts"]
    if not isinstance(counts, dict):
        out.pop("counts")
        logger.info(f"Repair: counts is not a mapping ({type(counts).__name__}); dropped")
        return out

    kept: Dict[str, Any] = {}
    dropped = []
    for key, value in counts.items():
        label = key.strip().lower() if isinstance(key, str) else key
        if label in _LABELS and _is_real(value) and value >= 0:
            kept[label] = kept.get(label, 0) + value
        else:
            dropped.append(key)
    if dropped:
        logger.info(f"Repair: dropped counts entries {dropped}")
    out["counts"] = kept
    return out


def synthesize_counts(obj: Any) -> Any:
    if not isinstance(obj, dict):
        return obj
    counts = obj.get("counts")
    if isinstance(counts, dict) and counts:
        return obj
    histogram: Dict[str, int] = {}
    for message in _messages(obj):
        if isinstance(message, dict) and message.get("label") in _LABELS:
            histogram[message["label"]] = histogram.get(message["label"], 0) + 1
    out = dict(obj)
    out["counts"] = histogram
    logger.info(f"Repair: synthesized counts from messages: {histogram}")
    return out


def synthesize_elo(obj: Any) -> Any:
    if not isinstance(obj, dict):
        return obj
    out = dict(obj)
    if "overall_elo" in out:
        out.pop("overall_elo")
        logger.info("Repair: discarded legacy 'overall_elo'")
    elo = out.get("elo")
    if _is_real(elo):
        fixed = max(0, min(3500, int(math.floor(float(elo) + 0.5))))
        if fixed != elo:
            logger.info(f"Repair: normalized elo {elo} -> {fixed}")
        out["elo"] = fixed
    else:
        counts = out.get("counts") if isinstance(out.get("counts"), dict) else None
        out["elo"] = rating(counts)
        logger.info(f"Repair: elo missing or non-numeric ({elo!r}); computed {out['elo']} from counts")
    return out


def truncate_ending(obj: Any) -> Any:
    if not isinstance(obj, dict):
        return obj
    out = dict(obj)
    ending = out.get("ending")
    if not isinstance(ending, str) or len(ending.strip()) < 2:
        out["ending"] = DEFAULT_ENDING
        logger.info(f"Repair: ending missing or too short ({ending!r}); using default")
    elif len(ending) > ENDING_LIMIT:
        out["ending"] = ending[:ENDING_LIMIT - 3] + "..."
        logger.info(f"Repair: truncated ending of {len(ending)} chars")
    return out


def default_summary_line(obj: Any) -> Any:
    if not isinstance(obj, dict):
        return obj
    out = dict(obj)
    summary = out.get("summary_line")
    if not isinstance(summary, str) or len(summary.strip()) < 3:
        out["summary_line"] = DEFAULT_SUMMARY
        logger.info(f"Repair: summary_line missing or too short ({summary!r}); using default")
    elif len(summary) > SUMMARY_LIMIT:
        out["summary_line"] = summary[:SUMMARY_LIMIT - 3] + "..."
        logger.info(f"Repair: truncated summary_line of {len(summary)} chars")
    return out


REPAIR_RULES: Tuple[RepairRule, ...] = (
    wrap_bare_message_list,
    flatten_conversation_layout,
    rename_legacy_fields,
    sanitize_messages,
    prune_counts,
    synthesize_counts,
    synthesize_elo,
    truncate_ending,
    default_summary_line,
)


def repair(obj: Any, rules: Tuple[RepairRule, ...] = REPAIR_RULES) -> Any:
    """Apply the repair rules in order."""
    for rule in rules:
        obj = rule(obj)
    return obj
