"""
Vision model providers (Gemini and OpenAI) over a shared requests session,
plus JSON extraction from model text and the retry policy.
"""
import json
import logging
import re
import time
from typing import Any, Callable, List, Optional, Sequence, Tuple

import requests

from models.config import VisionConfig
from services.errors import ConfigurationError, VisionCallError, vision_error_for_status


logger = logging.getLogger(__name__)

InlineImage = Tuple[str, str]  # (mime_type, base64 data)


class _BaseVisionProvider:
    name: str = ""

    def __init__(self, session: requests.Session, api_key: str, model: str, base_url: str,
                 timeout_seconds: float):
        self.session = session
        self.api_key = (api_key or "").strip()
        self.model = (model or "").strip()
        self.base_url = (base_url or "").strip().rstrip("/")
        self.timeout_seconds = timeout_seconds

    @property
    def configured(self) -> bool:
        return bool(self.api_key and self.model)

    def generate(self, system_prompt: str, user_prompt: str, images: Sequence[InlineImage]) -> str:
        raise NotImplementedError

    def _post(self, url: str, payload: dict, headers: dict) -> Any:
        """POST JSON and map transport failures to VisionCallError."""
        try:
            response = self.session.post(url, json=payload, headers=headers, timeout=self.timeout_seconds)
        except requests.Timeout as exc:
            raise VisionCallError(f"{self.name} request timed out after {self.timeout_seconds}s",
                                  provider=self.name) from exc
        except requests.RequestException as exc:
            raise VisionCallError(f"{self.name} network error: {exc}", provider=self.name) from exc

        if response.status_code >= 400:
            detail = _extract_error_detail(response)
            raise vision_error_for_status(
                response.status_code,
                f"{self.name} request failed ({response.status_code}): {detail}",
                provider=self.name,
            )
        try:
            return response.json()
        except ValueError as exc:
            raise VisionCallError(f"{self.name} response was not valid JSON: {exc}", provider=self.name) from exc


class GeminiVisionProvider(_BaseVisionProvider):
    name = "gemini"

    @classmethod
    def from_config(cls, cfg: VisionConfig, session: requests.Session) -> "GeminiVisionProvider":
        return cls(session, cfg.google_api_key, cfg.gemini_model, cfg.gemini_base_url, cfg.timeout_seconds)

    def generate(self, system_prompt: str, user_prompt: str, images: Sequence[InlineImage]) -> str:
        parts: List[dict] = [{"text": f"{system_prompt}\n\n{user_prompt}"}]
        for mime_type, data in images:
            parts.append({"inline_data": {"mime_type": mime_type, "data": data}})
        payload = {
            "contents": [{"role": "user", "parts": parts}],
            "generationConfig": {
                "temperature": 0.1,
                "topK": 1,
                "topP": 0.8,
                "maxOutputTokens": 2048,
                "responseMimeType": "application/json",
            },
        }
        url = f"{self.base_url}/models/{self.model}:generateContent"
        body = self._post(url, payload, {
            "Content-Type": "application/json",
            "x-goog-api-key": self.api_key,
        })
        return _extract_gemini_text(body)


class OpenAIVisionProvider(_BaseVisionProvider):
    name = "openai"

    @classmethod
    def from_config(cls, cfg: VisionConfig, session: requests.Session) -> "OpenAIVisionProvider":
        return cls(session, cfg.openai_api_key, cfg.openai_model, cfg.openai_base_url, cfg.timeout_seconds)

    def generate(self, system_prompt: str, user_prompt: str, images: Sequence[InlineImage]) -> str:
        content: List[dict] = [{"type": "text", "text": user_prompt}]
        for mime_type, data in images:
            content.append({"type": "image_url", "image_url": {"url": f"data:{mime_type};base64,{data}"}})
        payload = {
            "model": self.model,
            "temperature": 0.2,
            "max_tokens": 1500,
            "response_format": {"type": "json_object"},
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": content},
            ],
        }
        body = self._post(f"{self.base_url}/chat/completions", payload, {
            "Accept": "application/json",
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        })
        return _extract_openai_text(body)


def build_providers(cfg: VisionConfig, session: requests.Session) -> List[_BaseVisionProvider]:
    """Providers in tier order: preferred first."""
    gemini = GeminiVisionProvider.from_config(cfg, session)
    openai = OpenAIVisionProvider.from_config(cfg, session)
    return [gemini, openai] if cfg.prefer_gemini else [openai, gemini]


def call_with_backoff(fn: Callable[[], Any], max_retries: int = 2, base_delay: float = 0.5,
                      sleep: Callable[[float], None] = time.sleep) -> Any:
    """
    调用 fn，仅在 429/5xx 时重试。

    - 最多重试 max_retries 次，第 n 次重试前等待 base_delay * n 秒；
    - 超时、网络错误与其他客户端错误直接抛出。
    """
    attempt = 0
    while True:
        try:
            return fn()
        except VisionCallError as exc:
            if not exc.retryable or attempt >= max_retries:
                raise
            attempt += 1
            delay = base_delay * attempt
            logger.warning(f"Vision call failed with {exc.status}; retry {attempt}/{max_retries} in {delay:.2f}s")
            sleep(delay)


class VisionClient:
    """Runs the provider tiers and returns the parsed model payload."""

    def __init__(self, providers: Sequence[_BaseVisionProvider], max_retries: int = 2,
                 backoff_base_seconds: float = 0.5, sleep: Callable[[float], None] = time.sleep):
        self.providers = list(providers)
        self.max_retries = max_retries
        self.backoff_base_seconds = backoff_base_seconds
        self.sleep = sleep

    @classmethod
    def from_config(cls, cfg: VisionConfig, session: requests.Session) -> "VisionClient":
        return cls(build_providers(cfg, session), cfg.max_retries, cfg.backoff_base_seconds)

    @property
    def configured(self) -> bool:
        return any(p.configured for p in self.providers)

    def require_configured(self) -> None:
        if not self.configured:
            raise ConfigurationError("Either GOOGLE_API_KEY or OPENAI_API_KEY is required")

    def analyze(self, system_prompt: str, user_prompt: str,
                images: Sequence[InlineImage]) -> Tuple[Any, str]:
        """
        Call providers in tier order until one returns parseable JSON.

        Returns:
            Tuple[Any, str]: Parsed payload and the name of the provider that produced it

        Raises:
            ConfigurationError: No provider has credentials
            VisionCallError: Every configured provider failed (the last error)
        """
        self.require_configured()
        last_error: Optional[VisionCallError] = None
        for provider in self.providers:
            if not provider.configured:
                continue
            try:
                text = call_with_backoff(
                    lambda: provider.generate(system_prompt, user_prompt, images),
                    max_retries=self.max_retries,
                    base_delay=self.backoff_base_seconds,
                    sleep=self.sleep,
                )
                payload = parse_model_json(text)
                logger.info(f"Vision analysis answered by {provider.name}")
                return payload, provider.name
            except VisionCallError as exc:
                if exc.provider is None:
                    exc.provider = provider.name
                logger.warning(f"Vision provider {provider.name} failed: {exc}")
                last_error = exc
        raise last_error


def _score_candidate(payload: Any) -> int:
    if isinstance(payload, list):
        return 2 if any(isinstance(item, dict) for item in payload) else 0
    if not isinstance(payload, dict):
        return 0
    score = 0
    if isinstance(payload.get("messages"), list):
        score += 3
    if isinstance(payload.get("conversation"), dict):
        score += 3
    for key in ("summary_line", "summary", "elo", "ending", "counts", "counts_per_label", "analysis"):
        if key in payload:
            score += 1
    return score


def parse_model_json(text: str) -> Any:
    """
    Extract the review JSON from model text.

    Accepts plain JSON, JSON inside a code fence, or JSON embedded in prose.

    Raises:
        VisionCallError: Non-retryable, when no usable JSON is present
    """
    if not isinstance(text, str) or not text.strip():
        raise VisionCallError("Model returned an empty response")
    stripped = text.strip()

    candidates: List[Tuple[int, int, Any]] = []

    def _append(payload: Any, position: int) -> None:
        score = _score_candidate(payload)
        if score > 0:
            candidates.append((score, -position, payload))

    try:
        _append(json.loads(stripped), 0)
    except ValueError:
        pass

    for match in re.finditer(r"```(?:json)?\s*([\[{].*?[\]}])\s*```", stripped, flags=re.DOTALL | re.IGNORECASE):
        try:
            _append(json.loads(match.group(1)), match.start())
        except ValueError:
            pass

    decoder = json.JSONDecoder()
    for match in re.finditer(r"[\[{]", stripped):
        try:
            payload, _ = decoder.raw_decode(stripped[match.start():])
            _append(payload, match.start())
        except ValueError:
            pass

    if not candidates:
        raise VisionCallError(f"Model response did not contain valid JSON: {stripped[:120]!r}")
    candidates.sort(key=lambda item: (item[0], item[1]), reverse=True)
    return candidates[0][2]


def _extract_gemini_text(payload: Any) -> str:
    if not isinstance(payload, dict):
        raise VisionCallError("Invalid Gemini response payload", provider="gemini")
    candidates = payload.get("candidates")
    if not isinstance(candidates, list) or not candidates:
        raise VisionCallError("Gemini response does not contain candidates", provider="gemini")
    content = candidates[0].get("content") if isinstance(candidates[0], dict) else None
    parts = content.get("parts") if isinstance(content, dict) else None
    if isinstance(parts, list):
        chunks = [p["text"] for p in parts if isinstance(p, dict) and isinstance(p.get("text"), str)]
        if chunks:
            return "\n".join(chunks)
    raise VisionCallError("Gemini response did not include text content", provider="gemini")


def _extract_openai_text(payload: Any) -> str:
    if not isinstance(payload, dict):
        raise VisionCallError("Invalid OpenAI response payload", provider="openai")
    choices = payload.get("choices")
    if not isinstance(choices, list) or not choices:
        raise VisionCallError("OpenAI response does not contain choices", provider="openai")
    message = choices[0].get("message") if isinstance(choices[0], dict) else None
    if not isinstance(message, dict):
        raise VisionCallError("OpenAI response missing message payload", provider="openai")

    content = message.get("content")
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        chunks = [item["text"] for item in content
                  if isinstance(item, dict) and item.get("type") == "text" and isinstance(item.get("text"), str)]
        if chunks:
            return "\n".join(chunks)
    raise VisionCallError("OpenAI response did not include text content", provider="openai")


def _extract_error_detail(response: Any) -> str:
    try:
        payload = response.json()
        if isinstance(payload, dict):
            if isinstance(payload.get("error"), dict):
                message = payload["error"].get("message")
                if isinstance(message, str) and message:
                    return message
            detail = payload.get("detail")
            if isinstance(detail, str) and detail:
                return detail
    except ValueError:
        pass
    body = (response.text or "").strip()
    return body[:300] if body else "Unknown provider error"
