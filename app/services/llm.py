import json
import logging
import re
from typing import Any

import httpx
from tenacity import Retrying, before_sleep_log, retry_if_exception, stop_after_attempt, stop_after_delay, wait_exponential

from app.config import settings

logger = logging.getLogger(__name__)

_RETRYABLE_MARKERS = ("over capacity", "rate limit", "timeout", "timed out", "deadline exceeded")
_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


class LLMError(RuntimeError):
    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


def is_retryable_error(exc: BaseException) -> bool:
    if isinstance(exc, (httpx.TimeoutException, httpx.TransportError)):
        return True
    if isinstance(exc, LLMError):
        if exc.status_code is not None and (exc.status_code == 429 or exc.status_code >= 500):
            return True
        message = str(exc).lower()
        return any(marker in message for marker in _RETRYABLE_MARKERS)
    return False


def resolve_chat_endpoint(provider: str, base_url: str) -> str:
    raw_base = str(base_url or "").strip()
    if raw_base:
        base = raw_base.rstrip("/")
        if base.endswith("/chat/completions"):
            return base
        if base.endswith("/v1"):
            return f"{base}/chat/completions"
        return f"{base}/v1/chat/completions"
    code = str(provider or "").strip().lower()
    endpoints = {
        "openai": "https://api.openai.com/v1/chat/completions",
        "openrouter": "https://openrouter.ai/api/v1/chat/completions",
        "groq": "https://api.groq.com/openai/v1/chat/completions",
        "together": "https://api.together.xyz/v1/chat/completions",
        "mistral": "https://api.mistral.ai/v1/chat/completions",
    }
    return endpoints.get(code, endpoints["openai"])


def _post_chat(endpoint: str, headers: dict[str, str], payload: dict[str, Any], timeout: float) -> str:
    with httpx.Client(timeout=timeout, follow_redirects=True) as client:
        response = client.post(endpoint, headers=headers, json=payload)
    if response.status_code >= 400:
        raise LLMError(f"LLM API error {response.status_code}: {response.text[:300]}", status_code=response.status_code)
    try:
        content = response.json()["choices"][0]["message"].get("content", "")
    except (ValueError, LookupError, AttributeError, TypeError) as exc:
        raise LLMError("Некорректный ответ модели") from exc
    if isinstance(content, list):
        content = "".join(str(part.get("text", "")) for part in content if isinstance(part, dict))
    content = str(content or "").strip()
    if not content:
        raise LLMError("Пустой ответ модели")
    return content


def chat_completion(
    messages: list[dict[str, Any]],
    model: str | None = None,
    temperature: float = 0.5,
    max_tokens: int = 2000,
    json_mode: bool = False,
) -> str:
    if not settings.llm_api_key:
        raise LLMError("Не задан ключ LLM API")
    payload: dict[str, Any] = {
        "model": model or settings.llm_text_model,
        "messages": messages,
        "temperature": temperature,
        "max_tokens": max_tokens,
    }
    if json_mode:
        payload["response_format"] = {"type": "json_object"}
    headers = {"Authorization": f"Bearer {settings.llm_api_key}", "Content-Type": "application/json"}
    endpoint = resolve_chat_endpoint(settings.llm_provider, settings.llm_base_url)

    retrying = Retrying(
        stop=stop_after_attempt(max(1, settings.llm_max_retries)) | stop_after_delay(settings.llm_timeout_sec * 3),
        wait=wait_exponential(multiplier=settings.llm_retry_base_delay_sec, max=settings.llm_retry_max_delay_sec),
        retry=retry_if_exception(is_retryable_error),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    try:
        for attempt in retrying:
            with attempt:
                return _post_chat(endpoint, headers, payload, settings.llm_timeout_sec)
    except httpx.TimeoutException as exc:
        raise LLMError(f"LLM request timeout: {exc}") from exc
    except httpx.HTTPError as exc:
        raise LLMError(f"LLM request failed: {exc}") from exc
    raise LLMError("LLM request was not attempted")


def parse_json_reply(content: str) -> dict[str, Any]:
    text = _FENCE_RE.sub("", content.strip())
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        start, end = text.find("{"), text.rfind("}")
        if start < 0 or end <= start:
            raise LLMError("Модель вернула некорректный JSON")
        try:
            data = json.loads(text[start : end + 1])
        except json.JSONDecodeError as exc:
            raise LLMError("Модель вернула некорректный JSON") from exc
    if not isinstance(data, dict):
        raise LLMError("Модель вернула некорректный JSON")
    return data


def chat_json(messages: list[dict[str, Any]], model: str | None = None, **kwargs: Any) -> dict[str, Any]:
    return parse_json_reply(chat_completion(messages, model=model, json_mode=True, **kwargs))
