"""Chat completion relay for OpenRouter and Gemini.

Each call is a single request/response exchange; the only retry is the
ordered fallback over configured model names.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

import httpx

from .config import ChatConfig, ChatProvider
from .debug import get_debug_logger
from .errors import (
    ConfigurationError,
    InvalidRequest,
    RateLimited,
    ServiceUnavailable,
    UpstreamError,
    UpstreamUnavailable,
    is_soft_failure,
)
from .fallback import FallbackExhausted, first_success

logger = logging.getLogger(__name__)

GEMINI_SAFETY_CATEGORIES = (
    "HARM_CATEGORY_HARASSMENT",
    "HARM_CATEGORY_HATE_SPEECH",
    "HARM_CATEGORY_SEXUALLY_EXPLICIT",
    "HARM_CATEGORY_DANGEROUS_CONTENT",
)
GEMINI_SAFETY_THRESHOLD = "BLOCK_MEDIUM_AND_ABOVE"


@dataclass(frozen=True)
class ChatReply:
    reply: str
    model: str


def _provider_error_detail(resp: httpx.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        return resp.text or f"HTTP {resp.status_code}"
    if isinstance(data, dict):
        err = data.get("error")
        if isinstance(err, dict) and err.get("message"):
            return str(err["message"])
        if isinstance(err, str):
            return err
        if data.get("message"):
            return str(data["message"])
    return resp.text or f"HTTP {resp.status_code}"


def _raise_for_status(resp: httpx.Response, provider: str) -> None:
    if resp.status_code < 400:
        return
    detail = _provider_error_detail(resp)
    if resp.status_code == 429:
        raise RateLimited(f"AI Error ({provider}): {detail}")
    if resp.status_code == 400:
        raise InvalidRequest(f"AI Error ({provider}): {detail}")
    if resp.status_code in (401, 403):
        raise UpstreamError(f"AI Error ({provider}): provider rejected the credentials")
    # 404 (unknown model) and 5xx move on to the next model
    raise UpstreamUnavailable(f"AI Error ({provider}): {detail}")


class ChatRelay:
    """Relay one user message (plus context) to the configured provider."""

    def __init__(self, config: ChatConfig, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config
        self._transport = transport

    def _timeout(self) -> httpx.Timeout:
        return httpx.Timeout(connect=10.0, read=self.config.timeout, write=10.0, pool=10.0)

    async def reply(self, message: str, context: Sequence[Dict[str, str]] = ()) -> ChatReply:
        provider = self.config.provider
        if provider == ChatProvider.ECHO:
            return ChatReply(reply=f"Echo: {message}", model="echo")
        if provider == ChatProvider.OPENROUTER:
            if not self.config.openrouter_api_key:
                raise ConfigurationError("Server configuration error: OpenRouter API key missing.")
            models = self.config.openrouter_models
            attempt = lambda model: self._openrouter(model, message, context)
        elif provider == ChatProvider.GEMINI:
            if not self.config.gemini_api_key:
                raise ConfigurationError("Server configuration error: Gemini API key missing.")
            models = (self.config.gemini_model,)
            attempt = lambda model: self._gemini(model, message, context)
        else:
            raise ConfigurationError(f"Unsupported provider: {provider}")

        try:
            model, text = await first_success(models, attempt, is_soft_failure)
        except FallbackExhausted as exc:
            raise ServiceUnavailable(f"No {provider.value} model is available right now; please try again") from exc
        return ChatReply(reply=text, model=model)

    async def _openrouter(self, model: str, message: str, context: Sequence[Dict[str, str]]) -> str:
        url = self.config.openrouter_base_url.rstrip("/") + "/chat/completions"
        headers = {
            "Authorization": f"Bearer {self.config.openrouter_api_key}",
            "Content-Type": "application/json",
        }
        if self.config.http_referer:
            headers["HTTP-Referer"] = self.config.http_referer
        if self.config.x_title:
            headers["X-Title"] = self.config.x_title

        messages: List[Dict[str, str]] = []
        if self.config.system_prompt:
            messages.append({"role": "system", "content": self.config.system_prompt})
        for item in context:
            role = "user" if item.get("role") == "user" else "assistant"
            messages.append({"role": role, "content": item.get("content", "")})
        messages.append({"role": "user", "content": message})
        body = {"model": model, "messages": messages, "temperature": self.config.temperature}

        debug = get_debug_logger()
        debug.debug_llm_requests(f"OpenRouter request: {url}, body: {body}")
        data = await self._post(url, headers, body, "OpenRouter")
        debug.debug_llm_responses(f"OpenRouter response: {data}")
        try:
            return data["choices"][0]["message"]["content"].strip()
        except (KeyError, IndexError, TypeError, AttributeError):
            raise UpstreamError("AI Error (OpenRouter): unexpected response schema")

    async def _gemini(self, model: str, message: str, context: Sequence[Dict[str, str]]) -> str:
        url = f"{self.config.gemini_base_url.rstrip('/')}/models/{model}:generateContent"
        contents = []
        if self.config.system_prompt:
            contents.append({"role": "user", "parts": [{"text": self.config.system_prompt}]})
        for item in context:
            role = "user" if item.get("role") == "user" else "model"
            contents.append({"role": role, "parts": [{"text": item.get("content", "")}]})
        contents.append({"role": "user", "parts": [{"text": message}]})
        body = {
            "contents": contents,
            "generationConfig": {
                "temperature": self.config.temperature,
                "topK": 40,
                "topP": 0.95,
                "maxOutputTokens": 2048,
            },
            "safetySettings": [
                {"category": category, "threshold": GEMINI_SAFETY_THRESHOLD}
                for category in GEMINI_SAFETY_CATEGORIES
            ],
        }

        debug = get_debug_logger()
        debug.debug_llm_requests(f"Gemini request: model={model}, body: {body}")
        data = await self._post(
            url,
            {"Content-Type": "application/json"},
            body,
            "Gemini",
            params={"key": self.config.gemini_api_key},
        )
        debug.debug_llm_responses(f"Gemini response: {data}")
        try:
            return data["candidates"][0]["content"]["parts"][0]["text"].strip()
        except (KeyError, IndexError, TypeError, AttributeError):
            raise UpstreamError("Sorry, I couldn't generate a response from Gemini. Please try again.")

    async def _post(self, url, headers, body, provider, params=None) -> dict:
        async with httpx.AsyncClient(timeout=self._timeout(), transport=self._transport) as client:
            try:
                resp = await client.post(url, headers=headers, json=body, params=params)
            except httpx.TimeoutException as exc:
                raise UpstreamUnavailable(f"AI response timed out ({provider}). Please try again.") from exc
            except httpx.HTTPError as exc:
                raise UpstreamUnavailable(f"AI request failed ({provider}): {exc!r}") from exc
        _raise_for_status(resp, provider)
        try:
            return resp.json()
        except ValueError:
            raise UpstreamError(f"AI Error ({provider}): response was not JSON")
