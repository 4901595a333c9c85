"""Provider Adapters — wire-level handling for each generation provider.

Each adapter turns a ``GenerationRequest`` into one provider HTTP call and
returns a ``RawProviderResponse`` holding either the raw model text or a
failure from the fixed taxonomy. Adapters never retry and never parse the
model's text; retries and recovery belong to the orchestrator.

Status mapping shared by all adapters:
  - 429 (and Anthropic's 529 "overloaded") → throttled
  - 401 / 403 → auth
  - 5xx, network errors, timeouts → transport
  - 2xx without text (Gemini SAFETY, empty choices) → empty-response
  - anything else → unknown

Vendor-specific behaviors:
  - Groq / OpenAI / Together AI: OpenAI-compatible chat completions, vision via data-URI ``image_url``
  - Anthropic: Messages API with base64 image blocks
  - Gemini: generateContent with ``inline_data`` parts, API key as query param
  - HuggingFace: Inference API; images go through a captioning model and
    the caption is reduced to a keyword ingredient list
"""

from __future__ import annotations

import json
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any, Protocol

import httpx

from mealgen.gateway.prompts import build_prompt, system_prompt_for
from mealgen.gateway.types import (
    FailureKind,
    GenerationRequest,
    RawProviderResponse,
    RequestKind,
)

logger = logging.getLogger(__name__)

_DETAIL_LIMIT = 300


class ProviderAdapter(Protocol):
    """What the orchestrator needs from an adapter."""

    provider_id: str

    async def call(self, request: GenerationRequest) -> RawProviderResponse: ...


def classify_status(status_code: int) -> FailureKind | None:
    """Map an HTTP status to the failure taxonomy (None for success)."""
    if status_code in (429, 529):
        return FailureKind.THROTTLED
    if status_code in (401, 403):
        return FailureKind.AUTH
    if status_code >= 500:
        return FailureKind.TRANSPORT
    if status_code >= 400:
        return FailureKind.UNKNOWN
    return None


class BaseProviderAdapter(ABC):
    """Base class for all provider adapters.

    Subclasses describe the call (``build_call``) and where the text lives in
    the provider's JSON (``extract_text``); the HTTP round trip and failure
    classification are shared.
    """

    provider_id: str

    def __init__(self, api_key: str, timeout: float = 60.0, **kwargs):
        self.api_key = api_key
        self.timeout = timeout

    @abstractmethod
    def build_call(self, request: GenerationRequest) -> dict[str, Any]:
        """Return ``httpx.AsyncClient.post`` kwargs (url, json, headers, params)."""
        ...

    @abstractmethod
    def extract_text(self, data: Any, request: GenerationRequest) -> str:
        """Pull the model's text out of a decoded 2xx body ("" if absent)."""
        ...

    def model_version(self, data: Any) -> str:
        if isinstance(data, dict):
            return str(data.get("model", ""))
        return ""

    async def call(self, request: GenerationRequest) -> RawProviderResponse:
        start = time.monotonic()
        post_kwargs = self.build_call(request)

        def _elapsed() -> int:
            return int((time.monotonic() - start) * 1000)

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(**post_kwargs)

            failure = classify_status(resp.status_code)
            if failure is not None:
                logger.info("%s answered HTTP %d (%s)", self.provider_id, resp.status_code, failure.value)
                return RawProviderResponse.failed(
                    self.provider_id,
                    failure,
                    detail=resp.text[:_DETAIL_LIMIT],
                    status_code=resp.status_code,
                    latency_ms=_elapsed(),
                )

            data = resp.json()
            text = self.extract_text(data, request)

        except httpx.TimeoutException:
            return RawProviderResponse.failed(
                self.provider_id,
                FailureKind.TRANSPORT,
                detail=f"Timeout after {self.timeout}s",
                latency_ms=_elapsed(),
            )
        except httpx.TransportError as e:
            return RawProviderResponse.failed(
                self.provider_id,
                FailureKind.TRANSPORT,
                detail=f"{type(e).__name__}: {e}",
                latency_ms=_elapsed(),
            )
        except ValueError as e:
            # Undecodable body on a 2xx
            return RawProviderResponse.failed(
                self.provider_id,
                FailureKind.UNKNOWN,
                detail=f"Malformed response body: {e}",
                status_code=resp.status_code,
                latency_ms=_elapsed(),
            )

        if not text or not text.strip():
            return RawProviderResponse.failed(
                self.provider_id,
                FailureKind.EMPTY_RESPONSE,
                detail="Provider returned no text",
                status_code=resp.status_code,
                latency_ms=_elapsed(),
            )

        return RawProviderResponse(
            provider_id=self.provider_id,
            text=text,
            status_code=resp.status_code,
            latency_ms=_elapsed(),
            model_version=self.model_version(data),
        )


# ---------------------------------------------------------------------------
# OpenAI-compatible chat completions (Groq, OpenAI, Together AI)
# ---------------------------------------------------------------------------


class OpenAICompatibleAdapter(BaseProviderAdapter):
    """Chat completions adapter; vision requests send the photo as a data URI."""

    api_url: str
    text_model: str
    vision_model: str

    def __init__(self, api_key: str, timeout: float = 60.0, model: str = "", vision_model: str = "", **kwargs):
        super().__init__(api_key, timeout=timeout, **kwargs)
        if model:
            self.text_model = model
        if vision_model:
            self.vision_model = vision_model

    def build_call(self, request: GenerationRequest) -> dict[str, Any]:
        prompt = build_prompt(request)
        messages: list[dict[str, Any]] = []

        if request.kind == RequestKind.IMAGE_RECOGNITION:
            model = self.vision_model
            messages.append(
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": prompt},
                        {"type": "image_url", "image_url": {"url": request.image.data_url}},
                    ],
                }
            )
        else:
            model = self.text_model
            system_prompt = system_prompt_for(request)
            if system_prompt:
                messages.append({"role": "system", "content": system_prompt})
            messages.append({"role": "user", "content": prompt})

        return {
            "url": self.api_url,
            "json": {
                "model": model,
                "messages": messages,
                "max_tokens": request.max_tokens,
                "temperature": request.temperature,
            },
            "headers": {
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
        }

    def extract_text(self, data: Any, request: GenerationRequest) -> str:
        if not isinstance(data, dict):
            return ""
        choices = data.get("choices") or []
        if not choices:
            return ""
        message = choices[0].get("message") or {}
        return message.get("content") or ""


class GroqAdapter(OpenAICompatibleAdapter):
    provider_id = "groq"
    api_url = "https://api.groq.com/openai/v1/chat/completions"
    text_model = "openai/gpt-oss-120b"
    vision_model = "meta-llama/llama-4-maverick-17b-128e-instruct"


class OpenAIAdapter(OpenAICompatibleAdapter):
    provider_id = "openai"
    api_url = "https://api.openai.com/v1/chat/completions"
    text_model = "gpt-4o-mini"
    vision_model = "gpt-4o-mini"


class TogetherAdapter(OpenAICompatibleAdapter):
    provider_id = "together"
    api_url = "https://api.together.xyz/v1/chat/completions"
    text_model = "meta-llama/Meta-Llama-3.1-8B-Instruct-Turbo"
    vision_model = "meta-llama/Llama-3.2-11B-Vision-Instruct-Turbo"


# ---------------------------------------------------------------------------
# Anthropic Messages API
# ---------------------------------------------------------------------------


class AnthropicAdapter(BaseProviderAdapter):
    """Anthropic Messages API adapter."""

    provider_id = "anthropic"
    api_url = "https://api.anthropic.com/v1/messages"
    default_model = "claude-sonnet-4-20250514"
    api_version = "2023-06-01"

    def __init__(self, api_key: str, timeout: float = 60.0, model: str = "", **kwargs):
        super().__init__(api_key, timeout=timeout, **kwargs)
        self.model = model or self.default_model

    def build_call(self, request: GenerationRequest) -> dict[str, Any]:
        prompt = build_prompt(request)
        if request.kind == RequestKind.IMAGE_RECOGNITION:
            content: list[dict[str, Any]] | str = [
                {
                    "type": "image",
                    "source": {
                        "type": "base64",
                        "media_type": request.image.media_type,
                        "data": request.image.image_base64,
                    },
                },
                {"type": "text", "text": prompt},
            ]
        else:
            content = prompt

        payload: dict[str, Any] = {
            "model": self.model,
            "max_tokens": request.max_tokens,
            "temperature": request.temperature,
            "messages": [{"role": "user", "content": content}],
        }
        system_prompt = system_prompt_for(request)
        if system_prompt:
            payload["system"] = system_prompt

        return {
            "url": self.api_url,
            "json": payload,
            "headers": {
                "x-api-key": self.api_key,
                "anthropic-version": self.api_version,
                "Content-Type": "application/json",
            },
        }

    def extract_text(self, data: Any, request: GenerationRequest) -> str:
        if not isinstance(data, dict):
            return ""
        blocks = data.get("content") or []
        return "".join(b.get("text", "") for b in blocks if isinstance(b, dict) and b.get("type") == "text")


# ---------------------------------------------------------------------------
# Gemini (Google AI)
# ---------------------------------------------------------------------------


class GeminiAdapter(BaseProviderAdapter):
    """Google Gemini adapter; SAFETY-blocked candidates come back as empty-response."""

    provider_id = "gemini"
    default_model = "gemini-2.0-flash"
    api_url_template = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"

    def __init__(self, api_key: str, timeout: float = 60.0, model: str = "", **kwargs):
        super().__init__(api_key, timeout=timeout, **kwargs)
        self.model = model or self.default_model

    def build_call(self, request: GenerationRequest) -> dict[str, Any]:
        parts: list[dict[str, Any]] = [{"text": build_prompt(request)}]
        if request.kind == RequestKind.IMAGE_RECOGNITION:
            parts.append(
                {
                    "inline_data": {
                        "mime_type": request.image.media_type,
                        "data": request.image.image_base64,
                    }
                }
            )

        payload: dict[str, Any] = {
            "contents": [{"role": "user", "parts": parts}],
            "generationConfig": {
                "temperature": request.temperature,
                "maxOutputTokens": request.max_tokens,
            },
        }

        # System instruction (separate from contents in Gemini API)
        system_prompt = system_prompt_for(request)
        if system_prompt:
            payload["systemInstruction"] = {"parts": [{"text": system_prompt}]}

        return {
            "url": self.api_url_template.format(model=self.model),
            "json": payload,
            "params": {"key": self.api_key},
            "headers": {"Content-Type": "application/json"},
        }

    def extract_text(self, data: Any, request: GenerationRequest) -> str:
        if not isinstance(data, dict):
            return ""
        candidates = data.get("candidates") or []
        if not candidates:
            block_reason = (data.get("promptFeedback") or {}).get("blockReason")
            if block_reason:
                logger.info("Gemini blocked the prompt: %s", block_reason)
            return ""

        candidate = candidates[0]
        if candidate.get("finishReason") == "SAFETY":
            logger.info("Gemini SAFETY filter triggered")
        parts = (candidate.get("content") or {}).get("parts") or []
        # Skip thinking parts, keep answer text only
        return "".join(p.get("text", "") for p in parts if isinstance(p, dict) and not p.get("thought"))

    def model_version(self, data: Any) -> str:
        if isinstance(data, dict):
            return str(data.get("modelVersion", self.model))
        return self.model


# ---------------------------------------------------------------------------
# HuggingFace Inference API
# ---------------------------------------------------------------------------

CAPTION_INGREDIENT_KEYWORDS = (
    "tomato", "onion", "carrot", "potato", "cabbage", "lettuce", "cucumber",
    "broccoli", "spinach", "mushroom", "chicken", "beef", "pork", "fish",
    "egg", "milk", "cheese", "rice", "bread", "pasta",
)  # fmt: skip

CAPTION_CONFIDENCE = 0.7


class HuggingFaceAdapter(BaseProviderAdapter):
    """HuggingFace Inference API adapter.

    Text goes to an instruct model. Images go to a captioning model, so the
    adapter reduces the caption to a JSON ingredient list itself; that list
    is still raw text from the orchestrator's point of view.
    """

    provider_id = "huggingface"
    api_base = "https://api-inference.huggingface.co/models"
    text_model = "meta-llama/Llama-3.1-8B-Instruct"
    caption_model = "Salesforce/blip-image-captioning-large"

    def build_call(self, request: GenerationRequest) -> dict[str, Any]:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        if request.kind == RequestKind.IMAGE_RECOGNITION:
            return {
                "url": f"{self.api_base}/{self.caption_model}",
                "json": {"inputs": request.image.image_base64},
                "headers": headers,
            }
        return {
            "url": f"{self.api_base}/{self.text_model}",
            "json": {
                "inputs": build_prompt(request),
                "parameters": {
                    "max_new_tokens": request.max_tokens,
                    "temperature": request.temperature,
                    "return_full_text": False,
                },
            },
            "headers": headers,
        }

    def extract_text(self, data: Any, request: GenerationRequest) -> str:
        if isinstance(data, list):
            data = data[0] if data else {}
        if not isinstance(data, dict):
            return ""
        generated = data.get("generated_text") or ""

        if request.kind == RequestKind.IMAGE_RECOGNITION:
            return self.caption_to_ingredients(generated) if generated else ""

        # Some deployments ignore return_full_text and echo the prompt
        prompt = build_prompt(request)
        if generated.startswith(prompt):
            generated = generated[len(prompt) :]
        return generated.strip()

    @staticmethod
    def caption_to_ingredients(caption: str) -> str:
        """Turn an image caption into the recognition JSON shape."""
        lowered = caption.lower()
        found = [
            {"name": keyword, "confidence": CAPTION_CONFIDENCE, "category": "other"}
            for keyword in CAPTION_INGREDIENT_KEYWORDS
            if keyword in lowered
        ]
        return json.dumps({"ingredients": found, "confidence": CAPTION_CONFIDENCE, "caption": caption})


# ---------------------------------------------------------------------------
# Adapter registry
# ---------------------------------------------------------------------------

AdapterFactory = Callable[..., ProviderAdapter]

ADAPTER_REGISTRY: dict[str, AdapterFactory] = {
    "groq": GroqAdapter,
    "openai": OpenAIAdapter,
    "anthropic": AnthropicAdapter,
    "together": TogetherAdapter,
    "gemini": GeminiAdapter,
    "huggingface": HuggingFaceAdapter,
}


def register_adapter(provider_id: str, factory: AdapterFactory) -> None:
    """Add (or replace) the adapter factory for a provider id."""
    ADAPTER_REGISTRY[provider_id] = factory


def get_adapter(provider_id: str, api_key: str, **kwargs) -> ProviderAdapter:
    """Factory: get the appropriate adapter for a provider."""
    factory = ADAPTER_REGISTRY.get(provider_id)
    if factory is None:
        raise ValueError(f"No adapter registered for provider: {provider_id}")
    return factory(api_key=api_key, **kwargs)
