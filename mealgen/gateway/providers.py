"""Provider catalog, default priority lists and credential stores."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import replace
from typing import Protocol

from mealgen.gateway.types import ProviderDescriptor, RequestKind

# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------

# Credential presence is filled in per request cycle by ``build_descriptors``.
PROVIDER_CATALOG: dict[str, ProviderDescriptor] = {
    "groq": ProviderDescriptor(
        provider_id="groq",
        label="Groq",
        supports_image=True,
        cost="low",
        speed="fast",
        rate_limit_risk="low",
    ),
    "openai": ProviderDescriptor(
        provider_id="openai",
        label="OpenAI",
        supports_image=True,
        cost="medium",
        speed="medium",
        rate_limit_risk="medium",
    ),
    "anthropic": ProviderDescriptor(
        provider_id="anthropic",
        label="Anthropic",
        supports_image=True,
        cost="high",
        speed="medium",
        rate_limit_risk="low",
    ),
    "together": ProviderDescriptor(
        provider_id="together",
        label="Together AI",
        supports_image=True,
        cost="medium",
        speed="medium",
        rate_limit_risk="medium",
    ),
    "gemini": ProviderDescriptor(
        provider_id="gemini",
        label="Gemini",
        supports_image=True,
        cost="low",
        speed="medium",
        rate_limit_risk="high",
    ),
    "huggingface": ProviderDescriptor(
        provider_id="huggingface",
        label="HuggingFace",
        supports_image=True,
        cost="low",
        speed="slow",
        rate_limit_risk="low",
    ),
}

# Meal generation favours the fast/cheap, low-throttle providers; recognition
# favours vision accuracy.
DEFAULT_PRIORITY: dict[RequestKind, list[str]] = {
    RequestKind.CONTENT_GENERATION: ["groq", "openai", "anthropic", "together", "gemini", "huggingface"],
    RequestKind.IMAGE_RECOGNITION: ["groq", "openai", "anthropic", "gemini", "together", "huggingface"],
}


# ---------------------------------------------------------------------------
# Credential stores
# ---------------------------------------------------------------------------


class CredentialStore(Protocol):
    """External source of provider API keys."""

    def get_api_key(self, provider_id: str) -> str | None: ...


class StaticCredentialStore:
    """Credential store backed by a plain mapping (settings, tests)."""

    def __init__(self, api_keys: Mapping[str, str] | None = None):
        self._api_keys = {k: v for k, v in (api_keys or {}).items() if v}

    def get_api_key(self, provider_id: str) -> str | None:
        return self._api_keys.get(provider_id) or None

    def set_api_key(self, provider_id: str, api_key: str) -> None:
        if api_key:
            self._api_keys[provider_id] = api_key
        else:
            self._api_keys.pop(provider_id, None)

    def configured(self) -> list[str]:
        return sorted(self._api_keys)


def settings_credential_store() -> StaticCredentialStore:
    """Credential store populated from environment settings."""
    from mealgen.core.config import settings

    return StaticCredentialStore(settings.provider_api_keys())


# ---------------------------------------------------------------------------
# Descriptor selection
# ---------------------------------------------------------------------------


def build_descriptors(
    kind: RequestKind,
    credentials: CredentialStore,
    catalog: Mapping[str, ProviderDescriptor] | None = None,
    priority: Mapping[RequestKind, list[str]] | None = None,
) -> list[ProviderDescriptor]:
    """Descriptors for ``kind`` in default priority order, capability-filtered.

    Each descriptor carries the credential presence at call time. Providers in
    the priority list but missing from the catalog are ignored.
    """
    catalog = catalog if catalog is not None else PROVIDER_CATALOG
    priority = priority if priority is not None else DEFAULT_PRIORITY

    descriptors: list[ProviderDescriptor] = []
    for provider_id in priority.get(kind, []):
        base = catalog.get(provider_id)
        if base is None or not base.supports(kind):
            continue
        descriptors.append(replace(base, has_credentials=bool(credentials.get_api_key(provider_id))))
    return descriptors
