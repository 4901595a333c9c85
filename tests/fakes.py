"""Scripted adapters, a manual clock and orchestrator wiring shared by the tests."""

import asyncio

from mealgen.gateway.orchestrator import GenerationOrchestrator
from mealgen.gateway.providers import StaticCredentialStore
from mealgen.gateway.rate_limiter import CooldownTracker
from mealgen.gateway.types import (
    FailureKind,
    GenerationRequest,
    ProviderDescriptor,
    RawProviderResponse,
    RequestKind,
)

MEALS_JSON = """{
  "meals": [
    {"name": "Tomato omelette", "ingredients": ["egg", "tomato"], "instructions": ["Whisk", "Fry"],
     "cookingTime": 15, "servings": 2, "difficulty": "easy", "category": "main", "tips": []},
    {"name": "Egg fried rice", "ingredients": ["rice", "egg"], "instructions": ["Fry rice", "Add egg"],
     "cookingTime": 20, "servings": 2, "difficulty": "easy", "category": "main", "tips": ["Use day-old rice"]}
  ]
}"""

INGREDIENTS_JSON = """{
  "ingredients": [
    {"name": "tomato", "confidence": 0.9, "category": "vegetable", "quantity": "2", "freshness": "fresh"},
    {"name": "egg", "confidence": 0.8, "category": "other", "quantity": "6", "freshness": "good"}
  ],
  "confidence": 0.85
}"""


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeAdapter:
    """Adapter returning a fixed text or failure and recording every call."""

    def __init__(
        self,
        provider_id: str,
        text: str | None = None,
        failure: FailureKind | None = None,
        delay: float = 0.0,
    ):
        self.provider_id = provider_id
        self.text = text
        self.failure = failure
        self.delay = delay
        self.calls: list[GenerationRequest] = []
        self.cancelled = False

    async def call(self, request: GenerationRequest) -> RawProviderResponse:
        self.calls.append(request)
        if self.delay:
            try:
                await asyncio.sleep(self.delay)
            except asyncio.CancelledError:
                self.cancelled = True
                raise
        if self.failure is not None:
            status = {FailureKind.THROTTLED: 429, FailureKind.AUTH: 401, FailureKind.TRANSPORT: 503}.get(self.failure, 0)
            return RawProviderResponse.failed(self.provider_id, self.failure, status_code=status, latency_ms=3)
        return RawProviderResponse(provider_id=self.provider_id, text=self.text, status_code=200, latency_ms=5)


def factory_for(adapter: FakeAdapter):
    def _factory(**kwargs):
        return adapter

    return _factory


TEST_CATALOG = {
    pid: ProviderDescriptor(provider_id=pid, label=pid.upper(), supports_image=True) for pid in ("p1", "p2", "p3")
}

TEST_PRIORITY = {
    RequestKind.CONTENT_GENERATION: ["p1", "p2", "p3"],
    RequestKind.IMAGE_RECOGNITION: ["p1", "p2", "p3"],
}


def build_orchestrator(
    *adapters: FakeAdapter,
    keys: dict[str, str] | None = None,
    clock: FakeClock | None = None,
) -> GenerationOrchestrator:
    """Orchestrator over the p1/p2/p3 test catalog; every adapter gets a key unless ``keys`` is given."""
    if keys is None:
        keys = {a.provider_id: f"key-{a.provider_id}" for a in adapters}
    return GenerationOrchestrator(
        credentials=StaticCredentialStore(keys),
        tracker=CooldownTracker(300, clock=clock or FakeClock()),
        registry={a.provider_id: factory_for(a) for a in adapters},
        catalog=TEST_CATALOG,
        priority=TEST_PRIORITY,
    )

