"""Core types and DTOs for the generation gateway."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class RequestKind(str, Enum):
    """What the caller wants generated."""

    CONTENT_GENERATION = "content-generation"  # meal plans
    IMAGE_RECOGNITION = "image-recognition"  # ingredients in a photo


class FailureKind(str, Enum):
    """Fixed failure taxonomy every adapter must map its errors onto."""

    AUTH = "auth"
    THROTTLED = "throttled"
    TRANSPORT = "transport"  # network error, timeout, 5xx
    EMPTY_RESPONSE = "empty-response"
    UNKNOWN = "unknown"


class RecoveryStage(str, Enum):
    """Recovery strategies, strongest first."""

    STRICT_PARSE = "strict-parse"
    SANITIZED_PARSE = "sanitized-parse"
    PERMISSIVE_EVALUATION = "permissive-evaluation"
    PATTERN_EXTRACTION = "pattern-extraction"

    @property
    def strength(self) -> int:
        """0 = most trustworthy."""
        return list(RecoveryStage).index(self)


class OrchestrationErrorKind(str, Enum):
    """User-facing failure classes of an orchestration run."""

    NO_CREDENTIALS = "no-credentials"
    ALL_RATE_LIMITED = "all-rate-limited"
    ALL_FAILED = "all-failed"
    UNRECOVERABLE_RESPONSE = "unrecoverable-response"
    CANCELLED = "cancelled"


class AttemptOutcome(str, Enum):
    """What happened to one candidate during a run."""

    SUCCESS = "success"
    FAILED = "failed"
    THROTTLED = "throttled"
    UNRECOVERABLE = "unrecoverable"
    SKIPPED_COOLDOWN = "skipped-cooldown"
    CANCELLED = "cancelled"


# ---------------------------------------------------------------------------
# Provider descriptor
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ProviderDescriptor:
    """Static description of one provider plus credential presence.

    Rebuilt for every request cycle so ``has_credentials`` reflects the
    credential store at that moment.
    """

    provider_id: str
    label: str
    supports_text: bool = True
    supports_image: bool = False
    cost: str = "medium"  # informational: low | medium | high
    speed: str = "medium"  # informational: fast | medium | slow
    rate_limit_risk: str = "medium"  # informational: low | medium | high
    has_credentials: bool = False

    def supports(self, kind: RequestKind) -> bool:
        if kind == RequestKind.IMAGE_RECOGNITION:
            return self.supports_image
        return self.supports_text


# ---------------------------------------------------------------------------
# Generation request: input to the orchestrator
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MealPlanInput:
    """Normalized inputs for a meal-plan generation."""

    ingredients: tuple[str, ...] = ()
    servings: int = 2
    cooking_time_minutes: int = 45
    meal_type: str = "dinner"  # breakfast | lunch | dinner | snack
    dietary_restrictions: tuple[str, ...] = ()
    preferences: tuple[str, ...] = ()
    difficulty: str = "medium"  # easy | medium | hard
    cuisine: str = "any"


@dataclass(frozen=True)
class ImageInput:
    """A base64-encoded photo to recognize ingredients in."""

    image_base64: str
    media_type: str = "image/jpeg"

    @property
    def data_url(self) -> str:
        return f"data:{self.media_type};base64,{self.image_base64}"


@dataclass(frozen=True)
class GenerationRequest:
    """A provider-agnostic generation request.

    Exactly one of ``meal_plan`` / ``image`` is set, matching ``kind``.
    """

    kind: RequestKind
    meal_plan: MealPlanInput | None = None
    image: ImageInput | None = None
    max_tokens: int = 2000
    temperature: float = 0.7

    def __post_init__(self) -> None:
        if self.kind == RequestKind.CONTENT_GENERATION and self.meal_plan is None:
            raise ValueError("content-generation request requires meal_plan input")
        if self.kind == RequestKind.IMAGE_RECOGNITION and self.image is None:
            raise ValueError("image-recognition request requires image input")

    @classmethod
    def for_meal_plan(cls, meal_plan: MealPlanInput, **kwargs) -> GenerationRequest:
        return cls(kind=RequestKind.CONTENT_GENERATION, meal_plan=meal_plan, **kwargs)

    @classmethod
    def for_image(cls, image: ImageInput, **kwargs) -> GenerationRequest:
        kwargs.setdefault("temperature", 0.3)
        kwargs.setdefault("max_tokens", 1000)
        return cls(kind=RequestKind.IMAGE_RECOGNITION, image=image, **kwargs)


# ---------------------------------------------------------------------------
# Raw provider response: output of an adapter
# ---------------------------------------------------------------------------


@dataclass
class RawProviderResponse:
    """Raw text from one adapter call, or a classified failure."""

    provider_id: str
    text: str | None = None
    failure: FailureKind | None = None
    status_code: int = 0
    detail: str = ""  # transport-level detail, for logs only
    latency_ms: int = 0
    model_version: str = ""

    @property
    def ok(self) -> bool:
        return self.failure is None and bool(self.text)

    @classmethod
    def failed(
        cls,
        provider_id: str,
        failure: FailureKind,
        detail: str = "",
        status_code: int = 0,
        latency_ms: int = 0,
    ) -> RawProviderResponse:
        return cls(
            provider_id=provider_id,
            failure=failure,
            detail=detail,
            status_code=status_code,
            latency_ms=latency_ms,
        )


# ---------------------------------------------------------------------------
# Recovered result: output of the recovery pipeline
# ---------------------------------------------------------------------------


@dataclass
class RecoveredItem:
    """One generated meal or one recognized ingredient."""

    name: str
    confidence: float
    attributes: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"name": self.name, "confidence": self.confidence, **self.attributes}


@dataclass
class RecoveredResult:
    """Structured content plus provenance."""

    kind: RequestKind
    items: list[RecoveredItem] = field(default_factory=list)
    confidence: float = 0.0
    provider_id: str = ""
    stage: RecoveryStage = RecoveryStage.STRICT_PARSE
    latency_ms: int = 0

    @property
    def is_empty(self) -> bool:
        return not self.items

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "items": [item.to_dict() for item in self.items],
            "confidence": self.confidence,
            "provider": self.provider_id,
            "stage": self.stage.value,
            "latency_ms": self.latency_ms,
        }


@dataclass
class ConsensusResult:
    """Items merged across several independent provider results."""

    kind: RequestKind
    items: list[RecoveredItem] = field(default_factory=list)
    confidence: float = 0.0
    source_count: int = 0
    providers: list[str] = field(default_factory=list)
    votes: dict[str, int] = field(default_factory=dict)  # item name → reporting results

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "items": [item.to_dict() for item in self.items],
            "confidence": self.confidence,
            "source_count": self.source_count,
            "providers": self.providers,
            "votes": self.votes,
        }


# ---------------------------------------------------------------------------
# Orchestration outcome
# ---------------------------------------------------------------------------


@dataclass
class AttemptRecord:
    """Trace of one candidate within an orchestration run."""

    provider_id: str
    outcome: AttemptOutcome
    failure: FailureKind | None = None
    latency_ms: int = 0
    detail: str = ""


@dataclass
class OrchestrationError:
    """Typed failure returned to the caller instead of a raw transport error."""

    kind: OrchestrationErrorKind
    message: str
    retry_after_seconds: float | None = None

    def to_dict(self) -> dict:
        return {
            "error": self.kind.value,
            "message": self.message,
            "retry_after_seconds": self.retry_after_seconds,
        }


@dataclass
class GenerationOutcome:
    """Result of ``GenerationOrchestrator.generate``: a result or an error."""

    result: RecoveredResult | None = None
    error: OrchestrationError | None = None
    attempts: list[AttemptRecord] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.result is not None

    @property
    def attempted_providers(self) -> list[str]:
        """Providers that were actually called (skips excluded)."""
        return [a.provider_id for a in self.attempts if a.outcome != AttemptOutcome.SKIPPED_COOLDOWN]


@dataclass
class ConsensusOutcome:
    """Result of a cross-validated (fan-out) recognition run."""

    consensus: ConsensusResult | None = None
    error: OrchestrationError | None = None
    attempts: list[AttemptRecord] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.consensus is not None


@dataclass
class RateLimitStatus:
    """One cooling-down provider as exposed by the observability surface."""

    provider_id: str
    remaining_seconds: float

    def to_dict(self) -> dict:
        return {"provider": self.provider_id, "remaining_seconds": round(self.remaining_seconds, 3)}


@dataclass
class ProviderCheck:
    """Result of one minimal connectivity call to a provider.

    ``outcome`` is ``ok``, a ``FailureKind`` value, or ``no-credentials``
    when no key is configured and nothing was sent.
    """

    provider_id: str
    outcome: str
    latency_ms: int = 0
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.outcome == "ok"

    def to_dict(self) -> dict:
        return {
            "provider": self.provider_id,
            "ok": self.ok,
            "outcome": self.outcome,
            "latency_ms": self.latency_ms,
            "detail": self.detail,
        }
