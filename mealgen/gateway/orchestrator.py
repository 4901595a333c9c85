"""Generation Orchestrator — entry point of the gateway.

Pipeline for one request:
  1. Build candidate descriptors for the request kind (capability + credentials)
  2. Put the caller's preferred provider first, if it has credentials
  3. Try candidates strictly in order, skipping any in cooldown
  4. Send through the provider adapter; on ``throttled`` start a cooldown
  5. Run the raw text through the recovery pipeline
  6. Return the first success, or a typed failure on exhaustion

Usage:
    orchestrator = GenerationOrchestrator(StaticCredentialStore({"groq": "gsk_..."}))

    outcome = await orchestrator.generate(
        GenerationRequest.for_meal_plan(MealPlanInput(ingredients=("rice", "egg"))),
        preferred_provider_id="openai",
    )
    if outcome.ok:
        meals = outcome.result.items
    else:
        print(outcome.error.kind, outcome.error.retry_after_seconds)
"""

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Mapping

from mealgen.core.logging import redact
from mealgen.core.metrics import (
    ORCHESTRATION_OUTCOMES,
    PROVIDER_ATTEMPTS,
    PROVIDER_LATENCY,
    THROTTLE_MARKS,
)
from mealgen.gateway import consensus
from mealgen.gateway.provider_adapters import ADAPTER_REGISTRY, AdapterFactory, ProviderAdapter
from mealgen.gateway.providers import PROVIDER_CATALOG, CredentialStore, build_descriptors
from mealgen.gateway.rate_limiter import DEFAULT_COOLDOWN_SECONDS, CooldownTracker
from mealgen.gateway.recovery import UnrecoverableResponseError, recover
from mealgen.gateway.types import (
    AttemptOutcome,
    AttemptRecord,
    ConsensusOutcome,
    FailureKind,
    GenerationOutcome,
    GenerationRequest,
    MealPlanInput,
    OrchestrationError,
    OrchestrationErrorKind,
    ProviderCheck,
    ProviderDescriptor,
    RecoveredResult,
    RequestKind,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 60.0
DEFAULT_CONSENSUS_PROVIDERS = 3

# Smallest meal request that still goes through a provider's real endpoint
CONNECTION_CHECK_REQUEST = GenerationRequest.for_meal_plan(
    MealPlanInput(ingredients=("egg",), servings=1, cooking_time_minutes=15, difficulty="easy"),
    max_tokens=200,
)


class RunCancelled(Exception):
    """The caller's cancel event fired while an adapter call was in flight."""


def _minutes(seconds: float) -> int:
    return max(1, math.ceil(seconds / 60))


class GenerationOrchestrator:
    """Sequential, priority-ordered provider fallback with cooldown tracking.

    The tracker is owned per instance, so two orchestrators never share
    cooldown state. Adapters come from a registry (provider id → factory);
    adding a provider is a registry entry plus a catalog descriptor.
    """

    def __init__(
        self,
        credentials: CredentialStore,
        tracker: CooldownTracker | None = None,
        registry: Mapping[str, AdapterFactory] | None = None,
        catalog: Mapping[str, ProviderDescriptor] | None = None,
        priority: Mapping[RequestKind, list[str]] | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        adapter_kwargs: dict[str, dict] | None = None,
    ):
        """
        Args:
            credentials: Source of provider API keys, consulted every request
            tracker: Cooldown tracker (a fresh 5-minute tracker by default)
            registry: Provider id → adapter factory (``ADAPTER_REGISTRY`` by default)
            catalog: Provider id → descriptor (``PROVIDER_CATALOG`` by default)
            priority: Default candidate order per request kind
            timeout: Adapter HTTP timeout in seconds
            adapter_kwargs: Extra factory kwargs per provider (e.g. model overrides)
        """
        self.credentials = credentials
        self.tracker = tracker or CooldownTracker(DEFAULT_COOLDOWN_SECONDS)
        self.registry = registry if registry is not None else ADAPTER_REGISTRY
        self.catalog = catalog
        self.priority = priority
        self.timeout = timeout
        self._adapter_kwargs = adapter_kwargs or {}
        self._adapters: dict[tuple[str, str], ProviderAdapter] = {}

    @classmethod
    def from_settings(cls, credentials: CredentialStore | None = None) -> GenerationOrchestrator:
        """Orchestrator wired from environment settings."""
        from mealgen.core.config import settings
        from mealgen.gateway.providers import settings_credential_store

        return cls(
            credentials=credentials or settings_credential_store(),
            tracker=CooldownTracker(settings.rate_limit_cooldown_seconds),
            timeout=settings.provider_timeout_seconds,
        )

    # -- candidate selection -------------------------------------------------

    def descriptors(self, kind: RequestKind) -> list[ProviderDescriptor]:
        return build_descriptors(kind, self.credentials, self.catalog, self.priority)

    def candidates(self, kind: RequestKind, preferred_provider_id: str | None = None) -> list[ProviderDescriptor]:
        """Credentialed candidates in attempt order (cooldown not applied).

        A preferred provider moves to the front. If it is cooling down it is
        then skipped like any other candidate, without counting as an attempt,
        and the run continues in default priority order.
        """
        ordered = [d for d in self.descriptors(kind) if d.has_credentials]
        if preferred_provider_id:
            preferred = next((d for d in ordered if d.provider_id == preferred_provider_id), None)
            if preferred is None:
                logger.info("Preferred provider %s unavailable for %s", preferred_provider_id, kind.value)
            else:
                ordered.remove(preferred)
                ordered.insert(0, preferred)
        return ordered

    def _get_adapter(self, provider_id: str) -> ProviderAdapter | None:
        """Get or create the adapter for a provider's current API key."""
        api_key = self.credentials.get_api_key(provider_id)
        factory = self.registry.get(provider_id)
        if not api_key or factory is None:
            return None
        key = (provider_id, api_key)
        if key not in self._adapters:
            kwargs = self._adapter_kwargs.get(provider_id, {})
            self._adapters[key] = factory(api_key=api_key, timeout=self.timeout, **kwargs)
        return self._adapters[key]

    # -- single attempt ------------------------------------------------------

    async def _call(
        self,
        adapter: ProviderAdapter,
        request: GenerationRequest,
        cancel_event: asyncio.Event | None,
    ):
        """Run one adapter call, aborting it if ``cancel_event`` fires first."""
        if cancel_event is None:
            return await adapter.call(request)

        call_task = asyncio.ensure_future(adapter.call(request))
        cancel_task = asyncio.ensure_future(cancel_event.wait())
        try:
            done, _ = await asyncio.wait({call_task, cancel_task}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            call_task.cancel()
            cancel_task.cancel()
            raise

        cancel_task.cancel()
        if call_task not in done:
            call_task.cancel()
            await asyncio.gather(call_task, return_exceptions=True)
            raise RunCancelled()
        return call_task.result()

    async def _attempt(
        self,
        descriptor: ProviderDescriptor,
        request: GenerationRequest,
        cancel_event: asyncio.Event | None = None,
    ) -> tuple[AttemptRecord, RecoveredResult | None]:
        """Call one provider and recover its text; never raises except ``RunCancelled``."""
        provider_id = descriptor.provider_id
        kind = request.kind

        adapter = self._get_adapter(provider_id)
        if adapter is None:
            detail = f"No adapter registered for {provider_id}"
            logger.warning("No adapter registered for %s", provider_id)
            PROVIDER_ATTEMPTS.labels(provider=provider_id, kind=kind.value, outcome="failed").inc()
            return AttemptRecord(provider_id, AttemptOutcome.FAILED, FailureKind.UNKNOWN, detail=detail), None

        logger.info(
            "Trying %s for %s", provider_id, kind.value, extra={"provider_id": provider_id, "request_kind": kind.value}
        )
        try:
            raw = await self._call(adapter, request, cancel_event)
        except RunCancelled:
            PROVIDER_ATTEMPTS.labels(provider=provider_id, kind=kind.value, outcome="cancelled").inc()
            raise
        except Exception as e:
            # Third-party adapters may break the taxonomy contract; treat as unknown failure
            logger.exception("Adapter %s raised instead of classifying", provider_id)
            PROVIDER_ATTEMPTS.labels(provider=provider_id, kind=kind.value, outcome="failed").inc()
            return (
                AttemptRecord(provider_id, AttemptOutcome.FAILED, FailureKind.UNKNOWN, detail=f"{type(e).__name__}: {e}"),
                None,
            )

        PROVIDER_LATENCY.labels(provider=provider_id).observe(raw.latency_ms / 1000)

        if raw.failure == FailureKind.THROTTLED:
            self.tracker.mark_throttled(provider_id)
            THROTTLE_MARKS.labels(provider=provider_id).inc()
            PROVIDER_ATTEMPTS.labels(provider=provider_id, kind=kind.value, outcome="throttled").inc()
            return (
                AttemptRecord(provider_id, AttemptOutcome.THROTTLED, raw.failure, raw.latency_ms, raw.detail),
                None,
            )

        if not raw.ok:
            failure = raw.failure or FailureKind.EMPTY_RESPONSE
            logger.warning("%s failed (%s): %s", provider_id, failure.value, raw.detail)
            PROVIDER_ATTEMPTS.labels(provider=provider_id, kind=kind.value, outcome="failed").inc()
            return AttemptRecord(provider_id, AttemptOutcome.FAILED, failure, raw.latency_ms, raw.detail), None

        try:
            result = recover(raw.text, kind, provider_id)
        except UnrecoverableResponseError as e:
            PROVIDER_ATTEMPTS.labels(provider=provider_id, kind=kind.value, outcome="unrecoverable").inc()
            return (
                AttemptRecord(provider_id, AttemptOutcome.UNRECOVERABLE, latency_ms=raw.latency_ms, detail=str(e)),
                None,
            )

        result.latency_ms = raw.latency_ms
        PROVIDER_ATTEMPTS.labels(provider=provider_id, kind=kind.value, outcome="success").inc()
        return AttemptRecord(provider_id, AttemptOutcome.SUCCESS, latency_ms=raw.latency_ms), result

    # -- failure classification ----------------------------------------------

    def _error(self, kind: OrchestrationErrorKind, retry_after: float | None = None) -> OrchestrationError:
        if kind == OrchestrationErrorKind.NO_CREDENTIALS:
            message = "No AI provider is configured. Set an API key for at least one provider."
        elif kind == OrchestrationErrorKind.ALL_RATE_LIMITED:
            wait = f" Try again in about {_minutes(retry_after)} minute(s)." if retry_after else ""
            message = "All AI providers are currently rate limited." + wait
        elif kind == OrchestrationErrorKind.UNRECOVERABLE_RESPONSE:
            message = "The AI response could not be understood. Please try again."
        elif kind == OrchestrationErrorKind.CANCELLED:
            message = "The request was cancelled."
        else:
            message = "All AI providers failed. Please try again later."
        return OrchestrationError(kind=kind, message=message, retry_after_seconds=retry_after)

    def _classify_exhaustion(self, attempts: list[AttemptRecord], candidate_ids: list[str]) -> OrchestrationError:
        called = [a for a in attempts if a.outcome != AttemptOutcome.SKIPPED_COOLDOWN]
        if all(a.outcome == AttemptOutcome.THROTTLED for a in called):
            # Covers "every candidate skipped" too (empty ``called``)
            return self._error(
                OrchestrationErrorKind.ALL_RATE_LIMITED,
                retry_after=self.tracker.min_remaining_cooldown(candidate_ids),
            )
        non_throttled = [a for a in called if a.outcome != AttemptOutcome.THROTTLED]
        if all(a.outcome == AttemptOutcome.UNRECOVERABLE for a in non_throttled):
            return self._error(OrchestrationErrorKind.UNRECOVERABLE_RESPONSE)
        return self._error(OrchestrationErrorKind.ALL_FAILED)

    def _finish(self, kind: RequestKind, outcome):
        label = "success" if outcome.ok else outcome.error.kind.value
        ORCHESTRATION_OUTCOMES.labels(kind=kind.value, outcome=label).inc()
        if not outcome.ok:
            logger.warning("Orchestration for %s ended with %s", kind.value, label)
        return outcome

    # -- public API ----------------------------------------------------------

    async def generate(
        self,
        request: GenerationRequest,
        preferred_provider_id: str | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> GenerationOutcome:
        """Try candidates in order and return the first recovered result.

        Never raises for provider failures; the outcome carries either a
        ``RecoveredResult`` or an ``OrchestrationError``.
        """
        kind = request.kind
        candidates = self.candidates(kind, preferred_provider_id)
        if not candidates:
            return self._finish(kind, GenerationOutcome(error=self._error(OrchestrationErrorKind.NO_CREDENTIALS)))

        attempts: list[AttemptRecord] = []
        for descriptor in candidates:
            if cancel_event is not None and cancel_event.is_set():
                return self._finish(
                    kind, GenerationOutcome(error=self._error(OrchestrationErrorKind.CANCELLED), attempts=attempts)
                )

            provider_id = descriptor.provider_id
            if not self.tracker.is_eligible(provider_id):
                logger.info("Skipping %s: cooling down for %.0fs", provider_id, self.tracker.remaining_cooldown(provider_id))
                attempts.append(AttemptRecord(provider_id, AttemptOutcome.SKIPPED_COOLDOWN))
                continue

            try:
                record, result = await self._attempt(descriptor, request, cancel_event)
            except RunCancelled:
                attempts.append(AttemptRecord(provider_id, AttemptOutcome.CANCELLED))
                return self._finish(
                    kind, GenerationOutcome(error=self._error(OrchestrationErrorKind.CANCELLED), attempts=attempts)
                )

            attempts.append(record)
            if result is not None:
                logger.info("%s succeeded via %s (%d item(s))", provider_id, result.stage.value, len(result.items))
                return self._finish(kind, GenerationOutcome(result=result, attempts=attempts))

        error = self._classify_exhaustion(attempts, [d.provider_id for d in candidates])
        return self._finish(kind, GenerationOutcome(error=error, attempts=attempts))

    async def recognize_with_consensus(
        self,
        request: GenerationRequest,
        preferred_provider_id: str | None = None,
        max_providers: int = DEFAULT_CONSENSUS_PROVIDERS,
        cancel_event: asyncio.Event | None = None,
    ) -> ConsensusOutcome:
        """Ask several eligible providers concurrently and merge their answers.

        All calls are settled before merging; individual failures only shrink
        the pool of opinions. When ``cancel_event`` fires every in-flight call
        is aborted and the outcome is ``cancelled``, even if some calls had
        already answered.
        """
        kind = request.kind
        candidates = self.candidates(kind, preferred_provider_id)
        if not candidates:
            return self._finish(kind, ConsensusOutcome(error=self._error(OrchestrationErrorKind.NO_CREDENTIALS)))
        if cancel_event is not None and cancel_event.is_set():
            return self._finish(kind, ConsensusOutcome(error=self._error(OrchestrationErrorKind.CANCELLED)))

        attempts: list[AttemptRecord] = []
        eligible: list[ProviderDescriptor] = []
        for descriptor in candidates:
            if self.tracker.is_eligible(descriptor.provider_id):
                eligible.append(descriptor)
            else:
                attempts.append(AttemptRecord(descriptor.provider_id, AttemptOutcome.SKIPPED_COOLDOWN))
        selected = eligible[: max(1, max_providers)]

        settled = await asyncio.gather(
            *(self._attempt(d, request, cancel_event) for d in selected),
            return_exceptions=True,
        )

        results: list[RecoveredResult] = []
        cancelled = False
        for descriptor, item in zip(selected, settled):
            if isinstance(item, RunCancelled):
                cancelled = True
                attempts.append(AttemptRecord(descriptor.provider_id, AttemptOutcome.CANCELLED))
                continue
            if isinstance(item, BaseException):
                logger.error("Consensus call to %s raised: %s", descriptor.provider_id, item)
                attempts.append(
                    AttemptRecord(descriptor.provider_id, AttemptOutcome.FAILED, FailureKind.UNKNOWN, detail=str(item))
                )
                continue
            record, result = item
            attempts.append(record)
            if result is not None:
                results.append(result)

        if cancelled:
            return self._finish(
                kind, ConsensusOutcome(error=self._error(OrchestrationErrorKind.CANCELLED), attempts=attempts)
            )
        if not results:
            error = self._classify_exhaustion(attempts, [d.provider_id for d in candidates])
            return self._finish(kind, ConsensusOutcome(error=error, attempts=attempts))

        return self._finish(kind, ConsensusOutcome(consensus=consensus.merge(results, kind), attempts=attempts))

    async def check_provider(self, provider_id: str) -> ProviderCheck:
        """Send one small meal request to a provider and report how it went.

        The answer is not recovered; any text counts as reachable. A throttled
        answer starts a cooldown like any other call.

        Raises:
            KeyError: ``provider_id`` is not in the catalog
        """
        catalog = self.catalog if self.catalog is not None else PROVIDER_CATALOG
        if provider_id not in catalog:
            raise KeyError(provider_id)
        if not self.credentials.get_api_key(provider_id):
            return ProviderCheck(provider_id, OrchestrationErrorKind.NO_CREDENTIALS.value)
        adapter = self._get_adapter(provider_id)
        if adapter is None:
            return ProviderCheck(provider_id, FailureKind.UNKNOWN.value, detail=f"No adapter registered for {provider_id}")

        logger.info("Checking connection to %s", provider_id, extra={"provider_id": provider_id})
        try:
            raw = await adapter.call(CONNECTION_CHECK_REQUEST)
        except Exception as e:
            logger.exception("Adapter %s raised during connection check", provider_id)
            return ProviderCheck(provider_id, FailureKind.UNKNOWN.value, detail=redact(f"{type(e).__name__}: {e}"))

        PROVIDER_LATENCY.labels(provider=provider_id).observe(raw.latency_ms / 1000)
        if raw.failure == FailureKind.THROTTLED:
            self.tracker.mark_throttled(provider_id)
            THROTTLE_MARKS.labels(provider=provider_id).inc()

        if raw.ok:
            logger.info("%s reachable (%dms)", provider_id, raw.latency_ms)
            return ProviderCheck(provider_id, "ok", raw.latency_ms)
        failure = raw.failure or FailureKind.EMPTY_RESPONSE
        logger.warning("%s connection check failed (%s): %s", provider_id, failure.value, raw.detail)
        return ProviderCheck(provider_id, failure.value, raw.latency_ms, redact(raw.detail))

    async def check_all_providers(self) -> list[ProviderCheck]:
        """Check every catalog provider in turn; unconfigured ones are reported, not called."""
        catalog = self.catalog if self.catalog is not None else PROVIDER_CATALOG
        return [await self.check_provider(provider_id) for provider_id in catalog]

    def status(self) -> dict:
        """Read-only snapshot: eligible providers per kind plus cooldowns."""
        available = {
            kind.value: [
                d.provider_id
                for d in self.descriptors(kind)
                if d.has_credentials and self.tracker.is_eligible(d.provider_id)
            ]
            for kind in RequestKind
        }
        return {
            "available": available,
            "rate_limited": [s.to_dict() for s in self.tracker.status()],
        }

    def reset_rate_limits(self) -> int:
        """Clear every cooldown; returns how many were cleared."""
        return self.tracker.reset()
