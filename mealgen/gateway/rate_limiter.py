"""Cooldown Tracker — per-provider exclusion window after a throttling failure.

When an adapter reports ``throttled`` (HTTP 429 or equivalent), the provider is
placed into cooldown for a fixed window. Entries are removed lazily: the first
eligibility check after expiry deletes the entry, so absence means eligible.

State is in-memory only and owned by one orchestrator instance. All access is
serialized with a ``threading.Lock`` so concurrent orchestration runs (or
threads) never lose a cooldown update.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable

from mealgen.gateway.types import RateLimitStatus

logger = logging.getLogger(__name__)

DEFAULT_COOLDOWN_SECONDS = 5 * 60


class CooldownTracker:
    """Tracks cooldown expiry per provider id.

    Usage:
        tracker = CooldownTracker()

        if tracker.is_eligible("gemini"):
            ...  # call the provider

        # After a 429:
        tracker.mark_throttled("gemini")
    """

    def __init__(
        self,
        cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._expiry: dict[str, float] = {}
        self._lock = threading.Lock()

    def _prune(self, provider_id: str, now: float) -> float | None:
        """Return the live expiry for a provider, dropping it if it has passed."""
        expiry = self._expiry.get(provider_id)
        if expiry is not None and now >= expiry:
            del self._expiry[provider_id]
            logger.info("Cooldown expired for %s", provider_id)
            return None
        return expiry

    def is_eligible(self, provider_id: str) -> bool:
        """True unless the provider is inside its cooldown window."""
        with self._lock:
            return self._prune(provider_id, self._clock()) is None

    def mark_throttled(self, provider_id: str) -> float:
        """Start (or restart) the cooldown window. Returns the expiry timestamp."""
        with self._lock:
            expiry = self._clock() + self.cooldown_seconds
            self._expiry[provider_id] = expiry
        logger.warning("Provider %s throttled, cooling down for %.0fs", provider_id, self.cooldown_seconds)
        return expiry

    def remaining_cooldown(self, provider_id: str) -> float:
        """Seconds until the provider becomes eligible again (0 if eligible)."""
        with self._lock:
            now = self._clock()
            expiry = self._prune(provider_id, now)
            if expiry is None:
                return 0.0
            return max(0.0, expiry - now)

    def status(self) -> list[RateLimitStatus]:
        """All providers currently cooling down, soonest-available first."""
        with self._lock:
            now = self._clock()
            for provider_id in list(self._expiry):
                self._prune(provider_id, now)
            entries = [
                RateLimitStatus(provider_id=provider_id, remaining_seconds=expiry - now)
                for provider_id, expiry in self._expiry.items()
            ]
        return sorted(entries, key=lambda e: (e.remaining_seconds, e.provider_id))

    def min_remaining_cooldown(self, provider_ids: list[str] | None = None) -> float | None:
        """Shortest remaining cooldown among the given (or all) providers.

        Returns None when none of them is cooling down.
        """
        entries = self.status()
        if provider_ids is not None:
            wanted = set(provider_ids)
            entries = [e for e in entries if e.provider_id in wanted]
        if not entries:
            return None
        return min(e.remaining_seconds for e in entries)

    def reset(self) -> int:
        """Clear every cooldown. Returns how many entries were dropped."""
        with self._lock:
            count = len(self._expiry)
            self._expiry.clear()
        logger.info("Reset %d provider cooldown(s)", count)
        return count
