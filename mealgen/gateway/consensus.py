"""Consensus Aggregator — merge independent provider results into one.

Used by cross-validated ingredient recognition: several providers look at the
same photo and only ingredients that at least two of them report survive.

Rules:
  - items are grouped by normalized name (case-insensitive, whitespace-collapsed)
  - an item is kept if reported by at least ``min(2, len(results))`` results
  - every attribute is set by plurality vote, ties go to the first-seen value
  - item confidence is the mean of the contributing reports
"""

from __future__ import annotations

import json
import logging
import re
import statistics
from dataclasses import dataclass, field
from typing import Any

from mealgen.gateway.types import ConsensusResult, RecoveredItem, RecoveredResult, RequestKind

logger = logging.getLogger(__name__)

MIN_AGREEMENT = 2

_WHITESPACE = re.compile(r"\s+")


def normalize_name(name: str) -> str:
    """Grouping key for an item name."""
    return _WHITESPACE.sub(" ", name).strip().casefold()


def _vote_key(value: Any) -> str:
    """Hashable key for an attribute value (lists and dicts included)."""
    if isinstance(value, str):
        return value
    return json.dumps(value, sort_keys=True, default=str)


def plurality(values: list[Any]) -> Any:
    """Most common value; ties resolved by first-seen order."""
    counts: dict[str, int] = {}
    first: dict[str, Any] = {}
    for value in values:
        key = _vote_key(value)
        if key not in counts:
            counts[key] = 0
            first[key] = value
        counts[key] += 1
    # dicts preserve insertion order, max() keeps the first of equal counts
    best = max(counts, key=lambda k: counts[k])
    return first[best]


@dataclass
class _ItemVotes:
    name: str  # spelling of the first report
    reports: list[RecoveredItem] = field(default_factory=list)


def merge(results: list[RecoveredResult], kind: RequestKind | None = None) -> ConsensusResult:
    """Merge results into a ``ConsensusResult``.

    Zero results yield an empty result of ``kind`` (recognition by default)
    rather than an error.
    """
    if not results:
        return ConsensusResult(kind=kind or RequestKind.IMAGE_RECOGNITION)

    kind = kind or results[0].kind
    threshold = min(MIN_AGREEMENT, len(results))

    groups: dict[str, _ItemVotes] = {}
    for result in results:
        seen_in_result: set[str] = set()
        for item in result.items:
            key = normalize_name(item.name)
            if not key or key in seen_in_result:
                continue  # one vote per result
            seen_in_result.add(key)
            groups.setdefault(key, _ItemVotes(name=item.name.strip())).reports.append(item)

    items: list[RecoveredItem] = []
    votes: dict[str, int] = {}
    for group in groups.values():
        votes[group.name] = len(group.reports)
        if len(group.reports) < threshold:
            logger.debug("Dropping %r: reported by %d of %d", group.name, len(group.reports), len(results))
            continue

        attr_names: list[str] = []
        for report in group.reports:
            attr_names.extend(a for a in report.attributes if a not in attr_names)
        attributes = {
            attr: plurality([r.attributes[attr] for r in group.reports if attr in r.attributes])
            for attr in attr_names
        }
        items.append(
            RecoveredItem(
                name=group.name,
                confidence=statistics.mean(r.confidence for r in group.reports),
                attributes=attributes,
            )
        )

    providers: list[str] = []
    for result in results:
        if result.provider_id and result.provider_id not in providers:
            providers.append(result.provider_id)

    logger.info(
        "Consensus over %d result(s): %d of %d item(s) kept", len(results), len(items), len(groups)
    )
    return ConsensusResult(
        kind=kind,
        items=items,
        confidence=statistics.mean(r.confidence for r in results),
        source_count=len(results),
        providers=providers,
        votes=votes,
    )
