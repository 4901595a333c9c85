"""Response Recovery Pipeline — structured data out of free-form model text.

Models wrap JSON in prose, use single quotes, leave keys unquoted, add
trailing commas or get cut off mid-array. Recovery runs four strategies in
order of trustworthiness and stops at the first one that yields the expected
shape:

  1. strict-parse           fenced block / outermost span → ``json.loads``
  2. sanitized-parse        deterministic rewrite of the span → ``json.loads``
  3. permissive-evaluation  safe literal parser (no code execution)
  4. pattern-extraction     field regexes over the raw text, placeholders
                            for anything missing

If all four fail the text is unrecoverable. That is an error, never an empty
success: an empty result is reserved for a parseable structure with zero items.
"""

from __future__ import annotations

import json
import logging
import math
import re
from collections.abc import Callable
from typing import Any

from mealgen.core.metrics import RECOVERY_STAGES
from mealgen.gateway.literal_parser import LiteralParseError, parse_literal
from mealgen.gateway.prompts import FRESHNESS_LEVELS, INGREDIENT_CATEGORIES
from mealgen.gateway.types import RecoveredItem, RecoveredResult, RecoveryStage, RequestKind

logger = logging.getLogger(__name__)

DEFAULT_CONFIDENCE = 0.5  # item without a model-reported confidence
PLACEHOLDER = "N/A"
DEFAULT_COOKING_TIME = 30
DEFAULT_SERVINGS = 2
DEFAULT_DIFFICULTY = "medium"

COLLECTION_KEYS: dict[RequestKind, tuple[str, ...]] = {
    RequestKind.CONTENT_GENERATION: ("meals", "recipes", "dishes", "menu"),
    RequestKind.IMAGE_RECOGNITION: ("ingredients", "items", "foods"),
}

_PREVIEW = 300


class UnrecoverableResponseError(ValueError):
    """No recovery stage could extract structure from the text."""

    def __init__(self, provider_id: str, text: str):
        super().__init__(f"Unrecoverable response from {provider_id or 'provider'}")
        self.provider_id = provider_id
        self.preview = text[:_PREVIEW]


# ---------------------------------------------------------------------------
# Candidate extraction
# ---------------------------------------------------------------------------

_FENCE = re.compile(r"```[ \t]*(?:json5?|javascript|js)?[ \t]*\n?([\s\S]*?)```", re.IGNORECASE)


def _outermost_span(text: str, opener: str, closer: str) -> str | None:
    start = text.find(opener)
    end = text.rfind(closer)
    if start == -1 or end <= start:
        return None
    return text[start : end + 1]


def extract_candidates(text: str) -> list[str]:
    """Spans worth parsing, most specific first, without duplicates."""
    candidates: list[str] = []
    for m in _FENCE.finditer(text):
        body = m.group(1).strip()
        if body:
            candidates.append(body)
    for opener, closer in (("{", "}"), ("[", "]")):
        span = _outermost_span(text, opener, closer)
        if span:
            candidates.append(span)

    seen: set[str] = set()
    unique: list[str] = []
    for c in candidates:
        if c not in seen:
            seen.add(c)
            unique.append(c)
    return unique


# ---------------------------------------------------------------------------
# Sanitizer
# ---------------------------------------------------------------------------

_IDENT = re.compile(r"[A-Za-z_$][\w$]*")
_DOUBLE_ESCAPED = re.compile(r'^\s*[{\[]\s*\\"|[{,\[]\s*\\"[^"\\]*\\"\s*:')
_PY_LITERALS = {"True": "true", "False": "false", "None": "null", "undefined": "null"}
_CONTROL_ESCAPES = {"\n": "\\n", "\r": "\\r", "\t": "\\t"}


def _scan_string(s: str, start: int) -> tuple[int, str]:
    """Return (index after closing quote, raw body) for a string at ``start``."""
    quote = s[start]
    i = start + 1
    while i < len(s):
        if s[i] == "\\":
            i += 2
            continue
        if s[i] == quote:
            return i + 1, s[start + 1 : i]
        i += 1
    return len(s), s[start + 1 :]


def _requote_single(body: str) -> str:
    """Body of a single-quoted string as a double-quoted JSON body."""
    out: list[str] = []
    i = 0
    while i < len(body):
        ch = body[i]
        if ch == "\\" and i + 1 < len(body):
            nxt = body[i + 1]
            out.append("'" if nxt == "'" else ch + nxt)
            i += 2
            continue
        out.append('\\"' if ch == '"' else ch)
        i += 1
    return "".join(out)


def _escape_controls(body: str) -> str:
    return "".join(_CONTROL_ESCAPES.get(c, c) for c in body)


def _collapse_double_escapes(s: str) -> str:
    """Undo one level of string escaping on JSON that was serialized twice."""
    if not _DOUBLE_ESCAPED.search(s):
        return s
    return s.replace("\\\\", "\x00").replace('\\"', '"').replace("\\n", "\n").replace("\x00", "\\")


def sanitize_json(candidate: str) -> str:
    """Deterministic rewrite of JS-object-style text toward strict JSON.

    Collapses doubled escapes, converts single-quoted strings, quotes bare
    identifier keys, drops trailing commas, maps True/False/None/undefined to
    JSON literals and escapes raw control characters inside strings.
    """
    s = _collapse_double_escapes(candidate.strip())
    out: list[str] = []
    prev = ""  # last significant character emitted
    i = 0
    n = len(s)
    while i < n:
        ch = s[i]
        if ch == '"':
            i, body = _scan_string(s, i)
            out.append('"' + _escape_controls(body) + '"')
            prev = '"'
        elif ch == "'":
            i, body = _scan_string(s, i)
            out.append('"' + _escape_controls(_requote_single(body)) + '"')
            prev = '"'
        elif ch == ",":
            k = i + 1
            while k < n and s[k].isspace():
                k += 1
            if k >= n or s[k] not in "}]":
                out.append(ch)
                prev = ch
            i += 1
        elif _IDENT.match(ch):
            m = _IDENT.match(s, i)
            word = m.group(0)
            k = m.end()
            while k < n and s[k].isspace():
                k += 1
            if prev in "{," and k < n and s[k] == ":":
                out.append(f'"{word}"')
                prev = '"'
            else:
                out.append(_PY_LITERALS.get(word, word))
                prev = word[-1]
            i = m.end()
        else:
            out.append(ch)
            if not ch.isspace():
                prev = ch
            i += 1
    return "".join(out)


# ---------------------------------------------------------------------------
# Item normalization
# ---------------------------------------------------------------------------


def clamp_confidence(value: Any, default: float = DEFAULT_CONFIDENCE) -> float:
    """Coerce a model-reported confidence into [0, 1].

    Missing or non-numeric values get ``default``; an explicit 0 stays 0.
    Percent strings ("80%") are read on a 0-100 scale.
    """
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, str):
        text = value.strip()
        scale = 100.0 if text.endswith("%") else 1.0
        try:
            value = float(text.rstrip("%")) / scale
        except ValueError:
            return default
    if not isinstance(value, (int, float)) or not math.isfinite(value):
        return default
    return min(1.0, max(0.0, float(value)))


def _text(value: Any) -> str:
    if value is None or isinstance(value, (dict, list)):
        return ""
    return str(value).strip()


def _text_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        value = [part for part in re.split(r"[\n,]", value)]
    if not isinstance(value, list):
        return []
    result: list[str] = []
    for entry in value:
        if isinstance(entry, dict):
            # {"name": "rice", "amount": "2 cups"} → "rice 2 cups"
            text = " ".join(_text(entry.get(k)) for k in ("name", "amount", "unit", "description") if entry.get(k))
        else:
            text = _text(entry)
        if text:
            result.append(text)
    return result


def _int(value: Any, default: int) -> int:
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)) and math.isfinite(value):
        return max(0, int(value))
    if isinstance(value, str):
        m = re.search(r"\d+", value)
        if m:
            return int(m.group(0))
    return default


def _meal_item(raw: Any) -> RecoveredItem | None:
    if isinstance(raw, str):
        raw = {"name": raw}
    if not isinstance(raw, dict):
        return None

    name = _text(raw.get("name") or raw.get("title") or raw.get("dish"))
    ingredients = _text_list(raw.get("ingredients"))
    instructions = _text_list(raw.get("instructions") or raw.get("steps"))
    if not name and not ingredients and not instructions:
        return None

    return RecoveredItem(
        name=name or PLACEHOLDER,
        confidence=clamp_confidence(raw.get("confidence")),
        attributes={
            "ingredients": ingredients or [PLACEHOLDER],
            "instructions": instructions or [PLACEHOLDER],
            "cookingTime": _int(raw.get("cookingTime", raw.get("cooking_time")), DEFAULT_COOKING_TIME),
            "servings": _int(raw.get("servings"), DEFAULT_SERVINGS),
            "difficulty": _text(raw.get("difficulty")) or DEFAULT_DIFFICULTY,
            "category": _text(raw.get("category")) or PLACEHOLDER,
            "tips": _text_list(raw.get("tips")),
        },
    )


def _choice(value: Any, allowed: tuple[str, ...], fallback: str) -> str:
    text = _text(value).lower().replace(" ", "_").replace("-", "_")
    return text if text in allowed else fallback


def _ingredient_item(raw: Any) -> RecoveredItem | None:
    if isinstance(raw, str):
        raw = {"name": raw}
    if not isinstance(raw, dict):
        return None

    name = _text(raw.get("name") or raw.get("ingredient") or raw.get("label"))
    if not name:
        return None

    return RecoveredItem(
        name=name,
        confidence=clamp_confidence(raw.get("confidence")),
        attributes={
            "category": _choice(raw.get("category"), INGREDIENT_CATEGORIES, "other"),
            "quantity": _text(raw.get("quantity") or raw.get("amount")) or PLACEHOLDER,
            "freshness": _choice(raw.get("freshness"), FRESHNESS_LEVELS, PLACEHOLDER),
        },
    )


_ITEM_BUILDERS: dict[RequestKind, Callable[[Any], RecoveredItem | None]] = {
    RequestKind.CONTENT_GENERATION: _meal_item,
    RequestKind.IMAGE_RECOGNITION: _ingredient_item,
}


def _collect(value: Any, kind: RequestKind, nested: bool = True) -> tuple[list[Any], Any] | None:
    """Locate the item collection in a parsed value.

    Returns (raw items, payload-level confidence) or None when the value does
    not have a recognizable shape for ``kind``.
    """
    if isinstance(value, list):
        return value, None
    if not isinstance(value, dict):
        return None

    for key in COLLECTION_KEYS[kind]:
        if isinstance(value.get(key), list):
            return value[key], value.get("confidence")

    if kind == RequestKind.CONTENT_GENERATION and any(k in value for k in ("name", "title", "dish")):
        return [value], None
    if kind == RequestKind.IMAGE_RECOGNITION and "name" in value:
        return [value], None

    if nested:
        for inner in value.values():
            found = _collect(inner, kind, nested=False) if isinstance(inner, dict) else None
            if found is not None:
                return found
    return None


def build_result(value: Any, kind: RequestKind) -> RecoveredResult | None:
    """Turn a parsed value into a result, or None if the shape is wrong."""
    found = _collect(value, kind)
    if found is None:
        return None
    raw_items, payload_confidence = found

    builder = _ITEM_BUILDERS[kind]
    items = [item for item in (builder(raw) for raw in raw_items) if item is not None]
    if raw_items and not items:
        return None  # a collection of junk is not an empty result

    if payload_confidence is not None:
        confidence = clamp_confidence(payload_confidence)
    elif items:
        confidence = sum(i.confidence for i in items) / len(items)
    else:
        confidence = 0.0
    return RecoveredResult(kind=kind, items=items, confidence=confidence)


# ---------------------------------------------------------------------------
# Pattern extraction
# ---------------------------------------------------------------------------

LOOSE_NAME_LIMIT = 3  # name-only meals kept when nothing richer is found

# Per-meal list fields; their bodies may hold ingredient objects with their own ``name``
_LIST_FIELDS = ("ingredients", "instructions", "steps", "tips")


def _field(name: str) -> str:
    return rf"""(?<![\w$])["']?{name}["']?\s*[:=]\s*"""


# An apostrophe followed by a letter ("Chef's") does not close a single-quoted name
_NAME_PATTERN = re.compile(_field("name") + r"""(?:"((?:[^"\\\n]|\\.)+)"|'((?:[^'\n]|'(?=\w))+)')""")
_LOOSE_NAME_PATTERN = re.compile(_field("name") + r"""["']?((?:[^"'\n,}]|'(?=\w))+)""")
_LIST_START = re.compile(_field("(?:" + "|".join(_LIST_FIELDS) + ")") + r"\[")
_OBJECT_ENTRY = re.compile(r"\{[^{}]*\}?")
_QUOTED = re.compile(r'"((?:[^"\\]|\\.)*)"|\'((?:[^\'\\]|\\.)*)\'')


def _prev_char(text: str, i: int) -> str:
    j = i - 1
    while j >= 0 and text[j].isspace():
        j -= 1
    return text[j] if j >= 0 else ""


def _next_char(text: str, i: int) -> str:
    j = i + 1
    while j < len(text) and text[j].isspace():
        j += 1
    return text[j] if j < len(text) else ""


def _bracket_end(text: str, start: int) -> int:
    """Index just past the bracket closing the one at ``start`` (end of text if truncated).

    A single quote only opens or closes a string at a value boundary, so
    apostrophes inside words do not flip the quoting state.
    """
    depth = 0
    quote = ""
    i = start
    while i < len(text):
        ch = text[i]
        if quote:
            if ch == "\\":
                i += 2
                continue
            if ch == quote and (quote == '"' or _next_char(text, i) in ",]}:"):
                quote = ""
        elif ch == '"' or (ch == "'" and _prev_char(text, i) in "[{,:"):
            quote = ch
        elif ch in "[{":
            depth += 1
        elif ch in "]}":
            depth -= 1
            if depth == 0:
                return i + 1
        i += 1
    return len(text)


def _list_spans(text: str) -> list[tuple[int, int]]:
    spans = []
    for m in _LIST_START.finditer(text):
        start = m.end() - 1
        spans.append((start, _bracket_end(text, start)))
    return spans


def _without_lists(section: str) -> str:
    """The section with list bodies blanked, so scalar lookups ignore nested objects."""
    for start, end in reversed(_list_spans(section)):
        section = section[:start] + "[]" + section[end:]
    return section


def _list_entries(body: str) -> list[str]:
    if "{" in body:
        entries = []
        for obj in _OBJECT_ENTRY.findall(body):
            parts = [_scalar_field(obj, key) for key in ("name", "amount", "unit", "description")]
            text = " ".join(p.strip() for p in parts if p and p.strip())
            if text:
                entries.append(text)
        return entries
    quoted = [a or b for a, b in _QUOTED.findall(body)]
    values = quoted or body.split(",")
    cleaned = [v.strip().strip("\"'").strip() for v in values]
    return [v for v in cleaned if v]


def _list_field(section: str, *names: str) -> list[str]:
    for name in names:
        m = re.search(_field(name) + r"\[", section)
        if not m:
            continue
        start = m.end() - 1
        end = _bracket_end(section, start)
        body = section[start + 1 : end]
        if body.endswith("]"):
            body = body[:-1]
        return _list_entries(body)
    return []


def _scalar_field(section: str, name: str) -> str | None:
    m = re.search(_field(name) + r"""(?:["']([^"'\n]*)["']|([-+]?\d+(?:\.\d+)?))""", section)
    if not m:
        return None
    return m.group(1) if m.group(1) is not None else m.group(2)


def _sections(text: str, skip_nested: bool) -> list[tuple[str, str]]:
    """(name, text up to the next name) for every name field in the text.

    With ``skip_nested``, names inside per-meal list fields (ingredient
    objects) do not start a section.
    """
    matches = list(_NAME_PATTERN.finditer(text))
    if skip_nested:
        spans = _list_spans(text)
        matches = [m for m in matches if not any(s < m.start() < e for s, e in spans)]
    sections = []
    for idx, m in enumerate(matches):
        end = matches[idx + 1].start() if idx + 1 < len(matches) else len(text)
        sections.append(((m.group(1) or m.group(2)).strip(), text[m.start() : end]))
    return sections


def _loose_meal_names(text: str) -> list[str]:
    spans = _list_spans(text)
    names: list[str] = []
    for m in _LOOSE_NAME_PATTERN.finditer(text):
        name = m.group(1).strip()
        if name and not any(s < m.start() < e for s, e in spans):
            names.append(name)
        if len(names) == LOOSE_NAME_LIMIT:
            break
    return names


def extract_by_pattern(text: str, kind: RequestKind) -> RecoveredResult | None:
    """Best-effort regex scan; None unless at least one item is found."""
    is_content = kind == RequestKind.CONTENT_GENERATION
    raw_items: list[dict[str, Any]] = []
    for name, section in _sections(text, skip_nested=is_content):
        if not name:
            continue
        if is_content:
            ingredients = _list_field(section, "ingredients")
            instructions = _list_field(section, "instructions", "steps")
            if not ingredients and not instructions:
                continue
            scalars = _without_lists(section)
            raw_items.append(
                {
                    "name": name,
                    "ingredients": ingredients,
                    "instructions": instructions,
                    "cookingTime": _scalar_field(scalars, "cookingTime"),
                    "servings": _scalar_field(scalars, "servings"),
                    "difficulty": _scalar_field(scalars, "difficulty"),
                    "category": _scalar_field(scalars, "category"),
                }
            )
        else:
            raw_items.append(
                {
                    "name": name,
                    "confidence": _scalar_field(section, "confidence"),
                    "category": _scalar_field(section, "category"),
                    "quantity": _scalar_field(section, "quantity"),
                    "freshness": _scalar_field(section, "freshness"),
                }
            )

    if not raw_items and is_content:
        # Names alone still make a plan; every other field gets its placeholder
        raw_items = [{"name": name} for name in _loose_meal_names(text)]

    if not raw_items:
        return None
    # Payload confidence is not trusted here; average the items instead.
    return build_result(raw_items, kind)


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


def _strict(candidate: str) -> Any:
    return json.loads(candidate)


def _sanitized(candidate: str) -> Any:
    return json.loads(sanitize_json(candidate))


_PARSE_STAGES: list[tuple[RecoveryStage, Callable[[str], Any]]] = [
    (RecoveryStage.STRICT_PARSE, _strict),
    (RecoveryStage.SANITIZED_PARSE, _sanitized),
    (RecoveryStage.PERMISSIVE_EVALUATION, parse_literal),
]


def recover(text: str, kind: RequestKind, provider_id: str = "") -> RecoveredResult:
    """Run the recovery stages in order; raise ``UnrecoverableResponseError`` if all fail."""
    candidates = extract_candidates(text or "")

    for stage, parse in _PARSE_STAGES:
        for candidate in candidates:
            try:
                value = parse(candidate)
            except (json.JSONDecodeError, LiteralParseError) as e:
                logger.debug("%s failed for %s: %s", stage.value, provider_id, e)
                continue
            result = build_result(value, kind)
            if result is not None:
                return _finish(result, stage, provider_id)
            logger.debug("%s parsed but shape did not match %s", stage.value, kind.value)

    result = extract_by_pattern(text or "", kind)
    if result is not None:
        return _finish(result, RecoveryStage.PATTERN_EXTRACTION, provider_id)

    logger.warning("Unrecoverable %s response from %s, head: %s", kind.value, provider_id, (text or "")[:_PREVIEW])
    raise UnrecoverableResponseError(provider_id, text or "")


def _finish(result: RecoveredResult, stage: RecoveryStage, provider_id: str) -> RecoveredResult:
    result.stage = stage
    result.provider_id = provider_id
    RECOVERY_STAGES.labels(stage=stage.value).inc()
    logger.info("Recovered %d item(s) from %s via %s", len(result.items), provider_id, stage.value)
    return result
