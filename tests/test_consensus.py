"""Tests for the consensus aggregator."""

import pytest

from mealgen.gateway.consensus import merge, normalize_name, plurality
from mealgen.gateway.types import RecoveredItem, RecoveredResult, RecoveryStage, RequestKind

IMAGE = RequestKind.IMAGE_RECOGNITION


def _item(name, confidence=0.8, category="vegetable", quantity="1", freshness="fresh"):
    return RecoveredItem(
        name=name,
        confidence=confidence,
        attributes={"category": category, "quantity": quantity, "freshness": freshness},
    )


def _result(provider_id, *items, confidence=0.8):
    return RecoveredResult(kind=IMAGE, items=list(items), confidence=confidence, provider_id=provider_id)


class TestHelpers:
    def test_normalize_name(self):
        assert normalize_name("  Green   Pepper ") == "green pepper"
        assert normalize_name("TOMATO") == normalize_name("tomato")

    def test_plurality_first_seen_breaks_ties(self):
        assert plurality(["a", "b", "b", "a"]) == "a"
        assert plurality(["b", "a", "a"]) == "a"

    def test_plurality_unhashable_values(self):
        assert plurality([["x", "y"], ["z"], ["x", "y"]]) == ["x", "y"]


class TestMerge:
    def test_zero_results(self):
        result = merge([])
        assert result.kind == IMAGE
        assert result.items == []
        assert result.source_count == 0
        assert result.confidence == 0.0

    def test_zero_results_keeps_requested_kind(self):
        assert merge([], RequestKind.CONTENT_GENERATION).kind == RequestKind.CONTENT_GENERATION

    def test_single_result_kept_whole(self):
        only = _result("p1", _item("tomato"), _item("egg"))
        merged = merge([only])
        assert [i.name for i in merged.items] == ["tomato", "egg"]
        assert merged.source_count == 1

    def test_item_needs_two_reports(self):
        merged = merge(
            [
                _result("p1", _item("tomato"), _item("egg")),
                _result("p2", _item("Tomato"), _item("onion")),
                _result("p3", _item("carrot")),
            ]
        )
        assert [i.name for i in merged.items] == ["tomato"]
        assert merged.votes == {"tomato": 2, "egg": 1, "onion": 1, "carrot": 1}
        assert merged.providers == ["p1", "p2", "p3"]

    def test_duplicate_within_one_result_counts_once(self):
        merged = merge([_result("p1", _item("egg"), _item("EGG")), _result("p2", _item("milk"))])
        assert merged.items == []
        assert merged.votes["egg"] == 1

    def test_attributes_by_plurality(self):
        merged = merge(
            [
                _result("p1", _item("tomato", category="vegetable", quantity="2")),
                _result("p2", _item("tomato", category="other", quantity="3")),
                _result("p3", _item("tomato", category="other", quantity="2")),
            ]
        )
        tomato = merged.items[0]
        assert tomato.attributes["category"] == "other"
        assert tomato.attributes["quantity"] == "2"

    def test_attribute_tie_goes_to_first_seen(self):
        merged = merge(
            [
                _result("p1", _item("egg", freshness="good")),
                _result("p2", _item("egg", freshness="fresh")),
            ]
        )
        assert merged.items[0].attributes["freshness"] == "good"

    def test_confidence_is_mean_of_reports(self):
        merged = merge(
            [
                _result("p1", _item("egg", confidence=0.9), confidence=0.9),
                _result("p2", _item("egg", confidence=0.6), confidence=0.5),
                _result("p3", _item("milk"), confidence=0.7),
            ]
        )
        assert merged.items[0].confidence == pytest.approx(0.75)
        assert merged.confidence == pytest.approx(0.7)

    def test_identical_results_round_trip(self):
        source = _result("p1", _item("tomato", 0.9), _item("egg", 0.7, category="other"), confidence=0.8)
        copies = [
            RecoveredResult(
                kind=IMAGE,
                items=[RecoveredItem(i.name, i.confidence, dict(i.attributes)) for i in source.items],
                confidence=source.confidence,
                provider_id=f"p{n}",
                stage=RecoveryStage.STRICT_PARSE,
            )
            for n in range(3)
        ]

        merged = merge(copies)

        assert [i.to_dict() for i in merged.items] == [i.to_dict() for i in source.items]
        assert merged.confidence == pytest.approx(source.confidence)
        assert merged.kind == source.kind

    def test_to_dict(self):
        merged = merge([_result("p1", _item("egg")), _result("p2", _item("egg"))])
        data = merged.to_dict()
        assert data["kind"] == "image-recognition"
        assert data["source_count"] == 2
        assert data["items"][0]["name"] == "egg"
        assert data["votes"] == {"egg": 2}
