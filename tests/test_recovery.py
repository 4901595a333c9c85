"""Tests for the response recovery pipeline."""

import json

import pytest

from mealgen.gateway.recovery import (
    DEFAULT_CONFIDENCE,
    PLACEHOLDER,
    UnrecoverableResponseError,
    clamp_confidence,
    extract_candidates,
    recover,
    sanitize_json,
)
from mealgen.gateway.types import RecoveryStage, RequestKind
from tests.fakes import INGREDIENTS_JSON, MEALS_JSON

CONTENT = RequestKind.CONTENT_GENERATION
IMAGE = RequestKind.IMAGE_RECOGNITION


# ==========================================================================
# Candidate extraction
# ==========================================================================


class TestExtractCandidates:
    def test_fenced_block_first(self):
        text = 'Here you go:\n```json\n{"a": 1}\n```\nEnjoy {not json}'
        candidates = extract_candidates(text)
        assert candidates[0] == '{"a": 1}'

    def test_duplicates_removed(self):
        assert extract_candidates('```json\n{"a": 1}\n```') == ['{"a": 1}']

    def test_outermost_spans(self):
        text = 'Answer: {"x": [1, 2]} done'
        assert extract_candidates(text) == ['{"x": [1, 2]}', "[1, 2]"]

    def test_no_structure(self):
        assert extract_candidates("No JSON here.") == []


# ==========================================================================
# Sanitizer
# ==========================================================================


class TestSanitizeJson:
    def test_single_quotes_and_bare_keys(self):
        assert json.loads(sanitize_json("{name: 'Soup', ingredients: ['a','b']}")) == {
            "name": "Soup",
            "ingredients": ["a", "b"],
        }

    def test_trailing_commas(self):
        assert json.loads(sanitize_json('{"a": [1, 2,], "b": 3,}')) == {"a": [1, 2], "b": 3}

    def test_double_quote_inside_single_quoted_string(self):
        assert json.loads(sanitize_json("{'tip': 'say \"hi\"'}")) == {"tip": 'say "hi"'}

    def test_apostrophe_inside_double_quoted_string_untouched(self):
        assert json.loads(sanitize_json("{\"tip\": \"chef's choice\", 'x': 1}")) == {"tip": "chef's choice", "x": 1}

    def test_python_literals(self):
        assert json.loads(sanitize_json("{'ok': True, 'none': None, 'no': False}")) == {
            "ok": True,
            "none": None,
            "no": False,
        }

    def test_doubled_escapes_collapsed(self):
        text = r'{\"name\": \"Soup\", \"ingredients\": [\"a\"]}'
        assert json.loads(sanitize_json(text)) == {"name": "Soup", "ingredients": ["a"]}

    def test_raw_newline_in_string_escaped(self):
        assert json.loads(sanitize_json("{'steps': 'boil\nserve'}")) == {"steps": "boil\nserve"}

    def test_identifier_values_not_quoted(self):
        # Only identifiers in key position are quoted
        assert sanitize_json("{a: true}") == '{"a": true}'


# ==========================================================================
# Confidence policy
# ==========================================================================


class TestClampConfidence:
    @pytest.mark.parametrize(
        "value, expected",
        [
            (0.4, 0.4),
            ("0.4", 0.4),
            ("80%", 0.8),
            (" 35 % ", 0.35),
            ("120%", 1.0),
            (0, 0.0),
            (1.7, 1.0),
            (-0.2, 0.0),
            (None, DEFAULT_CONFIDENCE),
            (True, DEFAULT_CONFIDENCE),
            ("high", DEFAULT_CONFIDENCE),
            (float("nan"), DEFAULT_CONFIDENCE),
            (float("inf"), DEFAULT_CONFIDENCE),
        ],
    )
    def test_clamp(self, value, expected):
        assert clamp_confidence(value) == expected


# ==========================================================================
# Pipeline stages
# ==========================================================================


class TestStrictParse:
    def test_prose_around_json(self):
        text = f"Sure! Here are some ideas:\n{MEALS_JSON}\nLet me know if you need more."
        result = recover(text, CONTENT, "groq")

        assert result.stage == RecoveryStage.STRICT_PARSE
        assert result.provider_id == "groq"
        assert [m.name for m in result.items] == ["Tomato omelette", "Egg fried rice"]
        assert result.items[0].attributes["cookingTime"] == 15
        assert result.items[1].attributes["tips"] == ["Use day-old rice"]

    def test_fenced_block(self):
        text = f"```json\n{INGREDIENTS_JSON}\n```"
        result = recover(text, IMAGE, "openai")

        assert result.stage == RecoveryStage.STRICT_PARSE
        assert [i.name for i in result.items] == ["tomato", "egg"]
        assert result.confidence == 0.85
        assert result.items[0].attributes == {"category": "vegetable", "quantity": "2", "freshness": "fresh"}

    def test_empty_collection_is_empty_success(self):
        result = recover('{"ingredients": [], "confidence": 0}', IMAGE)
        assert result.stage == RecoveryStage.STRICT_PARSE
        assert result.is_empty
        assert result.confidence == 0.0

    def test_strongest_stage_wins(self):
        # Pattern extraction would also work here; strict parse must be used
        result = recover('{"name": "Soup", "ingredients": ["water"], "instructions": ["boil"]}', CONTENT)
        assert result.stage == RecoveryStage.STRICT_PARSE

    def test_meal_items_get_complete_shape(self):
        result = recover('{"meals": [{"name": "Toast", "ingredients": ["bread"]}]}', CONTENT)
        meal = result.items[0]

        assert meal.confidence == DEFAULT_CONFIDENCE
        assert meal.attributes == {
            "ingredients": ["bread"],
            "instructions": [PLACEHOLDER],
            "cookingTime": 30,
            "servings": 2,
            "difficulty": "medium",
            "category": PLACEHOLDER,
            "tips": [],
        }

    def test_structured_ingredient_entries_flattened(self):
        text = '{"meals": [{"name": "Rice", "ingredients": [{"name": "rice", "amount": "2 cups"}]}]}'
        result = recover(text, CONTENT)
        assert result.items[0].attributes["ingredients"] == ["rice 2 cups"]

    def test_string_ingredient_items(self):
        result = recover('{"ingredients": ["Tomato", "Egg"]}', IMAGE)
        assert [i.name for i in result.items] == ["Tomato", "Egg"]
        assert result.items[0].attributes == {"category": "other", "quantity": PLACEHOLDER, "freshness": PLACEHOLDER}
        assert result.confidence == DEFAULT_CONFIDENCE

    def test_confidence_clamped_and_defaulted(self):
        text = json.dumps(
            {
                "ingredients": [
                    {"name": "a", "confidence": 1.7},
                    {"name": "b", "confidence": -0.2},
                    {"name": "c"},
                    {"name": "d", "confidence": 0},
                ]
            }
        )
        result = recover(text, IMAGE)
        assert [i.confidence for i in result.items] == [1.0, 0.0, 0.5, 0.0]
        assert result.confidence == pytest.approx(0.375)

    def test_unknown_category_and_freshness_normalized(self):
        text = '{"ingredients": [{"name": "milk", "category": "Dairy", "freshness": "Need to use soon"}, {"name": "x", "category": "alien", "freshness": "rotten"}]}'
        result = recover(text, IMAGE)
        assert result.items[0].attributes["category"] == "dairy"
        assert result.items[0].attributes["freshness"] == "need_to_use_soon"
        assert result.items[1].attributes["category"] == "other"
        assert result.items[1].attributes["freshness"] == PLACEHOLDER

    def test_nested_collection(self):
        result = recover('{"mealPlan": {"meals": [{"name": "Soup", "ingredients": ["water"]}]}}', CONTENT)
        assert [m.name for m in result.items] == ["Soup"]


class TestSanitizedParse:
    def test_unquoted_keys_single_quotes(self):
        # Single provider returns JS-object-style text
        result = recover("Here you go: {name: 'Soup', ingredients: ['a','b']}", CONTENT, "p1")

        assert result.stage == RecoveryStage.SANITIZED_PARSE
        assert len(result.items) == 1
        assert result.items[0].name == "Soup"
        assert result.items[0].attributes["ingredients"] == ["a", "b"]
        assert result.items[0].attributes["instructions"] == [PLACEHOLDER]

    def test_trailing_commas(self):
        text = '{"meals": [{"name": "Soup", "ingredients": ["a",], "instructions": ["boil"],},]}'
        result = recover(text, CONTENT)
        assert result.stage == RecoveryStage.SANITIZED_PARSE
        assert result.items[0].attributes["instructions"] == ["boil"]

    def test_double_escaped(self):
        text = r'{\"ingredients\": [{\"name\": \"egg\", \"confidence\": 0.9}]}'
        result = recover(text, IMAGE)
        assert result.stage == RecoveryStage.SANITIZED_PARSE
        assert result.items[0].name == "egg"

    def test_python_repr(self):
        result = recover("{'ingredients': [{'name': 'egg', 'confidence': 0.9, 'fresh': True}]}", IMAGE)
        assert result.stage == RecoveryStage.SANITIZED_PARSE
        assert result.items[0].confidence == 0.9


class TestPermissiveEvaluation:
    def test_comments_in_output(self):
        text = """{
          "meals": [
            // quick option
            {"name": "Soup", "ingredients": ["water"], "instructions": ["boil"]}
          ]
        }"""
        result = recover(text, CONTENT)
        assert result.stage == RecoveryStage.PERMISSIVE_EVALUATION
        assert result.items[0].name == "Soup"

    def test_backtick_strings(self):
        result = recover("{ingredients: [{name: `basil`, confidence: 0.6}]}", IMAGE)
        assert result.stage == RecoveryStage.PERMISSIVE_EVALUATION
        assert result.items[0].name == "basil"

    def test_executable_text_never_evaluated(self):
        text = "{name: 'Soup', ingredients: [require('child_process').exec('rm -rf /')]}"
        result = recover(text, CONTENT)

        # Rejected by the literal parser; only inert strings are scraped out
        assert result.stage == RecoveryStage.PATTERN_EXTRACTION
        assert result.items[0].name == "Soup"
        assert result.items[0].attributes["ingredients"] == ["child_process", "rm -rf /"]


class TestPatternExtraction:
    def test_truncated_meal_output(self):
        text = '{"meals": [{"name": "Soup", "ingredients": ["water", "salt"], "instructions": ["Boil"]}, {"name": "Sal'
        result = recover(text, CONTENT, "gemini")

        assert result.stage == RecoveryStage.PATTERN_EXTRACTION
        assert [m.name for m in result.items] == ["Soup"]
        soup = result.items[0]
        assert soup.attributes["ingredients"] == ["water", "salt"]
        assert soup.attributes["instructions"] == ["Boil"]
        assert soup.attributes["cookingTime"] == 30
        assert soup.attributes["category"] == PLACEHOLDER

    def test_recognition_fields_from_prose(self):
        text = 'name: "carrot", confidence: 0.75, category: "vegetable"\nname: "onion", freshness: "fresh"'
        result = recover(text, IMAGE)

        assert result.stage == RecoveryStage.PATTERN_EXTRACTION
        assert [i.name for i in result.items] == ["carrot", "onion"]
        assert result.items[0].confidence == 0.75
        assert result.items[0].attributes["category"] == "vegetable"
        assert result.items[1].confidence == DEFAULT_CONFIDENCE
        assert result.items[1].attributes["freshness"] == "fresh"
        assert result.items[1].attributes["quantity"] == PLACEHOLDER
        assert result.confidence == pytest.approx(0.625)

    def test_ingredient_objects_do_not_start_meals(self):
        text = (
            '{"meals": [{"name": "Soup", "ingredients": [{"name": "water", "amount": "1 cup"}, '
            '{"name": "salt", "amount": "1 tsp", "category": "seasoning"}], "instructions": ["Boil"], '
            '"category": "soup"}, {"name": "Sal'
        )
        result = recover(text, CONTENT)

        assert result.stage == RecoveryStage.PATTERN_EXTRACTION
        assert [m.name for m in result.items] == ["Soup"]
        soup = result.items[0]
        assert soup.attributes["ingredients"] == ["water 1 cup", "salt 1 tsp"]
        assert soup.attributes["instructions"] == ["Boil"]
        assert soup.attributes["category"] == "soup"

    def test_name_only_meals_fall_back_to_placeholders(self):
        result = recover('Ideas:\nname: "Curry"\nname: "Miso soup"', CONTENT)

        assert result.stage == RecoveryStage.PATTERN_EXTRACTION
        assert [m.name for m in result.items] == ["Curry", "Miso soup"]
        assert result.items[0].attributes["ingredients"] == [PLACEHOLDER]
        assert result.items[0].attributes["instructions"] == [PLACEHOLDER]

    def test_name_only_fallback_capped(self):
        text = "\n".join(f"name: Dish {n}" for n in range(5))
        result = recover(text, CONTENT)
        assert [m.name for m in result.items] == ["Dish 0", "Dish 1", "Dish 2"]

    def test_richer_meals_win_over_name_only(self):
        text = 'name: "Curry"\nname: "Soup", ingredients: ["water"], steps: ["Boil"]'
        result = recover(text, CONTENT)
        assert [m.name for m in result.items] == ["Soup"]

    @pytest.mark.parametrize(
        "text",
        [
            "Try name: 'Chef's salad', ingredients: ['lettuce'] or name: 'Pie', ingredients: ['apple']",
            'Try name: "Chef\'s salad", ingredients: ["lettuce"] or name: "Pie", ingredients: ["apple"]',
        ],
    )
    def test_apostrophe_in_name(self, text):
        result = recover(text, CONTENT)

        assert result.stage == RecoveryStage.PATTERN_EXTRACTION
        assert [m.name for m in result.items] == ["Chef's salad", "Pie"]
        assert result.items[0].attributes["ingredients"] == ["lettuce"]


class TestUnrecoverable:
    def test_plain_prose(self):
        with pytest.raises(UnrecoverableResponseError) as exc_info:
            recover("Sorry, I can't help with that.", CONTENT, "anthropic")
        assert exc_info.value.provider_id == "anthropic"
        assert exc_info.value.preview.startswith("Sorry")

    def test_wrong_shape_is_not_empty_success(self):
        with pytest.raises(UnrecoverableResponseError):
            recover('{"status": "ok", "count": 3}', CONTENT)

    def test_empty_text(self):
        with pytest.raises(UnrecoverableResponseError):
            recover("", IMAGE)

    def test_is_value_error(self):
        with pytest.raises(ValueError):
            recover("nothing", IMAGE)
