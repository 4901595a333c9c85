"""Tests for the safe literal parser used by permissive evaluation."""

import pytest

from mealgen.gateway.literal_parser import MAX_DEPTH, LiteralParseError, parse_literal


class TestParseLiteral:
    def test_strict_json(self):
        assert parse_literal('{"a": [1, 2.5, "x", true, null]}') == {"a": [1, 2.5, "x", True, None]}

    def test_js_object_literal(self):
        text = "{name: 'Soup', tags: ['hot', 'easy',], servings: +2, ratio: .5,}"
        assert parse_literal(text) == {"name": "Soup", "tags": ["hot", "easy"], "servings": 2, "ratio": 0.5}

    def test_backtick_string(self):
        assert parse_literal("{note: `simmer gently`}") == {"note": "simmer gently"}

    def test_comments_skipped(self):
        text = """{
            // the dish
            name: "Stew", /* block */ time: 40
        }"""
        assert parse_literal(text) == {"name": "Stew", "time": 40}

    def test_keywords(self):
        assert parse_literal("[undefined, NaN, True, False, None]") == [None, None, True, False, None]

    def test_escapes(self):
        assert parse_literal(r"'it\'s é\x41\n'") == "it's éA\n"

    def test_hex_and_negative_numbers(self):
        assert parse_literal("[0x1F, -0x10, -3, 1e2]") == [31, -16, -3, 100.0]

    def test_numeric_keys(self):
        assert parse_literal("{1: 'a'}") == {"1": "a"}


class TestParseLiteralRejects:
    @pytest.mark.parametrize(
        "text",
        [
            "{name: function() { return 1 }}",
            "require('fs')",
            "{a: process}",
            "{a: new Date()}",
            "{a: this}",
            "[eval]",
            "{__proto__: {}}",
        ],
    )
    def test_executable_tokens_rejected(self, text):
        with pytest.raises(LiteralParseError):
            parse_literal(text)

    def test_executable_error_names_token(self):
        with pytest.raises(LiteralParseError, match="Executable token 'function'"):
            parse_literal("[function]")

    def test_bare_identifier_rejected(self):
        with pytest.raises(LiteralParseError, match="not a literal"):
            parse_literal("{a: tomato}")

    def test_template_interpolation_rejected(self):
        with pytest.raises(LiteralParseError, match="interpolation"):
            parse_literal("`${alert(1)}`")

    def test_arrow_function_rejected(self):
        with pytest.raises(LiteralParseError):
            parse_literal("{a: () => 1}")

    def test_trailing_content_rejected(self):
        with pytest.raises(LiteralParseError, match="trailing"):
            parse_literal("{} {}")

    def test_unterminated(self):
        with pytest.raises(LiteralParseError):
            parse_literal('{"meals": [{"name": "So')

    def test_nesting_limit(self):
        with pytest.raises(LiteralParseError, match="deep"):
            parse_literal("[" * (MAX_DEPTH + 1) + "]" * (MAX_DEPTH + 1))

    def test_error_is_value_error_with_position(self):
        with pytest.raises(ValueError) as exc_info:
            parse_literal("[1, @]")
        assert exc_info.value.position == 4
