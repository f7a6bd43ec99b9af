"""Tests for placeholder.py - template token extraction and substitution."""

from placeholder import PLACEHOLDER_RE, extract_keys, resolve_placeholders


class TestExtractKeys:
    """Tests for extract_keys."""

    def test_keys_in_order_of_first_use(self):
        """Test that keys come back deduplicated in order of appearance."""
        assert extract_keys("{{b}}, {{a}}, {{b}}") == ["b", "a"]

    def test_no_tokens(self):
        """Test a template without placeholders."""
        assert extract_keys("plain prompt") == []

    def test_malformed_tokens_ignored(self):
        """Test that only word-character keys are recognized."""
        assert extract_keys("{{ spaced }} {single} {{with-dash}} {{ok_1}}") == ["ok_1"]


class TestResolvePlaceholders:
    """Tests for resolve_placeholders."""

    def test_substitutes_values(self):
        """Test basic substitution."""
        result = resolve_placeholders("a {{x}} on {{y}}", {"x": "cat", "y": "mat"})
        assert result == "a cat on mat"

    def test_missing_key_resolves_empty(self):
        """Test that unknown keys become empty strings."""
        assert resolve_placeholders("a {{x}} b", {}) == "a  b"

    def test_repeated_key(self):
        """Test that every occurrence of a key is replaced."""
        assert resolve_placeholders("{{x}}-{{x}}", {"x": "1"}) == "1-1"

    def test_substitution_is_not_recursive(self):
        """Test that values containing tokens are left literal."""
        result = resolve_placeholders("{{a}}", {"a": "{{b}}", "b": "nope"})
        assert result == "{{b}}"

    def test_resolve_is_deterministic(self):
        """Test that the same inputs always give the same output."""
        template = "{{a}}, {{missing}}, {{b}} and {{a}}"
        values = {"a": "red", "b": "{{a}}"}

        first = resolve_placeholders(template, values)
        second = resolve_placeholders(template, values)

        assert first == second == "red, , {{a}} and red"
        assert values == {"a": "red", "b": "{{a}}"}

    def test_text_outside_tokens_unchanged(self):
        """Test that non-matching braces survive."""
        template = "{ {x} } {{ x }} {{x}}"
        assert resolve_placeholders(template, {"x": "v"}) == "{ {x} } {{ x }} v"

    def test_no_tokens_left_when_all_keys_known(self):
        """Test that resolving with every key leaves no token behind."""
        template = "{{a}} {{b}} {{a}}"
        result = resolve_placeholders(template, {"a": "1", "b": "2"})
        assert PLACEHOLDER_RE.search(result) is None
