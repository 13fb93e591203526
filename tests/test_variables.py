# Copyright (c) Syntropy Systems
"""Tests for template variable handling."""

from promptgrid.variables import detect_variables, substitute_variables, variable_formats


class TestSubstitute:
    """Tests for substitute_variables."""

    def test_both_styles(self) -> None:
        """Test that both reference styles are replaced."""
        text = "Translate {{ word }} into ${lang}."

        result = substitute_variables(text, {"word": "hola", "lang": "English"})

        assert result == "Translate hola into English."

    def test_missing_left_verbatim(self) -> None:
        """Test that unknown names are kept as written."""
        assert substitute_variables("Hi {{ name }}", {}) == "Hi {{ name }}"

    def test_empty_value_left_verbatim(self) -> None:
        """Test that empty values do not erase the reference."""
        assert substitute_variables("Hi ${name}", {"name": ""}) == "Hi ${name}"

    def test_repeated_reference(self) -> None:
        assert substitute_variables("{{a}}-{{a}}", {"a": "x"}) == "x-x"


class TestDetect:
    """Tests for detect_variables."""

    def test_order_and_uniqueness(self) -> None:
        """Test curly names first, then dollar names, without duplicates."""
        text = "${b} {{a}} {{ c }} ${a} {{a}}"

        assert detect_variables(text) == ["a", "c", "b"]

    def test_blank_names_dropped(self) -> None:
        assert detect_variables("{{ }} ${}") == []

    def test_no_variables(self) -> None:
        assert detect_variables("plain text") == []


class TestFormats:
    """Tests for variable_formats."""

    def test_reports_styles_in_use(self) -> None:
        text = "{{ topic }} and ${topic}"

        assert variable_formats("topic", text) == ["{{topic}}", "${topic}"]

    def test_special_characters_escaped(self) -> None:
        assert variable_formats("a.b", "{{axb}}") == []
