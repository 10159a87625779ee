"""Unit tests for prompt composition."""

import json

from udio_prompt_crafter.core.composer import compose_prompt, ordered_categories


class TestOrderedCategories:
    def test_unknown_ids_skipped_and_missing_appended(self, taxonomy) -> None:
        ordered = ordered_categories(taxonomy, ["vocals", "ghost", "genre"])
        assert [c.id for c in ordered] == ["vocals", "genre", "mood", "lyrics"]


class TestComposePrompt:
    def test_category_order(self, taxonomy) -> None:
        result = compose_prompt(taxonomy, {"g_synthwave", "m_dreamy"}, ["genre", "mood"])
        assert result.prompt == "synthwave; dreamy"

    def test_reversed_order(self, taxonomy) -> None:
        result = compose_prompt(taxonomy, {"g_synthwave", "m_dreamy"}, ["mood", "genre"])
        assert result.prompt == "dreamy; synthwave"

    def test_tags_in_declaration_order_within_category(self, taxonomy) -> None:
        """カテゴリ内はタクソノミーでの宣言順に並ぶ."""
        result = compose_prompt(taxonomy, ["g_trance", "g_synthwave"], ["genre"])
        assert result.prompt == "synthwave; trance"

    def test_text_appended_after_labels_unnormalized(self, taxonomy) -> None:
        result = compose_prompt(
            taxonomy,
            {"v_female"},
            ["lyrics", "vocals"],
            text_category_values={"lyrics": "Neon Rain / Heartbreaks"},
        )
        assert result.tokens == ("female-vocals", "Neon Rain / Heartbreaks")
        assert result.text_inputs == {"lyrics": "Neon Rain / Heartbreaks"}

    def test_blank_text_skipped(self, taxonomy) -> None:
        result = compose_prompt(taxonomy, {"m_dark"}, [], text_category_values={"lyrics": "   "})
        assert result.prompt == "dark"
        assert result.text_inputs == {}

    def test_separator(self, taxonomy) -> None:
        result = compose_prompt(taxonomy, {"g_synthwave", "m_dreamy"}, ["genre", "mood"], separator=", ")
        assert result.prompt == "synthwave, dreamy"
        assert result.joined("; ") == "synthwave; dreamy"

    def test_empty_selection(self, taxonomy) -> None:
        result = compose_prompt(taxonomy, set(), ["genre"])
        assert result.prompt == ""
        assert result.tags == ()
        assert result.category_order == ("genre", "mood", "vocals", "lyrics")

    def test_structured_output(self, taxonomy) -> None:
        result = compose_prompt(taxonomy, {"g_synthwave", "m_dreamy"}, ["genre", "mood"])
        data = json.loads(result.to_json())
        assert data["prompt"] == "synthwave; dreamy"
        assert data["tags"] == [
            {"id": "g_synthwave", "label": "Synthwave", "categoryId": "genre"},
            {"id": "m_dreamy", "label": "Dreamy", "categoryId": "mood"},
        ]
        assert data["text_inputs"] == {}
        assert data["category_order"] == ["genre", "mood", "vocals", "lyrics"]
