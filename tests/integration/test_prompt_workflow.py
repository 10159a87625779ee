"""Integration tests for the prompt crafting workflow.

This module runs the bundled taxonomy, presets and macros through:
- Preset loading (including tags removed from the taxonomy)
- Conflict resolution and conflict reports
- Prompt composition and history
- AI driven selection with a fake LLM
"""

from pathlib import Path

import polars as pl
import pytest

from udio_prompt_crafter.core.conflicts import Resolution, export_conflict_report
from udio_prompt_crafter.core.exceptions import DuplicatePresetError
from udio_prompt_crafter.core.selection import SelectionStore
from udio_prompt_crafter.core.taxonomy import load_taxonomy
from udio_prompt_crafter.llm import deconstruct_prompt
from udio_prompt_crafter.presets import (
    PromptHistory,
    load_history,
    load_macros,
    load_presets,
    save_history,
    save_presets,
)


@pytest.fixture
def store() -> SelectionStore:
    return SelectionStore(load_taxonomy())


@pytest.mark.integration
class TestPromptWorkflow:
    """同梱データを使ったプロンプト作成ワークフロー."""

    def test_preset_to_prompt(self, store: SelectionStore) -> None:
        """プリセット読み込み → 組み立て."""
        preset = load_presets().get("Ambient Psybient")
        result = store.load_snapshot(preset.snapshot, preset_name=preset.name)

        assert result.dropped_ids == ()
        assert store.compose().prompt == (
            "psytrance; ambient; melancholic; dreamy; warm-pads; shimmering-bells; slow; instrumental; "
            "drifting through a silent nebula"
        )
        assert store.active_preset is not None
        assert not store.active_preset.is_dirty

    def test_stale_preset_tag_is_dropped(self, store: SelectionStore) -> None:
        preset = load_presets().get("Retro 80s Synth-Pop")
        result = store.load_snapshot(preset.snapshot, preset_name=preset.name)

        assert result.dropped_ids == ("m_nostalgic",)
        assert len(result.warnings) == 1
        assert "m_nostalgic" not in store.snapshot().selected_tags
        assert store.category_order[:6] == ["genre", "era", "classics", "production", "vocals", "mood"]

    def test_conflict_resolution_and_report(self, store: SelectionStore, tmp_path: Path) -> None:
        preset = load_presets().get("90s Progressive Trance")
        store.load_snapshot(preset.snapshot, preset_name=preset.name)

        # 1. 衝突するタグを追加しようとすると保留になる
        pending = store.toggle("m_dark")
        assert pending is not None
        assert [t.id for t in pending.conflicting_tags] == ["m_euphoric"]
        assert not store.active_preset.is_dirty

        # 2. 両方残すと衝突として報告される
        store.resolve(Resolution.KEEP_BOTH)
        assert store.active_preset.is_dirty
        report = export_conflict_report(store.conflicts, tmp_path / "reports")
        assert report is not None
        assert pl.read_csv(report)["tag_a"].to_list() == ["m_dark"]

        # 3. 片方を外すと衝突は消える
        store.toggle("m_euphoric")
        assert store.conflicts == []

    def test_macro_with_alias_label(self, store: SelectionStore) -> None:
        macros = {m.name: m for m in load_macros()}
        store.load_tag_ids(macros["Acid Warehouse"].tags)

        assert store.compose().prompt == (
            "driving; fast; four-on-the-floor; tr-909; tb-303; TB-303 acidline (16th); instrumental"
        )

    def test_macro_with_unknown_tag(self, store: SelectionStore) -> None:
        macros = {m.name: m for m in load_macros()}
        result = store.load_tag_ids(macros["Psytrance Sleep Aid"].tags)

        assert result.dropped_ids == ("u_chilling",)
        assert "t_slow" in store.selected

    def test_save_presets_and_history(self, store: SelectionStore, tmp_path: Path) -> None:
        library = load_presets()
        store.toggle("g_synthwave")
        store.toggle("m_dreamy")

        library.save("Chill", store.snapshot())
        with pytest.raises(DuplicatePresetError):
            library.save("CHILL", store.snapshot())
        assert library.names().count("Chill") == 1

        presets_path = tmp_path / "presets.json"
        save_presets(library, presets_path)
        assert load_presets(presets_path).get("chill").snapshot == store.snapshot()

        history = PromptHistory()
        history.record(store.compose().prompt, store.snapshot())
        history_path = tmp_path / "history.json"
        save_history(history, history_path)
        assert load_history(history_path)[0].prompt_string == "synthwave; dreamy"

    def test_ai_deconstruct_into_bundled_taxonomy(self, store: SelectionStore) -> None:
        def fake_llm(system_prompt: str, user_prompt: str, freeform: bool = False) -> dict:
            return {"tag_ids": ["g_trance", "era_90s", "m_euphoric", "x_laser"]}

        result = deconstruct_prompt(fake_llm, store, "euphoric 90s trance with lasers")

        assert set(result.loaded_ids) == {"g_trance", "era_90s", "m_euphoric"}
        assert store.compose().prompt == "trance; 90s; euphoric"
