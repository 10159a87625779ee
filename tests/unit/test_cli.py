"""Unit tests for the command line entry point."""

import json
import sys
from pathlib import Path

import pytest
from loguru import logger

from udio_prompt_crafter.cli import main


@pytest.fixture(autouse=True)
def restore_logger():
    yield
    logger.remove()
    logger.add(sys.stderr)


@pytest.fixture
def taxonomy_path(tmp_path: Path, taxonomy_data: dict) -> Path:
    path = tmp_path / "taxonomy.json"
    path.write_text(json.dumps(taxonomy_data), encoding="utf-8")
    return path


class TestMain:
    def test_compose_from_tags(self, taxonomy_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        assert main(["--taxonomy", str(taxonomy_path), "--tags", "m_dreamy,g_synthwave"]) == 0
        assert capsys.readouterr().out.strip() == "synthwave; dreamy"

    def test_preview_separator_and_order(self, taxonomy_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        args = ["--taxonomy", str(taxonomy_path), "--tags", "g_synthwave,m_dreamy", "--order", "mood,genre", "--preview"]
        assert main(args) == 0
        assert capsys.readouterr().out.strip() == "dreamy, synthwave"

    def test_conflicting_tag_keeps_new(self, taxonomy_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        assert main(["--taxonomy", str(taxonomy_path), "--tags", "v_female,v_instrumental"]) == 0
        assert capsys.readouterr().out.strip() == "instrumental"

    def test_text_and_json(self, taxonomy_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        args = ["--taxonomy", str(taxonomy_path), "--tags", "m_dark", "--text", "lyrics=neon rain", "--json"]
        assert main(args) == 0
        data = json.loads(capsys.readouterr().out)
        assert data["prompt"] == "dark; neon rain"
        assert data["text_inputs"] == {"lyrics": "neon rain"}
        assert data["tags"] == [{"id": "m_dark", "label": "Dark", "categoryId": "mood"}]

    def test_conflict_report(self, taxonomy_path: Path, tmp_path: Path) -> None:
        """既存タグ側だけが宣言した衝突も選択後の走査でレポートされる."""
        report_dir = tmp_path / "reports"
        args = ["--taxonomy", str(taxonomy_path), "--tags", "v_instrumental,v_female", "--conflict-report", str(report_dir)]
        assert main(args) == 0
        assert (report_dir / "conflicts.csv").exists()

    def test_bundled_preset_with_stale_tag(self, capsys: pytest.CaptureFixture[str]) -> None:
        assert main(["--preset", "Retro 80s Synth-Pop"]) == 0
        captured = capsys.readouterr()
        assert captured.out.strip().startswith("synth-pop; 80s; juno-106; tr-808")
        assert "m_nostalgic" in captured.err

    def test_bundled_macro(self, capsys: pytest.CaptureFixture[str]) -> None:
        assert main(["--macro", "chillwave dream"]) == 0
        assert capsys.readouterr().out.strip().startswith("synthwave; electro")

    def test_tags_keep_ids_already_in_preset(self, capsys: pytest.CaptureFixture[str]) -> None:
        """プリセットで選択済みのIDを --tags に渡しても外さない."""
        assert main(["--preset", "90s Progressive Trance", "--tags", "g_trance,v_instrumental"]) == 0
        tokens = capsys.readouterr().out.strip().split("; ")
        assert tokens[0] == "trance"
        assert "instrumental" in tokens

    def test_repeated_tag_is_added_once(self, taxonomy_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        assert main(["--taxonomy", str(taxonomy_path), "--tags", "g_trance,g_trance"]) == 0
        assert capsys.readouterr().out.strip() == "trance"

    def test_macro_from_settings_path(self, taxonomy_path: Path, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        macros = tmp_path / "my_macros.json"
        macros.write_text(json.dumps([{"name": "Night", "tags": ["m_dark", "g_electro"]}]), encoding="utf-8")
        settings = tmp_path / "settings.yml"
        settings.write_text("macros_path: my_macros.json\n", encoding="utf-8")

        args = ["--settings", str(settings), "--taxonomy", str(taxonomy_path), "--macro", "night"]
        assert main(args) == 0
        assert capsys.readouterr().out.strip() == "electro; dark"

    def test_unknown_macro(self) -> None:
        assert main(["--macro", "Nope"]) == 2

    def test_unknown_preset(self) -> None:
        assert main(["--preset", "Nope"]) == 1

    def test_unknown_tag(self, taxonomy_path: Path) -> None:
        assert main(["--taxonomy", str(taxonomy_path), "--tags", "ghost"]) == 1

    def test_missing_taxonomy(self, tmp_path: Path) -> None:
        assert main(["--taxonomy", str(tmp_path / "missing.json")]) == 1

    def test_record_history(self, taxonomy_path: Path, tmp_path: Path) -> None:
        settings = tmp_path / "settings.yml"
        settings.write_text("history_path: state/history.json\n", encoding="utf-8")

        for _ in range(2):
            args = ["--settings", str(settings), "--taxonomy", str(taxonomy_path), "--tags", "g_trance", "--record-history"]
            assert main(args) == 0

        history = json.loads((tmp_path / "state" / "history.json").read_text(encoding="utf-8"))
        assert [e["promptString"] for e in history] == ["trance"]
