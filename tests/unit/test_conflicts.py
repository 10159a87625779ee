"""Unit tests for conflict detection and reporting."""

from pathlib import Path

import polars as pl

from udio_prompt_crafter.core.conflicts import (
    Conflict,
    check_conflicts,
    conflicts_to_frame,
    export_conflict_report,
    find_conflicts,
)
from udio_prompt_crafter.core.taxonomy import Tag

INSTRUMENTAL = Tag(id="v_instrumental", label="Instrumental", conflicts_with=("v_female", "v_male"))
FEMALE = Tag(id="v_female", label="Female Vocals")
MALE = Tag(id="v_male", label="Male Vocals")
SLOW = Tag(id="t_slow", label="Slow", conflicts_with=("t_fast",))
FAST = Tag(id="t_fast", label="Fast", conflicts_with=("t_slow",))


def _selected(*tags: Tag) -> dict[str, Tag]:
    return {t.id: t for t in tags}


class TestCheckConflicts:
    def test_candidate_declares_conflict(self) -> None:
        assert check_conflicts(INSTRUMENTAL, _selected(FEMALE)) == [FEMALE]

    def test_multiple_conflicts_in_declared_order(self) -> None:
        assert check_conflicts(INSTRUMENTAL, _selected(MALE, FEMALE)) == [FEMALE, MALE]

    def test_only_candidate_declarations_are_checked(self) -> None:
        """選択中タグ側だけが宣言している衝突は追加前チェックでは検出しない."""
        assert check_conflicts(FEMALE, _selected(INSTRUMENTAL)) == []

    def test_no_conflict(self) -> None:
        assert check_conflicts(SLOW, _selected(FEMALE)) == []

    def test_self_reference_ignored(self) -> None:
        tag = Tag(id="x", label="X", conflicts_with=("x",))
        assert check_conflicts(tag, _selected(tag)) == []


class TestFindConflicts:
    def test_one_record_per_pair_declared_one_side(self) -> None:
        conflicts = find_conflicts(_selected(FEMALE, INSTRUMENTAL))
        assert conflicts == [Conflict(tag_a=FEMALE, tag_b=INSTRUMENTAL)]

    def test_one_record_per_pair_declared_both_sides(self) -> None:
        conflicts = find_conflicts(_selected(SLOW, FAST))
        assert len(conflicts) == 1
        assert (conflicts[0].tag_a.id, conflicts[0].tag_b.id) == ("t_fast", "t_slow")

    def test_multiple_pairs_sorted(self) -> None:
        conflicts = find_conflicts(_selected(SLOW, MALE, FAST, INSTRUMENTAL, FEMALE))
        assert [(c.tag_a.id, c.tag_b.id) for c in conflicts] == [
            ("t_fast", "t_slow"),
            ("v_female", "v_instrumental"),
            ("v_instrumental", "v_male"),
        ]

    def test_unselected_targets_ignored(self) -> None:
        assert find_conflicts(_selected(INSTRUMENTAL, SLOW)) == []


class TestConflictReport:
    def test_frame_columns(self) -> None:
        df = conflicts_to_frame(find_conflicts(_selected(SLOW, FAST)))
        assert df.columns == ["tag_a", "tag_a_label", "tag_b", "tag_b_label"]
        assert df.row(0) == ("t_fast", "Fast", "t_slow", "Slow")

    def test_empty_frame_keeps_schema(self) -> None:
        df = conflicts_to_frame([])
        assert len(df) == 0
        assert df.schema["tag_a"] == pl.String

    def test_export_writes_csv(self, tmp_path: Path) -> None:
        output_dir = tmp_path / "reports"
        report = export_conflict_report(find_conflicts(_selected(INSTRUMENTAL, FEMALE, MALE)), output_dir)

        assert report == output_dir / "conflicts.csv"
        df = pl.read_csv(report)
        assert df["tag_b"].to_list() == ["v_instrumental", "v_male"]

    def test_export_without_conflicts(self, tmp_path: Path) -> None:
        assert export_conflict_report([], tmp_path) is None
        assert not (tmp_path / "conflicts.csv").exists()
