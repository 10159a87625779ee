"""タグ衝突（conflictsWith）の検出と解決プロトコル.

- 追加前チェック: 追加しようとしているタグ自身が宣言した conflictsWith だけを見る
- 選択全体の走査: 宣言がどちら側にあっても、衝突ペアごとに1件だけ報告する
- 衝突レポート: 走査結果をCSVとして出力する
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

import polars as pl

from .taxonomy import Tag


class Resolution(str, Enum):
    """衝突解決の3択."""

    KEEP_NEW = "keep_new"  # 衝突相手を外して新しいタグを入れる
    KEEP_BOTH = "keep_both"  # 衝突を承知で両方残す
    CANCEL = "cancel"  # 何もしない


@dataclass(frozen=True)
class PendingResolution:
    """解決待ちの衝突（toggle が保留された状態）."""

    newly_selected_tag: Tag
    conflicting_tags: tuple[Tag, ...]


@dataclass(frozen=True)
class Conflict:
    """選択中の2タグ間の衝突. tag_a.id < tag_b.id が常に成り立つ."""

    tag_a: Tag
    tag_b: Tag

    def as_dict(self) -> dict[str, str]:
        return {
            "tag_a": self.tag_a.id,
            "tag_a_label": self.tag_a.label,
            "tag_b": self.tag_b.id,
            "tag_b_label": self.tag_b.label,
        }


def check_conflicts(candidate: Tag, selected: Mapping[str, Tag]) -> list[Tag]:
    """追加前チェック. candidate の conflictsWith に含まれる選択中タグを返す.

    NOTE:
        既に選択中のタグ側だけが candidate を conflictsWith に宣言している場合、
        ここでは衝突とみなさない（後から宣言した側が優先される挙動）。
        その組み合わせは `find_conflicts()` の走査では検出される。この非対称性は意図的なもの。

    Args:
        candidate: 追加しようとしているタグ
        selected: 選択中のタグ（id → Tag）

    Returns:
        衝突する選択中タグ（candidate の宣言順、重複なし）
    """
    conflicting: list[Tag] = []
    seen: set[str] = set()
    for conflict_id in candidate.conflicts_with:
        if conflict_id == candidate.id or conflict_id in seen:
            continue
        tag = selected.get(conflict_id)
        if tag is not None:
            conflicting.append(tag)
            seen.add(conflict_id)
    return conflicting


def find_conflicts(selected: Mapping[str, Tag]) -> list[Conflict]:
    """選択全体を走査し、衝突する組ごとに1件の Conflict を返す.

    A→B と B→A のどちらで宣言されていても（両方でも）、id の小さい方を tag_a として1件だけ出力します。

    Args:
        selected: 選択中のタグ（id → Tag）

    Returns:
        Conflict のリスト（(tag_a.id, tag_b.id) 昇順）
    """
    pairs: dict[tuple[str, str], Conflict] = {}
    for tag in selected.values():
        for other_id in tag.conflicts_with:
            other = selected.get(other_id)
            if other is None or other.id == tag.id:
                continue
            tag_a, tag_b = (tag, other) if tag.id < other.id else (other, tag)
            key = (tag_a.id, tag_b.id)
            if key not in pairs:
                pairs[key] = Conflict(tag_a=tag_a, tag_b=tag_b)
    return [pairs[key] for key in sorted(pairs)]


def conflicts_to_frame(conflicts: Iterable[Conflict]) -> pl.DataFrame:
    rows = [c.as_dict() for c in conflicts]
    return pl.DataFrame(
        rows,
        schema={"tag_a": pl.String, "tag_a_label": pl.String, "tag_b": pl.String, "tag_b_label": pl.String},
    )


def export_conflict_report(conflicts: Iterable[Conflict], output_dir: Path | str) -> Path | None:
    """衝突レポートをCSVファイルとして出力する.

    Args:
        conflicts: find_conflicts() の戻り値
        output_dir: 出力ディレクトリ

    Returns:
        出力したCSVのパス（衝突が無ければ None）
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    df = conflicts_to_frame(conflicts)
    if len(df) == 0:
        return None

    report_path = output_dir / "conflicts.csv"
    df.write_csv(report_path)
    return report_path
