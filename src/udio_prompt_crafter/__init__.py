"""udio_prompt_crafter: タクソノミーのタグからAI音楽生成用プロンプトを組み立てる.

タグ選択・衝突解決・推薦・ラベル正規化・プロンプト出力を提供する。
"""

from udio_prompt_crafter.core import (
    Resolution,
    SelectionStore,
    Snapshot,
    compose_prompt,
    load_taxonomy,
    normalize_tag_labels,
)

__version__ = "0.1.0"

__all__ = [
    "load_taxonomy",
    "SelectionStore",
    "Snapshot",
    "Resolution",
    "compose_prompt",
    "normalize_tag_labels",
]
