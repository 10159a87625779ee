"""プロンプト組み立てのコア処理群.

- タクソノミーと索引（id → tag + categoryId）
- ラベル正規化（ラベル列 → プロンプト用トークン列）
- 選択状態と衝突解決プロトコル
- suggests 辺からの推薦と表示用ツリー
- プロンプト文字列 / 構造化JSONの組み立て
"""

from .composer import PREVIEW_SEPARATOR, PROMPT_SEPARATOR, ComposedPrompt, compose_prompt
from .conflicts import Conflict, PendingResolution, Resolution, check_conflicts, find_conflicts
from .normalize import normalize_tag_labels
from .selection import ActivePreset, GenerationParams, LoadResult, SelectedTag, SelectionStore, Snapshot
from .suggestions import TreeNode, build_tag_tree, suggest_tags
from .taxonomy import Category, Tag, Taxonomy, TaxonomyIndex, build_index, load_taxonomy

__all__ = [
    "Tag",
    "Category",
    "Taxonomy",
    "TaxonomyIndex",
    "build_index",
    "load_taxonomy",
    "normalize_tag_labels",
    "Conflict",
    "PendingResolution",
    "Resolution",
    "check_conflicts",
    "find_conflicts",
    "TreeNode",
    "build_tag_tree",
    "suggest_tags",
    "ComposedPrompt",
    "compose_prompt",
    "PROMPT_SEPARATOR",
    "PREVIEW_SEPARATOR",
    "SelectionStore",
    "SelectedTag",
    "Snapshot",
    "ActivePreset",
    "GenerationParams",
    "LoadResult",
]
