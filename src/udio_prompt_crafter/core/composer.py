"""プロンプト組み立て（選択状態 → プロンプト文字列 + 構造化JSON）."""

from __future__ import annotations

import json
from collections.abc import Collection, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from .normalize import normalize_tag_labels
from .taxonomy import Category, Taxonomy

PROMPT_SEPARATOR = "; "
# プレビュー表示用の区切り（表示上の変種。正はPROMPT_SEPARATOR）
PREVIEW_SEPARATOR = ", "


@dataclass(frozen=True)
class ComposedTag:
    id: str
    label: str
    category_id: str


@dataclass(frozen=True)
class ComposedPrompt:
    """組み立て結果.

    Attributes:
        prompt: 正規化済みラベル + 自由入力を区切り文字で連結した文字列
        tokens: prompt を区切る前のトークン列
        tags: 出力順の選択タグ（正規化前のラベル）
        text_inputs: カテゴリID → 自由入力（空でないもののみ）
        category_order: 実際に使ったカテゴリ順
    """

    prompt: str
    tokens: tuple[str, ...]
    tags: tuple[ComposedTag, ...]
    text_inputs: Mapping[str, str] = field(default_factory=dict)
    category_order: tuple[str, ...] = ()

    def joined(self, separator: str = PREVIEW_SEPARATOR) -> str:
        return separator.join(self.tokens)

    def as_dict(self) -> dict[str, Any]:
        return {
            "prompt": self.prompt,
            "tags": [{"id": t.id, "label": t.label, "categoryId": t.category_id} for t in self.tags],
            "text_inputs": dict(self.text_inputs),
            "category_order": list(self.category_order),
        }

    def to_json(self, indent: int | None = 2) -> str:
        return json.dumps(self.as_dict(), indent=indent, ensure_ascii=False)


def ordered_categories(taxonomy: Taxonomy, category_order: Iterable[str]) -> list[Category]:
    """カテゴリ順に従ってカテゴリを並べる.

    タクソノミーに無いIDは読み飛ばし、順序に含まれないカテゴリはタクソノミー順で末尾に追加します。
    """
    by_id = {c.id: c for c in taxonomy}
    ordered: list[Category] = []
    seen: set[str] = set()
    for category_id in category_order:
        category = by_id.get(category_id)
        if category is None or category_id in seen:
            continue
        ordered.append(category)
        seen.add(category_id)
    ordered.extend(c for c in taxonomy if c.id not in seen)
    return ordered


def compose_prompt(
    taxonomy: Taxonomy,
    selected_ids: Collection[str],
    category_order: Iterable[str],
    text_category_values: Mapping[str, str] | None = None,
    separator: str = PROMPT_SEPARATOR,
) -> ComposedPrompt:
    """選択状態からプロンプトを組み立てる.

    カテゴリはユーザー指定の順、カテゴリ内のタグはタクソノミーでの宣言順に並べます。
    タグのラベルだけを正規化し、自由入力はそのまま末尾に続けます。

    Args:
        taxonomy: 現在のタクソノミー
        selected_ids: 選択中のタグID
        category_order: ユーザー指定のカテゴリ順
        text_category_values: カテゴリID → 自由入力
        separator: 連結に使う区切り文字

    Returns:
        組み立て結果

    Examples:
        >>> result = compose_prompt(taxonomy, {"g_synthwave", "m_dreamy"}, ["genre", "mood"])
        >>> result.prompt
        'synthwave; dreamy'
    """
    text_category_values = text_category_values or {}
    categories = ordered_categories(taxonomy, category_order)

    tags: list[ComposedTag] = []
    text_inputs: dict[str, str] = {}
    for category in categories:
        for tag in category.tags:
            if tag.id in selected_ids:
                tags.append(ComposedTag(id=tag.id, label=tag.label, category_id=category.id))
        if category.is_text:
            value = text_category_values.get(category.id, "")
            if value and value.strip():
                text_inputs[category.id] = value

    tokens = normalize_tag_labels(t.label for t in tags) + list(text_inputs.values())

    return ComposedPrompt(
        prompt=separator.join(tokens),
        tokens=tuple(tokens),
        tags=tuple(tags),
        text_inputs=text_inputs,
        category_order=tuple(c.id for c in categories),
    )
