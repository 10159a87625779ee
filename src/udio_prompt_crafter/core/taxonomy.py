"""タクソノミー（Category → Tag）のモデルと索引.

設計方針:
    - タグ同士の関係（conflictsWith / suggests）はIDの配列で保持し、参照時に索引から引く
      （タグの中にタグを埋め込まないので、循環や非対称な辺もそのまま表現できる）
    - 索引（id → tag + categoryId）はタクソノミーから決定的に再構築する値であり、
      その場で書き換えない。タクソノミーの差し替え＝索引の差し替え
    - JSONは無加工で往復できるよう、読み込んだ元の辞書を保持して書き出し時に使う
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any

from loguru import logger

from .exceptions import TaxonomyUnavailableError

CATEGORY_TYPES = ("tags", "text", "helper_input")
TEXT_CATEGORY_TYPES = ("text", "helper_input")

DEFAULT_TAXONOMY_PATH = Path(__file__).resolve().parents[1] / "data" / "default_taxonomy.json"


@dataclass(frozen=True)
class Tag:
    """語彙の最小単位.

    Attributes:
        id: タクソノミー全体で一意なID
        label: プロンプトに出力される表記（正規化前）
        conflicts_with: 同時選択できないタグIDの列（非対称でよい）
        suggests: 一緒に選ぶと良いタグIDの列（循環してよい）
        raw: 読み込み元のJSONオブジェクト（往復用。比較対象外）
    """

    id: str
    label: str
    description: str = ""
    synonyms: tuple[str, ...] = ()
    conflicts_with: tuple[str, ...] = ()
    suggests: tuple[str, ...] = ()
    color: str | None = None
    example_snippet: str | None = None
    raw: Mapping[str, Any] = field(default_factory=dict, compare=False, repr=False)

    def to_dict(self) -> dict[str, Any]:
        if self.raw:
            return dict(self.raw)
        data: dict[str, Any] = {"id": self.id, "label": self.label, "description": self.description}
        if self.synonyms:
            data["synonyms"] = list(self.synonyms)
        if self.conflicts_with:
            data["conflictsWith"] = list(self.conflicts_with)
        if self.suggests:
            data["suggests"] = list(self.suggests)
        if self.color is not None:
            data["color"] = self.color
        if self.example_snippet is not None:
            data["example_snippet"] = self.example_snippet
        return data


@dataclass(frozen=True)
class Category:
    id: str
    name: str
    type: str = "tags"
    description: str | None = None
    tags: tuple[Tag, ...] = ()
    raw: Mapping[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def is_text(self) -> bool:
        """自由入力（text / helper_input）カテゴリか."""
        return self.type in TEXT_CATEGORY_TYPES

    def to_dict(self) -> dict[str, Any]:
        if self.raw:
            data = dict(self.raw)
        else:
            data = {"id": self.id, "name": self.name, "type": self.type}
            if self.description is not None:
                data["description"] = self.description
        data["tags"] = [tag.to_dict() for tag in self.tags]
        return data


Taxonomy = tuple[Category, ...]


@dataclass(frozen=True)
class IndexedTag:
    """索引のエントリ（タグ + 所属カテゴリID）."""

    tag: Tag
    category_id: str


class TaxonomyIndex:
    """タクソノミーから構築する読み取り専用の索引.

    `build_index()` で生成します。タクソノミーが変わったら作り直してください。
    """

    def __init__(self, taxonomy: Taxonomy, tags: dict[str, IndexedTag]) -> None:
        self.taxonomy = taxonomy
        self._tags = MappingProxyType(tags)
        self._categories = MappingProxyType({c.id: c for c in taxonomy})

    def __contains__(self, tag_id: object) -> bool:
        return tag_id in self._tags

    def __len__(self) -> int:
        return len(self._tags)

    def __iter__(self) -> Iterator[str]:
        return iter(self._tags)

    @property
    def tags(self) -> Mapping[str, IndexedTag]:
        return self._tags

    @property
    def categories(self) -> Mapping[str, Category]:
        return self._categories

    def get(self, tag_id: str) -> IndexedTag | None:
        return self._tags.get(tag_id)

    def tag(self, tag_id: str) -> Tag | None:
        entry = self._tags.get(tag_id)
        return entry.tag if entry else None

    def category_of(self, tag_id: str) -> str | None:
        entry = self._tags.get(tag_id)
        return entry.category_id if entry else None

    def category(self, category_id: str) -> Category | None:
        return self._categories.get(category_id)

    def category_ids(self) -> list[str]:
        return [c.id for c in self.taxonomy]


def build_index(taxonomy: Iterable[Category]) -> TaxonomyIndex:
    """タクソノミーから id → {tag, categoryId} の索引を構築する（タグ総数に対して O(n)）.

    Args:
        taxonomy: カテゴリの列

    Returns:
        構築した索引

    Raises:
        TaxonomyUnavailableError: 同じタグIDが複数回現れた場合
    """
    taxonomy = tuple(taxonomy)
    tags: dict[str, IndexedTag] = {}
    for category in taxonomy:
        for tag in category.tags:
            if tag.id in tags:
                owner = tags[tag.id].category_id
                raise TaxonomyUnavailableError(
                    None,
                    f"duplicate tag id '{tag.id}' in categories '{owner}' and '{category.id}'",
                )
            tags[tag.id] = IndexedTag(tag=tag, category_id=category.id)
    return TaxonomyIndex(taxonomy, tags)


def _str_tuple(value: Any, field_name: str, owner: str, path: Path | None) -> tuple[str, ...]:
    if value is None:
        return ()
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise TaxonomyUnavailableError(path, f"'{field_name}' of '{owner}' must be a list of strings")
    return tuple(value)


def _parse_tag(data: Any, category_id: str, path: Path | None) -> Tag:
    if not isinstance(data, dict):
        raise TaxonomyUnavailableError(path, f"tag in category '{category_id}' must be an object")
    tag_id = data.get("id")
    label = data.get("label")
    if not isinstance(tag_id, str) or not tag_id:
        raise TaxonomyUnavailableError(path, f"tag without id in category '{category_id}'")
    if not isinstance(label, str):
        raise TaxonomyUnavailableError(path, f"tag '{tag_id}' has no label")

    # 旧形式の implies は suggests として扱う（書き出しは元のキーのまま）
    suggests = data.get("suggests", data.get("implies"))
    return Tag(
        id=tag_id,
        label=label,
        description=data.get("description") or "",
        synonyms=_str_tuple(data.get("synonyms"), "synonyms", tag_id, path),
        conflicts_with=_str_tuple(data.get("conflictsWith"), "conflictsWith", tag_id, path),
        suggests=_str_tuple(suggests, "suggests", tag_id, path),
        color=data.get("color"),
        example_snippet=data.get("example_snippet"),
        raw=data,
    )


def _parse_category(data: Any, path: Path | None) -> Category:
    if not isinstance(data, dict):
        raise TaxonomyUnavailableError(path, "category must be an object")
    category_id = data.get("id")
    if not isinstance(category_id, str) or not category_id:
        raise TaxonomyUnavailableError(path, "category without id")
    category_type = data.get("type", "tags")
    if category_type not in CATEGORY_TYPES:
        raise TaxonomyUnavailableError(
            path, f"invalid type '{category_type}' for category '{category_id}'. Valid types: {CATEGORY_TYPES}"
        )
    raw_tags = data.get("tags", [])
    if not isinstance(raw_tags, list):
        raise TaxonomyUnavailableError(path, f"'tags' of category '{category_id}' must be a list")

    return Category(
        id=category_id,
        name=data.get("name") or category_id,
        type=category_type,
        description=data.get("description"),
        tags=tuple(_parse_tag(t, category_id, path) for t in raw_tags),
        raw={k: v for k, v in data.items() if k != "tags"},
    )


def parse_taxonomy(data: Any, path: Path | None = None) -> Taxonomy:
    """`{"taxonomy": Category[]}` 形式のデータをタクソノミーに変換する.

    素のカテゴリ配列も受け付けます。

    Raises:
        TaxonomyUnavailableError: 形式が不正・空・タグID重複の場合
    """
    if isinstance(data, dict):
        data = data.get("taxonomy")
    if not isinstance(data, list):
        raise TaxonomyUnavailableError(path, "expected an object with a 'taxonomy' list")
    if not data:
        raise TaxonomyUnavailableError(path, "taxonomy is empty")

    taxonomy = tuple(_parse_category(c, path) for c in data)

    seen: set[str] = set()
    for category in taxonomy:
        if category.id in seen:
            raise TaxonomyUnavailableError(path, f"duplicate category id '{category.id}'")
        seen.add(category.id)

    # タグID重複の検出は索引構築に任せる
    try:
        build_index(taxonomy)
    except TaxonomyUnavailableError as e:
        raise TaxonomyUnavailableError(path, e.reason) from e

    return taxonomy


def load_taxonomy(path: Path | str | None = None) -> Taxonomy:
    """タクソノミーJSONを読み込む.

    Args:
        path: JSONファイルのパス（None の場合は同梱のデフォルト）

    Returns:
        読み込んだタクソノミー

    Raises:
        TaxonomyUnavailableError: ファイルが無い・JSONが不正・空の場合
    """
    source = Path(path) if path is not None else DEFAULT_TAXONOMY_PATH
    display_path = source if path is not None else None

    if not source.exists():
        raise TaxonomyUnavailableError(display_path or source, "file not found")

    try:
        with open(source, encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise TaxonomyUnavailableError(display_path or source, f"invalid JSON: {e}") from e
    except OSError as e:
        raise TaxonomyUnavailableError(display_path or source, f"cannot read file: {e}") from e

    taxonomy = parse_taxonomy(data, display_path or source)
    tag_count = sum(len(c.tags) for c in taxonomy)
    logger.info(f"Loaded taxonomy: {len(taxonomy)} categories, {tag_count} tags from {source}")
    return taxonomy


def dump_taxonomy(taxonomy: Iterable[Category], output_path: Path | str) -> None:
    """タクソノミーを `{"taxonomy": [...]}` 形式で書き出す."""
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    with open(output_path, "w", encoding="utf-8") as f:
        json.dump({"taxonomy": [c.to_dict() for c in taxonomy]}, f, indent=2, ensure_ascii=False)

    logger.info(f"Taxonomy written to {output_path}")
