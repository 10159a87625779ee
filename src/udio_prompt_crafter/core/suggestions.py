"""suggests 辺からの推薦と表示用ツリー."""

from __future__ import annotations

from collections.abc import Collection, Iterator, Sequence
from dataclasses import dataclass, field

from .taxonomy import Tag, TaxonomyIndex


@dataclass
class TreeNode:
    tag: Tag
    children: list[TreeNode] = field(default_factory=list)

    def iter_tags(self) -> Iterator[Tag]:
        """自分と子孫のタグを深さ優先で列挙する."""
        yield self.tag
        for child in self.children:
            yield from child.iter_tags()


def suggest_tags(
    index: TaxonomyIndex,
    selected_ids: Collection[str],
    category_id: str | None = None,
) -> list[Tag]:
    """選択中タグの suggests を集め、未選択のものを返す.

    Args:
        index: タクソノミー索引
        selected_ids: 選択中のタグID
        category_id: 指定した場合、このカテゴリに属する選択タグだけを推薦元にする

    Returns:
        推薦タグ（初出順、重複なし）. 索引に無いIDは無視する
    """
    suggestions: list[Tag] = []
    seen: set[str] = set()

    for tag_id in selected_ids:
        entry = index.get(tag_id)
        if entry is None:
            continue
        if category_id is not None and entry.category_id != category_id:
            continue
        for suggested_id in entry.tag.suggests:
            if suggested_id in seen or suggested_id in selected_ids:
                continue
            suggested = index.tag(suggested_id)
            if suggested is None:
                continue
            seen.add(suggested_id)
            suggestions.append(suggested)

    return suggestions


def _first_parents(tags: Sequence[Tag]) -> dict[str, str | None]:
    """各タグについて、同じ列で最初にそのタグを suggests に挙げたタグIDを返す."""
    parents: dict[str, str | None] = {tag.id: None for tag in tags}
    for tag in tags:
        for suggested_id in tag.suggests:
            if suggested_id == tag.id or suggested_id not in parents:
                continue
            if parents[suggested_id] is None:
                parents[suggested_id] = tag.id
    return parents


def build_tag_tree(tags: Sequence[Tag]) -> list[TreeNode]:
    """カテゴリのタグ列から表示用の森を作る.

    タグの親は「同じ列の中で、走査順で最初にそのタグを suggests に挙げたタグ」です。
    親を持たないタグが根になります。複数の親から参照されても最初の親の下にだけ置きます。

    suggests が循環していて根に辿り着けないタグは、走査順で最初のものを根に昇格させます
    （全てのタグがちょうど1回ずつ現れる）。

    Args:
        tags: カテゴリのタグ列（タクソノミーでの宣言順）

    Returns:
        根ノードのリスト
    """
    parents = _first_parents(tags)
    by_id = {tag.id: tag for tag in tags}

    children: dict[str, list[str]] = {tag.id: [] for tag in tags}
    for tag in tags:
        parent_id = parents[tag.id]
        if parent_id is not None:
            children[parent_id].append(tag.id)

    placed: set[str] = set()

    def _build(tag_id: str) -> TreeNode:
        placed.add(tag_id)
        node = TreeNode(tag=by_id[tag_id])
        for child_id in children[tag_id]:
            if child_id not in placed:
                node.children.append(_build(child_id))
        return node

    roots = [_build(tag.id) for tag in tags if parents[tag.id] is None]

    # 循環の中にあって根から届かないタグ
    for tag in tags:
        if tag.id in placed:
            continue
        old_parent = parents[tag.id]
        if old_parent is not None:
            children[old_parent].remove(tag.id)
        parents[tag.id] = None
        roots.append(_build(tag.id))

    return roots


def iter_suggesting_ancestors(
    tag_id: str,
    tags: Sequence[Tag],
    max_depth: int = 32,
) -> Iterator[Tag]:
    """build_tag_tree と同じ親の定義で祖先を辿る.

    循環していても止まるよう、既出のタグに戻った時点か max_depth で打ち切ります。
    """
    parents = _first_parents(tags)
    by_id = {tag.id: tag for tag in tags}
    visited = {tag_id}

    current = parents.get(tag_id)
    depth = 0
    while current is not None and current not in visited and depth < max_depth:
        visited.add(current)
        yield by_id[current]
        current = parents.get(current)
        depth += 1
