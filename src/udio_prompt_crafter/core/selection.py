"""選択状態（Selection Store）.

選択中タグ・カテゴリ順・自由入力・補助パラメータを保持し、全ての変更で不変条件を守ります。

不変条件:
    - 選択中タグのIDは常に現在のタクソノミー索引に存在する（古いIDは読み込み時に落とす）
    - 1つのタグは高々1回だけ選択される（IDをキーにした辞書）
    - 衝突の解決待ちの間は toggle を受け付けない（ResolutionPendingError）
    - 選択を丸ごと置き換える操作（clear_all / randomize / load_snapshot）は解決待ちを破棄する
    - アクティブなプリセットがある場合、状態が変わる操作は全てそれを dirty にする
"""

from __future__ import annotations

import functools
import random
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, TypeVar

from loguru import logger

from .composer import PROMPT_SEPARATOR, ComposedPrompt, compose_prompt
from .conflicts import Conflict, PendingResolution, Resolution, check_conflicts, find_conflicts
from .exceptions import ResolutionNotPendingError, ResolutionPendingError, UnknownTagError
from .suggestions import TreeNode, build_tag_tree, suggest_tags
from .taxonomy import Tag, Taxonomy, TaxonomyIndex, build_index

F = TypeVar("F", bound=Callable[..., Any])


@dataclass(frozen=True)
class SelectedTag:
    tag: Tag
    category_id: str
    is_locked: bool = False

    @property
    def id(self) -> str:
        return self.tag.id


@dataclass(frozen=True)
class SnapshotTag:
    category_id: str
    is_locked: bool = False


@dataclass(frozen=True)
class Snapshot:
    """選択状態の最小限のキャプチャ（プリセット・履歴・AI結果の共通部分）.

    タグ本体は持たず、ID・カテゴリID・ロック状態だけを保存します。
    復元時は現在の索引と突き合わせるため、削除されたタグは自然に落ちます。
    """

    selected_tags: Mapping[str, SnapshotTag] = field(default_factory=dict)
    category_order: tuple[str, ...] = ()
    text_category_values: Mapping[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "selectedTags": {
                tag_id: {"categoryId": entry.category_id, "isLocked": entry.is_locked}
                for tag_id, entry in self.selected_tags.items()
            },
            "categoryOrder": list(self.category_order),
            "textCategoryValues": dict(self.text_category_values),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Snapshot:
        """JSONオブジェクトからスナップショットを作る. 欠けたキーは空として扱う."""
        selected: dict[str, SnapshotTag] = {}
        for tag_id, entry in (data.get("selectedTags") or {}).items():
            entry = entry or {}
            selected[tag_id] = SnapshotTag(
                category_id=entry.get("categoryId", ""),
                is_locked=bool(entry.get("isLocked", False)),
            )
        return cls(
            selected_tags=selected,
            category_order=tuple(data.get("categoryOrder") or ()),
            text_category_values=dict(data.get("textCategoryValues") or {}),
        )


@dataclass(frozen=True)
class GenerationParams:
    """プロンプト以外の補助パラメータ. clear_all() で既定値（非インストゥルメンタル）に戻る."""

    instrumental: bool = False
    prompt_strength: int = 100
    remix_difference: float = 0.5


@dataclass(frozen=True)
class ActivePreset:
    name: str
    is_dirty: bool = False


@dataclass(frozen=True)
class LoadResult:
    """スナップショット読み込みの結果.

    Attributes:
        loaded_ids: 選択に入ったタグID
        dropped_ids: 索引に無かったため落としたタグID（1件ごとに警告を出す）
    """

    loaded_ids: tuple[str, ...] = ()
    dropped_ids: tuple[str, ...] = ()

    @property
    def warnings(self) -> list[str]:
        return [f"Tag '{tag_id}' no longer exists in the taxonomy and was skipped" for tag_id in self.dropped_ids]


def _tracks_changes(method: F) -> F:
    """状態が変わったらアクティブなプリセットを dirty にする."""

    @functools.wraps(method)
    def wrapper(self: SelectionStore, *args: Any, **kwargs: Any) -> Any:
        before = self._state_key()
        result = method(self, *args, **kwargs)
        if self.active_preset is not None and not self.active_preset.is_dirty and self._state_key() != before:
            self.active_preset = replace(self.active_preset, is_dirty=True)
        return result

    return wrapper  # type: ignore[return-value]


class SelectionStore:
    """選択状態を保持し、衝突解決プロトコルを通して変更する.

    Args:
        taxonomy: 現在のタクソノミー
        category_order: 初期のカテゴリ順（None の場合はタクソノミー順）
    """

    def __init__(self, taxonomy: Taxonomy, category_order: Iterable[str] | None = None) -> None:
        self._taxonomy: Taxonomy = tuple(taxonomy)
        self._index: TaxonomyIndex = build_index(self._taxonomy)
        self._selected: dict[str, SelectedTag] = {}
        self._category_order: list[str] = self._complete_order(category_order or ())
        self._text_values: dict[str, str] = {}
        self._params = GenerationParams()
        self._pending: PendingResolution | None = None
        self.active_preset: ActivePreset | None = None

    # ------------------------------------------------------------------
    # 参照
    # ------------------------------------------------------------------
    @property
    def taxonomy(self) -> Taxonomy:
        return self._taxonomy

    @property
    def index(self) -> TaxonomyIndex:
        return self._index

    @property
    def selected(self) -> Mapping[str, SelectedTag]:
        return MappingProxyType(self._selected)

    @property
    def category_order(self) -> list[str]:
        return list(self._category_order)

    @property
    def text_category_values(self) -> Mapping[str, str]:
        return MappingProxyType(self._text_values)

    @property
    def params(self) -> GenerationParams:
        return self._params

    @property
    def pending(self) -> PendingResolution | None:
        """解決待ちの衝突（無ければ None）."""
        return self._pending

    def is_selected(self, tag_id: str) -> bool:
        return tag_id in self._selected

    def _selected_tags(self) -> dict[str, Tag]:
        return {tag_id: st.tag for tag_id, st in self._selected.items()}

    def _state_key(self) -> tuple:
        return (
            tuple(sorted((k, v.is_locked) for k, v in self._selected.items())),
            tuple(self._category_order),
            tuple(sorted(self._text_values.items())),
            self._params,
        )

    def _complete_order(self, order: Iterable[str], keep_unknown: bool = True) -> list[str]:
        """順序にタクソノミーの全カテゴリが含まれるよう、未出のカテゴリを末尾に足す."""
        completed: list[str] = []
        for category_id in order:
            if category_id in completed:
                continue
            if not keep_unknown and self._index.category(category_id) is None:
                continue
            completed.append(category_id)
        completed.extend(c.id for c in self._taxonomy if c.id not in completed)
        return completed

    def _resolve_tag(self, tag: Tag | str) -> Tag:
        tag_id = tag if isinstance(tag, str) else tag.id
        live = self._index.tag(tag_id)
        if live is None:
            raise UnknownTagError(tag_id)
        return live

    def _insert(self, tag: Tag) -> None:
        category_id = self._index.category_of(tag.id)
        if category_id is None:
            raise UnknownTagError(tag.id)
        self._selected[tag.id] = SelectedTag(tag=tag, category_id=category_id, is_locked=False)

    def _drop_pending(self) -> None:
        """選択を丸ごと置き換える操作の前に、古い選択に対して計算した解決待ちを破棄する."""
        if self._pending is not None:
            logger.debug(f"Discarded pending conflict resolution for '{self._pending.newly_selected_tag.id}'")
            self._pending = None

    # ------------------------------------------------------------------
    # 変更操作
    # ------------------------------------------------------------------
    @_tracks_changes
    def toggle(self, tag: Tag | str) -> PendingResolution | None:
        """タグの選択を切り替える.

        選択中なら（ロックされていても）外します。未選択なら衝突を確認し、
        衝突があれば選択を変えずに解決待ち（PendingResolution）を返します。

        Args:
            tag: 対象タグまたはタグID

        Returns:
            衝突があった場合は解決待ちの内容、無ければ None

        Raises:
            ResolutionPendingError: 別の衝突が解決待ちの場合
            UnknownTagError: タグが現在のタクソノミーに無い場合
        """
        live = self._resolve_tag(tag)
        if self._pending is not None:
            raise ResolutionPendingError(live.id)

        if live.id in self._selected:
            del self._selected[live.id]
            logger.debug(f"Deselected tag: {live.id}")
            return None

        conflicting = check_conflicts(live, self._selected_tags())
        if conflicting:
            self._pending = PendingResolution(newly_selected_tag=live, conflicting_tags=tuple(conflicting))
            logger.debug(f"Tag '{live.id}' conflicts with {[t.id for t in conflicting]}; awaiting resolution")
            return self._pending

        self._insert(live)
        logger.debug(f"Selected tag: {live.id}")
        return None

    @_tracks_changes
    def resolve(self, resolution: Resolution | str) -> None:
        """解決待ちの衝突を keep_new / keep_both / cancel のいずれかで解決する.

        keep_both は衝突を残したまま両方を選択します（find_conflicts() では引き続き検出される）。

        Raises:
            ResolutionNotPendingError: 解決待ちの衝突が無い場合
            ValueError: 未知の解決方法が指定された場合
        """
        resolution = Resolution(resolution)
        pending = self._pending
        if pending is None:
            raise ResolutionNotPendingError()
        self._pending = None

        new_tag = pending.newly_selected_tag
        if resolution is Resolution.CANCEL:
            logger.debug(f"Conflict resolution cancelled for '{new_tag.id}'")
            return

        if resolution is Resolution.KEEP_NEW:
            for tag in pending.conflicting_tags:
                self._selected.pop(tag.id, None)

        # 保留中にタクソノミーが変わっていないことは replace_taxonomy() が保証する
        self._insert(new_tag)
        logger.debug(f"Conflict resolved ({resolution.value}): selected '{new_tag.id}'")

    @_tracks_changes
    def toggle_lock(self, tag_id: str) -> None:
        """選択中タグのロックを切り替える. 未選択なら何もしない."""
        current = self._selected.get(tag_id)
        if current is None:
            return
        self._selected[tag_id] = replace(current, is_locked=not current.is_locked)

    @_tracks_changes
    def clear_all(self) -> None:
        """選択・自由入力・補助パラメータを全て初期状態に戻す."""
        self._drop_pending()
        self._selected.clear()
        self._text_values.clear()
        self._params = GenerationParams()
        logger.debug("Cleared selection")

    @_tracks_changes
    def clear_category(self, category_id: str) -> None:
        """指定カテゴリの選択タグだけを外す（他カテゴリと自由入力はそのまま）."""
        for tag_id in [k for k, v in self._selected.items() if v.category_id == category_id]:
            del self._selected[tag_id]

    @_tracks_changes
    def set_text_value(self, category_id: str, value: str) -> None:
        """自由入力カテゴリの値を設定する. 空文字は削除扱い.

        Raises:
            ValueError: カテゴリが存在しないか、自由入力カテゴリでない場合
        """
        category = self._index.category(category_id)
        if category is None or not category.is_text:
            raise ValueError(f"Category '{category_id}' does not accept free text")
        if value:
            self._text_values[category_id] = value
        else:
            self._text_values.pop(category_id, None)

    @_tracks_changes
    def set_params(self, **changes: Any) -> None:
        self._params = replace(self._params, **changes)

    @_tracks_changes
    def reorder_categories(self, order: Iterable[str]) -> None:
        """カテゴリ順を置き換える. タクソノミーに無いIDも保持し、欠けたカテゴリは末尾に足す."""
        self._category_order = self._complete_order(order)

    @_tracks_changes
    def randomize(self, locked_only: bool = True, rng: random.Random | None = None) -> None:
        """ランダムに選択し直す.

        ロックされたタグはそのまま残し、ロックされたタグを含まないタグカテゴリから
        1つずつ一様ランダムに選びます（自由入力カテゴリは対象外）。

        Args:
            locked_only: True ならロックされたタグだけを保持する. False ならロックも無視して全て選び直す
            rng: 乱数生成器（テスト用）
        """
        rng = rng or random.Random()
        preserved = {k: v for k, v in self._selected.items() if v.is_locked} if locked_only else {}
        locked_categories = {v.category_id for v in preserved.values()}

        selected = dict(preserved)
        for category in self._taxonomy:
            if category.is_text or not category.tags or category.id in locked_categories:
                continue
            tag = rng.choice(category.tags)
            selected[tag.id] = SelectedTag(tag=tag, category_id=category.id, is_locked=False)

        self._drop_pending()
        self._selected = selected
        logger.debug(f"Randomized selection: {len(selected)} tags ({len(preserved)} locked)")

    def load_snapshot(self, snapshot: Snapshot, preset_name: str | None = None) -> LoadResult:
        """スナップショットで選択状態を丸ごと置き換える.

        索引に無いタグIDは警告を出して落とします（読み込み自体は常に成功する）。
        カテゴリ順はスナップショットの順序から未知のカテゴリを除き、残りのカテゴリを末尾に足します。

        Args:
            snapshot: プリセット・履歴・AI結果のスナップショット
            preset_name: 名前付きプリセットからの読み込みならその名前

        Returns:
            読み込み結果（落としたIDを含む）
        """
        selected: dict[str, SelectedTag] = {}
        dropped: list[str] = []
        for tag_id, entry in snapshot.selected_tags.items():
            indexed = self._index.get(tag_id)
            if indexed is None:
                logger.warning(f"Tag '{tag_id}' no longer exists in the taxonomy and was skipped")
                dropped.append(tag_id)
                continue
            selected[tag_id] = SelectedTag(tag=indexed.tag, category_id=indexed.category_id, is_locked=entry.is_locked)

        self._drop_pending()
        self._selected = selected
        self._category_order = self._complete_order(snapshot.category_order, keep_unknown=False)
        self._text_values = {
            k: v
            for k, v in snapshot.text_category_values.items()
            if v and (category := self._index.category(k)) is not None and category.is_text
        }
        self.active_preset = ActivePreset(name=preset_name) if preset_name is not None else None

        logger.info(f"Loaded snapshot: {len(selected)} tags, {len(dropped)} dropped")
        return LoadResult(loaded_ids=tuple(selected), dropped_ids=tuple(dropped))

    def load_tag_ids(self, tag_ids: Iterable[str], keep_locked: bool = False) -> LoadResult:
        """タグIDの列（AI結果・マクロ）で選択を置き換える. カテゴリ順と自由入力は維持する.

        Args:
            tag_ids: 読み込むタグID（未知のIDは load_snapshot() と同様に警告して落とす）
            keep_locked: True ならロック中のタグをロックしたまま残す
        """
        entries: dict[str, SnapshotTag] = {}
        if keep_locked:
            for tag_id, st in self._selected.items():
                if st.is_locked:
                    entries[tag_id] = SnapshotTag(category_id=st.category_id, is_locked=True)
        for tag_id in tag_ids:
            entries.setdefault(tag_id, SnapshotTag(category_id=self._index.category_of(tag_id) or ""))
        snapshot = Snapshot(
            selected_tags=entries,
            category_order=tuple(self._category_order),
            text_category_values=dict(self._text_values),
        )
        return self.load_snapshot(snapshot)

    def replace_taxonomy(self, taxonomy: Taxonomy) -> None:
        """タクソノミーを差し替え、索引を作り直して選択状態をリセットする.

        古いタクソノミーへの参照は残しません（選択・解決待ち・アクティブなプリセットをクリア）。
        自由入力は新しいタクソノミーにも存在する自由入力カテゴリの分だけ残します。
        """
        self._taxonomy = tuple(taxonomy)
        self._index = build_index(self._taxonomy)
        self._selected = {}
        self._pending = None
        self._category_order = [c.id for c in self._taxonomy]
        self._text_values = {
            k: v
            for k, v in self._text_values.items()
            if (category := self._index.category(k)) is not None and category.is_text
        }
        self.active_preset = None
        logger.info(f"Taxonomy replaced: {len(self._taxonomy)} categories, {len(self._index)} tags")

    # ------------------------------------------------------------------
    # 派生ビュー
    # ------------------------------------------------------------------
    def snapshot(self) -> Snapshot:
        return Snapshot(
            selected_tags={
                tag_id: SnapshotTag(category_id=st.category_id, is_locked=st.is_locked)
                for tag_id, st in self._selected.items()
            },
            category_order=tuple(self._category_order),
            text_category_values=dict(self._text_values),
        )

    @property
    def conflicts(self) -> list[Conflict]:
        return find_conflicts(self._selected_tags())

    def suggestions(self, category_id: str | None = None) -> list[Tag]:
        return suggest_tags(self._index, self._selected.keys(), category_id)

    def tag_tree(self, category_id: str) -> list[TreeNode]:
        category = self._index.category(category_id)
        if category is None:
            return []
        return build_tag_tree(category.tags)

    def compose(self, separator: str = PROMPT_SEPARATOR) -> ComposedPrompt:
        return compose_prompt(
            self._taxonomy,
            self._selected.keys(),
            self._category_order,
            self._text_values,
            separator=separator,
        )
