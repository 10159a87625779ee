"""プリセット・プロンプト履歴・マクロの管理とJSON永続化.

- プリセット: 名前付きスナップショット（名前は大文字小文字を無視して一意）
- 履歴: 生成したプロンプトのスナップショット（新しい順、最大50件）
- マクロ: タグIDの名前付きセット（AI結果と同じ経路で選択に読み込む）
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import polars as pl
from loguru import logger

from .core.exceptions import DuplicatePresetError, PresetNotFoundError
from .core.selection import Snapshot

DATA_DIR = Path(__file__).resolve().parent / "data"
DEFAULT_PRESETS_PATH = DATA_DIR / "default_presets.json"
DEFAULT_MACROS_PATH = DATA_DIR / "default_macros.json"
HISTORY_LIMIT = 50


def _now() -> str:
    return datetime.now(UTC).isoformat()


@dataclass(frozen=True)
class Preset:
    name: str
    snapshot: Snapshot
    description: str = ""
    created_at: str = ""
    updated_at: str = ""
    is_favorite: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            **self.snapshot.to_dict(),
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "isFavorite": self.is_favorite,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Preset:
        return cls(
            name=data["name"],
            snapshot=Snapshot.from_dict(data),
            description=data.get("description") or "",
            created_at=data.get("createdAt") or "",
            updated_at=data.get("updatedAt") or "",
            is_favorite=bool(data.get("isFavorite", False)),
        )


@dataclass(frozen=True)
class HistoryEntry:
    timestamp: str
    prompt_string: str
    snapshot: Snapshot

    def to_dict(self) -> dict[str, Any]:
        return {"timestamp": self.timestamp, "promptString": self.prompt_string, **self.snapshot.to_dict()}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> HistoryEntry:
        return cls(
            timestamp=data.get("timestamp") or "",
            prompt_string=data.get("promptString") or "",
            snapshot=Snapshot.from_dict(data),
        )


@dataclass(frozen=True)
class Macro:
    name: str
    tags: tuple[str, ...]
    description: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Macro:
        return cls(name=data["name"], tags=tuple(data.get("tags") or ()), description=data.get("description") or "")


class PresetLibrary:
    """プリセットの一覧（保存順）.

    名前の重複判定は大文字小文字を無視します。重複時は何も変更せずに DuplicatePresetError を送出するので、
    呼び出し側で別名を促してください。
    """

    def __init__(self, presets: Iterable[Preset] = ()) -> None:
        self._presets: list[Preset] = list(presets)

    def __iter__(self) -> Iterator[Preset]:
        return iter(list(self._presets))

    def __len__(self) -> int:
        return len(self._presets)

    def names(self) -> list[str]:
        return [p.name for p in self._presets]

    def _find(self, name: str) -> int | None:
        key = name.strip().casefold()
        for i, preset in enumerate(self._presets):
            if preset.name.casefold() == key:
                return i
        return None

    def get(self, name: str) -> Preset:
        i = self._find(name)
        if i is None:
            raise PresetNotFoundError(name)
        return self._presets[i]

    def exists(self, name: str) -> bool:
        return self._find(name) is not None

    def save(self, name: str, snapshot: Snapshot, description: str = "") -> Preset:
        """新しいプリセットとして保存する.

        Raises:
            ValueError: 名前が空の場合
            DuplicatePresetError: 同名（大文字小文字無視）のプリセットが既にある場合
        """
        name = name.strip()
        if not name:
            raise ValueError("Preset name must not be empty")
        if self.exists(name):
            raise DuplicatePresetError(name)

        now = _now()
        preset = Preset(name=name, snapshot=snapshot, description=description, created_at=now, updated_at=now)
        self._presets.append(preset)
        logger.info(f"Saved preset: {name} ({len(snapshot.selected_tags)} tags)")
        return preset

    def update(self, name: str, snapshot: Snapshot) -> Preset:
        """既存プリセットの内容を現在のスナップショットで上書きする."""
        i = self._find(name)
        if i is None:
            raise PresetNotFoundError(name)
        updated = replace(self._presets[i], snapshot=snapshot, updated_at=_now())
        self._presets[i] = updated
        logger.info(f"Updated preset: {updated.name}")
        return updated

    def rename(self, old_name: str, new_name: str) -> Preset:
        """プリセット名を変更する. 自分自身以外と重複する名前は拒否する."""
        i = self._find(old_name)
        if i is None:
            raise PresetNotFoundError(old_name)
        new_name = new_name.strip()
        if not new_name:
            raise ValueError("Preset name must not be empty")
        other = self._find(new_name)
        if other is not None and other != i:
            raise DuplicatePresetError(new_name)

        renamed = replace(self._presets[i], name=new_name, updated_at=_now())
        self._presets[i] = renamed
        return renamed

    def delete(self, name: str) -> None:
        i = self._find(name)
        if i is None:
            raise PresetNotFoundError(name)
        removed = self._presets.pop(i)
        logger.info(f"Deleted preset: {removed.name}")

    def toggle_favorite(self, name: str) -> Preset:
        i = self._find(name)
        if i is None:
            raise PresetNotFoundError(name)
        toggled = replace(self._presets[i], is_favorite=not self._presets[i].is_favorite)
        self._presets[i] = toggled
        return toggled

    def favorites(self) -> list[Preset]:
        return [p for p in self._presets if p.is_favorite]

    def sorted(self, by: str = "name_asc") -> list[Preset]:
        """並べ替えた一覧を返す.

        Args:
            by: "name_asc" / "name_desc" / "updated_asc" / "updated_desc"
        """
        if by == "name_asc":
            return sorted(self._presets, key=lambda p: p.name.casefold())
        if by == "name_desc":
            return sorted(self._presets, key=lambda p: p.name.casefold(), reverse=True)
        if by == "updated_asc":
            return sorted(self._presets, key=lambda p: p.updated_at)
        if by == "updated_desc":
            return sorted(self._presets, key=lambda p: p.updated_at, reverse=True)
        raise ValueError(f"Invalid sort key '{by}'")


class PromptHistory:
    """生成したプロンプトの履歴（新しい順、上限を超えたら古いものから捨てる）."""

    def __init__(self, entries: Iterable[HistoryEntry] = (), limit: int = HISTORY_LIMIT) -> None:
        self.limit = limit
        self._entries: list[HistoryEntry] = list(entries)[:limit]

    def __iter__(self) -> Iterator[HistoryEntry]:
        return iter(list(self._entries))

    def __len__(self) -> int:
        return len(self._entries)

    def __getitem__(self, i: int) -> HistoryEntry:
        return self._entries[i]

    def record(self, prompt_string: str, snapshot: Snapshot) -> HistoryEntry | None:
        """プロンプトを履歴の先頭に追加する.

        空文字列や直前と同じプロンプトは記録しません。

        Returns:
            追加したエントリ（記録しなかった場合は None）
        """
        if not prompt_string:
            return None
        if self._entries and self._entries[0].prompt_string == prompt_string:
            return None

        entry = HistoryEntry(timestamp=_now(), prompt_string=prompt_string, snapshot=snapshot)
        self._entries.insert(0, entry)
        del self._entries[self.limit :]
        return entry

    def clear(self) -> None:
        self._entries.clear()


def history_to_frame(history: Iterable[HistoryEntry]) -> pl.DataFrame:
    """履歴を表形式にする（レポート・CSV出力用）."""
    rows = [
        {
            "timestamp": e.timestamp,
            "prompt": e.prompt_string,
            "tag_count": len(e.snapshot.selected_tags),
            "tag_ids": ",".join(e.snapshot.selected_tags),
        }
        for e in history
    ]
    return pl.DataFrame(
        rows,
        schema={"timestamp": pl.String, "prompt": pl.String, "tag_count": pl.Int64, "tag_ids": pl.String},
    )


def _read_json_list(path: Path) -> list[dict[str, Any]]:
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in {path}") from e
    if not isinstance(data, list):
        raise ValueError(f"{path} must contain a JSON array, got {type(data)}")
    return data


def _write_json(data: Any, output_path: Path) -> None:
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False)


def load_presets(path: Path | str | None = None) -> PresetLibrary:
    """プリセットJSONを読み込む. path が None なら同梱のスタータープリセット.

    Raises:
        FileNotFoundError: ファイルが存在しない場合
        ValueError: JSON形式が不正な場合
    """
    source = Path(path) if path is not None else DEFAULT_PRESETS_PATH
    if not source.exists():
        raise FileNotFoundError(f"Presets file not found: {source}")

    presets = [Preset.from_dict(item) for item in _read_json_list(source)]
    logger.info(f"Loaded {len(presets)} presets from {source}")
    return PresetLibrary(presets)


def save_presets(library: PresetLibrary, output_path: Path | str) -> None:
    _write_json([p.to_dict() for p in library], Path(output_path))


def load_history(path: Path | str, limit: int = HISTORY_LIMIT) -> PromptHistory:
    """履歴JSONを読み込む. ファイルが無ければ空の履歴を返す."""
    source = Path(path)
    if not source.exists():
        return PromptHistory(limit=limit)
    entries = [HistoryEntry.from_dict(item) for item in _read_json_list(source)]
    if len(entries) > limit:
        logger.warning(f"History file {source} has {len(entries)} entries; keeping newest {limit}")
    return PromptHistory(entries, limit=limit)


def save_history(history: PromptHistory, output_path: Path | str) -> None:
    _write_json([e.to_dict() for e in history], Path(output_path))


def load_macros(path: Path | str | None = None) -> list[Macro]:
    source = Path(path) if path is not None else DEFAULT_MACROS_PATH
    if not source.exists():
        raise FileNotFoundError(f"Macros file not found: {source}")
    return [Macro.from_dict(item) for item in _read_json_list(source)]
