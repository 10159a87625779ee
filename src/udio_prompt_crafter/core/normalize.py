"""タグラベル正規化（ラベル列 → プロンプト用トークン列）.

選択タグのラベルや自由入力のトークンを、プロンプトに出力する最終表記へ変換する関数群です。

設計方針:
    - 見た目の整形はここだけで行う（下流では文字列を再加工しない）
    - 出力を再入力しても結果が変わらない（冪等）ことを保証する
    - 重み付け構文 `(text)` / `((text))` / `((text:1.30))` は中身だけを正規化し、外側と重みはそのまま戻す
    - 重複は小文字化した出力で判定し、最初に現れたものを残す
"""

from __future__ import annotations

import re
from collections.abc import Iterable

# 重み付け構文（二重括弧を先に判定する）
_DOUBLE_WRAPPED = re.compile(r"^(\(\()(.+?)(:\d+(?:\.\d+)?)?(\)\))$")
_SINGLE_WRAPPED = re.compile(r"^(\()(.+?)(:\d+(?:\.\d+)?)?(\))$")
_COMBO_SEPARATOR = re.compile(r"\s*/\s*")
_WHITESPACE = re.compile(r"\s+")

PLURAL_TO_SINGULAR: dict[str, str] = {
    "breakdowns": "breakdown",
    "crescendos": "crescendo",
    "hooks": "hook",
    "melodies": "melody",
    "countermelodies": "countermelody",
    "synths": "synth",
    "pads": "pad",
    "bells": "bell",
    "arpeggios": "arpeggio",
    "drones": "drone",
    "guitars": "guitar",
    "strings": "string",
    "harmonies": "harmony",
    "vocals": "vocal",
    "risers": "riser",
}

SPELLING_CORRECTIONS: dict[str, str] = {
    "melodical": "melodic",
    "baseline": "bassline",
}

ALIASES: dict[str, str] = {
    "16/16 TB303 acidline": "TB-303 acidline (16th)",
}

# ハイフン付き固有名詞（部分一致・大文字小文字無視）。含むトークンはケバブ化しない
KEBAB_EXCEPTIONS: tuple[str, ...] = (
    "J-pop",
    "TB-303",
    "TR-808",
    "TR-909",
    "CS-80",
    "DX-7",
    "SQ-80",
    "Juno-106",
    "Jupiter-8",
    "Prophet-5",
    "Korg M1",
    "DJ-friendly",
)

# 別名の展開先も自分自身に写像しておき、展開結果を再入力しても変わらないようにする
_ALIAS_LOOKUP: dict[str, str] = {
    **{target.lower(): target for target in ALIASES.values()},
    **{source.lower(): target for source, target in ALIASES.items()},
}
_KEBAB_EXCEPTIONS_LOWER = tuple(ex.lower() for ex in KEBAB_EXCEPTIONS)


def _is_kebab_exception(token: str) -> bool:
    lowered = token.lower()
    return any(ex in lowered for ex in _KEBAB_EXCEPTIONS_LOWER)


def normalize_token(token: str) -> str:
    """1トークンを正規化する.

    処理順:
        1. 別名の完全一致展開（一致したらここで終了）
        2. 綴りの修正（例: "melodical" → "melodic"）
        3. 複数形 → 単数形（トークン全体で判定）
        4. 内部に空白があり、例外の固有名詞を含まなければ空白をハイフン1つに置換

    Examples:
        >>> normalize_token("Breakdowns")
        'breakdown'
        >>> normalize_token("Gated Reverb")
        'gated-reverb'
        >>> normalize_token("Juno-106 pad")
        'juno-106 pad'
    """
    normalized = token.strip().lower()
    if not normalized:
        return ""

    alias = _ALIAS_LOOKUP.get(normalized)
    if alias is not None:
        return alias

    normalized = SPELLING_CORRECTIONS.get(normalized, normalized)
    normalized = PLURAL_TO_SINGULAR.get(normalized, normalized)

    if _WHITESPACE.search(normalized) and not _is_kebab_exception(normalized):
        normalized = _WHITESPACE.sub("-", normalized)

    return normalized


def _split_wrapper(label: str) -> tuple[str, str, str, str]:
    """重み付け構文を (prefix, inner, weight, suffix) に分解する. 構文でなければ prefix/suffix は空."""
    match = _DOUBLE_WRAPPED.match(label) or _SINGLE_WRAPPED.match(label)
    if match is None:
        return "", label, "", ""
    prefix, inner, weight, suffix = match.groups()
    return prefix, inner, weight or "", suffix


def _normalize_label(label: str) -> list[str]:
    label = label.strip()
    if not label:
        return []

    prefix, inner, weight, suffix = _split_wrapper(label)

    # 別名はラベル全体にも一致させる（"16/16 ..." のように区切り文字を含む別名があるため）
    alias = _ALIAS_LOOKUP.get(inner.strip().lower())
    parts = [alias] if alias is not None else _COMBO_SEPARATOR.split(inner)

    results: list[str] = []
    for part in parts:
        part = part.strip()
        if not part:
            continue
        if part == alias:
            tokens = [part]
        elif part != inner and _split_wrapper(part)[0]:
            # "a / (pads)" のように分割後のトークン自体が重み付け構文の場合
            tokens = _normalize_label(part)
        else:
            tokens = [normalize_token(part)]

        for token in tokens:
            if not token:
                continue
            if prefix:
                token = f"{prefix}{token}{weight}{suffix}"
            results.append(token)

    return results


def normalize_tag_labels(labels: Iterable[str]) -> list[str]:
    """ラベル列を正規化し、重複を除いた出力トークン列を返す.

    Args:
        labels: 生のタグラベル列（例: ["Synthwave / Electro", "((Breakdowns:1.20))"]）

    Returns:
        正規化済みトークン列（入力順を保持。大文字小文字を無視して最初の出現を残す）

    Examples:
        >>> normalize_tag_labels(["Synthwave / Electro", "((Breakdowns:1.20))"])
        ['synthwave', 'electro', '((breakdown:1.20))']
    """
    seen: set[str] = set()
    output: list[str] = []

    for label in labels:
        for token in _normalize_label(label):
            key = token.lower()
            if key in seen:
                continue
            seen.add(key)
            output.append(token)

    return output
