"""LLM 連携（外部の call_llm 能力と、それを使うAI機能）.

call_llm は `(system_prompt, user_prompt, freeform) -> dict | str` の呼び出し可能オブジェクトです。
タイムアウトやリトライは呼び出し側（クライアント）の責務で、ここでは持ちません。

AI機能は必ず「呼び出し → 形の検証 → 未知IDの除外 → 選択状態への反映」の順で処理し、
失敗した場合は選択状態を一切変更しません。
"""

from __future__ import annotations

import json
import re
from collections.abc import Callable
from typing import Any

import httpx
from loguru import logger

from .core.exceptions import LlmRequestError, LlmResponseError
from .core.selection import LoadResult, SelectionStore
from .core.taxonomy import TaxonomyIndex

LlmCaller = Callable[..., Any]

SNIPPET_LENGTH = 200

_CODE_FENCE = re.compile(r"^\s*```(?:json|JSON)?\s*\n?(.*?)\n?\s*```\s*$", re.DOTALL)

LYRIC_CATEGORY_IDS = ("genre", "mood")


def strip_code_fence(text: str) -> str:
    """```json ... ``` で囲まれていれば中身だけを返す."""
    match = _CODE_FENCE.match(text)
    return match.group(1) if match else text


def parse_llm_response(text: str, freeform: bool = False) -> Any:
    """LLMの応答テキストを解析する.

    Args:
        text: 応答テキスト
        freeform: True ならテキストをそのまま返す

    Returns:
        freeform=False の場合は JSON を解析した値

    Raises:
        LlmResponseError: JSONとして解析できない場合（応答の先頭部分を含む）
    """
    if freeform:
        return text
    body = strip_code_fence(text).strip()
    try:
        return json.loads(body)
    except json.JSONDecodeError as e:
        raise LlmResponseError("Failed to parse AI response as JSON", snippet=text[:SNIPPET_LENGTH]) from e


class OllamaClient:
    """Ollama の /api/chat を使う call_llm 実装.

    Args:
        base_url: Ollama サーバーのURL
        model: モデル名
        timeout: タイムアウト秒
        transport: テスト用の httpx トランスポート
    """

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        model: str = "llama3",
        timeout: float = 60.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout
        self._transport = transport

    def __call__(self, system_prompt: str, user_prompt: str, freeform: bool = False) -> Any:
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "stream": False,
        }
        if not freeform:
            payload["format"] = "json"

        logger.debug(f"LLM request: model={self.model} freeform={freeform}")
        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                response = client.post(f"{self.base_url}/api/chat", json=payload)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as e:
            raise LlmRequestError(f"LLM request to {self.base_url} failed: {e}") from e
        except json.JSONDecodeError as e:
            raise LlmRequestError(f"LLM server at {self.base_url} returned a non-JSON body") from e

        content = (data.get("message") or {}).get("content")
        if not isinstance(content, str):
            raise LlmResponseError("LLM server response has no message content", snippet=str(data)[:SNIPPET_LENGTH])
        return parse_llm_response(content, freeform=freeform)


def _require_str_list(result: Any, key: str) -> list[str]:
    if not isinstance(result, dict) or not isinstance(result.get(key), list):
        raise LlmResponseError(
            f"AI returned an invalid response format (expected an object with a '{key}' list)",
            snippet=str(result)[:SNIPPET_LENGTH],
        )
    return [str(v) for v in result[key] if isinstance(v, str) and v.strip()]


def _taxonomy_catalog(index: TaxonomyIndex) -> str:
    lines: list[str] = []
    for category in index.taxonomy:
        if category.is_text or not category.tags:
            continue
        lines.append(f"## {category.name} ({category.id})")
        lines.extend(f"- {tag.id}: {tag.label}" for tag in category.tags)
    return "\n".join(lines)


def _tag_ids_system_prompt(index: TaxonomyIndex, task: str) -> str:
    return (
        "You are an expert music producer helping to build prompts for an AI music generator.\n"
        f"{task}\n\n"
        "- Only use tag ids from the catalog below.\n"
        "- Your response MUST be a valid JSON object with a single key \"tag_ids\" whose value is an array of strings.\n"
        "- Do NOT include any text outside of the JSON object.\n\n"
        f"Tag catalog:\n{_taxonomy_catalog(index)}"
    )


def request_tag_ids(call_llm: LlmCaller, index: TaxonomyIndex, system_prompt: str, user_prompt: str) -> list[str]:
    """`{"tag_ids": [...]}` を要求し、索引にあるIDだけを返す（未知IDは警告して除外）."""
    result = call_llm(system_prompt, user_prompt)
    known: list[str] = []
    for tag_id in _require_str_list(result, "tag_ids"):
        if tag_id not in index:
            logger.warning(f"AI suggested unknown tag id '{tag_id}'; ignoring")
            continue
        if tag_id not in known:
            known.append(tag_id)
    return known


def _apply_tag_ids(store: SelectionStore, tag_ids: list[str], keep_locked: bool) -> LoadResult:
    if not tag_ids:
        raise LlmResponseError("AI did not return any known tag ids")
    return store.load_tag_ids(tag_ids, keep_locked=keep_locked)


def deconstruct_prompt(call_llm: LlmCaller, store: SelectionStore, prompt_text: str) -> LoadResult:
    """既存のプロンプト文をタグ選択に分解して読み込む.

    Raises:
        ValueError: プロンプト文が空の場合
        LlmError: 呼び出し失敗・形式不正・既知のIDが1つも無い場合（選択状態は変更しない）
    """
    if not prompt_text.strip():
        raise ValueError("Prompt text must not be empty")
    system_prompt = _tag_ids_system_prompt(
        store.index, "Deconstruct the user's music prompt into the tags from the catalog that best describe it."
    )
    tag_ids = request_tag_ids(call_llm, store.index, system_prompt, prompt_text.strip())
    return _apply_tag_ids(store, tag_ids, keep_locked=False)


def thematic_randomize(call_llm: LlmCaller, store: SelectionStore, theme: str) -> LoadResult:
    """テーマに沿ったタグをAIに選ばせて読み込む. ロックされたタグは残す."""
    if not theme.strip():
        raise ValueError("Theme must not be empty")
    system_prompt = _tag_ids_system_prompt(
        store.index,
        "Pick a coherent, varied set of tags (usually one or two per category) that evokes the user's theme.",
    )
    tag_ids = request_tag_ids(call_llm, store.index, system_prompt, f'Theme: "{theme.strip()}"')
    return _apply_tag_ids(store, tag_ids, keep_locked=True)


def generate_titles(call_llm: LlmCaller, prompt: str, count: int = 5) -> list[str]:
    """プロンプトから曲名の候補を生成する（`{"titles": [...]}`）."""
    if not prompt:
        raise ValueError("Prompt must not be empty")
    system_prompt = (
        f"You are a creative songwriter AI. Suggest {count} distinct, evocative song titles for a track "
        "described by the given music tags.\n"
        "- Your response MUST be a valid JSON object with a single key \"titles\" whose value is an array of strings.\n"
        "- Do NOT include any text outside of the JSON object."
    )
    return _require_str_list(call_llm(system_prompt, prompt), "titles")


def generate_lyric_themes(call_llm: LlmCaller, store: SelectionStore, keywords: str = "") -> list[str]:
    """ジャンル・ムードのタグとキーワードから歌詞のテーマ案を3つ生成する（`{"themes": [...]}`）.

    Raises:
        ValueError: キーワードも関連タグも無い場合
    """
    labels = [st.tag.label for st in store.selected.values() if st.category_id in LYRIC_CATEGORY_IDS]

    parts: list[str] = []
    if labels:
        parts.append(f"Music Styles: {json.dumps(labels, ensure_ascii=False)}.")
    if keywords.strip():
        parts.append(f'Keywords: "{keywords.strip()}".')
    if not parts:
        raise ValueError("Provide some keywords or select genre/mood tags to generate ideas")

    system_prompt = (
        "You are a creative songwriter AI. Generate 3 short, distinct lyrical theme ideas in English, "
        "based on a list of music style tags and user-provided keywords.\n"
        "- Your response MUST be a valid JSON object with a single key \"themes\" whose value is an array of 3 strings.\n"
        "- Do NOT include any text, explanations, or markdown formatting outside of the JSON object."
    )
    return _require_str_list(call_llm(system_prompt, "\n".join(parts)), "themes")


def describe_prompt(call_llm: LlmCaller, prompt: str) -> str:
    """タグの並びを自然な説明文（1段落）にする."""
    if not prompt:
        raise ValueError("Prompt must not be empty")
    system_prompt = (
        "You are an expert prompt engineer for AI music generation. Weave the given musical tags into a single, "
        "cohesive, descriptive paragraph that sounds natural. Do not use bullet points or lists."
    )
    result = call_llm(system_prompt, prompt, True)
    if not isinstance(result, str):
        raise LlmResponseError("Received an unexpected response format from the AI", snippet=str(result)[:SNIPPET_LENGTH])
    return result.strip()
