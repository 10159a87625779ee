"""Prompt crafter exceptions.

カスタム例外クラスを定義します。
"""

from __future__ import annotations


class PromptCrafterError(Exception):
    """全ての独自例外の基底クラス."""


class TaxonomyError(PromptCrafterError):
    """タクソノミーの構造が不正な場合の例外."""


class TaxonomyUnavailableError(TaxonomyError):
    """タクソノミーを読み込めない（設定が利用できない）場合の例外.

    ファイル欠損・JSON不正・空のタクソノミーはいずれも致命的で、
    composer/resolver は何も表示できないため、この例外で呼び出し側へ伝播させます。

    Attributes:
        path: 読み込もうとしたパス（同梱デフォルトの場合は None）
        reason: 失敗理由
    """

    def __init__(self, path: object, reason: str) -> None:
        self.path = path
        self.reason = reason
        source = str(path) if path is not None else "<bundled default>"
        super().__init__(f"Taxonomy unavailable: {source} ({reason})")


class UnknownTagError(PromptCrafterError):
    """タクソノミーに存在しないタグIDが指定された場合の例外."""

    def __init__(self, tag_id: str) -> None:
        self.tag_id = tag_id
        super().__init__(f"Unknown tag id: {tag_id}")


class ResolutionPendingError(PromptCrafterError):
    """衝突解決待ちの間に新しい toggle が要求された場合の例外."""

    def __init__(self, tag_id: str) -> None:
        self.tag_id = tag_id
        super().__init__(
            f"Cannot toggle '{tag_id}' while a conflict resolution is pending. "
            "Call resolve() with keep_new, keep_both or cancel first."
        )


class ResolutionNotPendingError(PromptCrafterError):
    """解決待ちの衝突が無いのに resolve() が呼ばれた場合の例外."""

    def __init__(self) -> None:
        super().__init__("No conflict resolution is pending")


class DuplicatePresetError(PromptCrafterError):
    """同名（大文字小文字無視）のプリセットが既に存在する場合の例外."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"A preset named '{name}' already exists")


class PresetNotFoundError(PromptCrafterError):
    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Preset not found: {name}")


class LlmError(PromptCrafterError):
    """LLM 呼び出しに関する例外の基底クラス."""


class LlmRequestError(LlmError):
    """通信エラー・タイムアウトなど、応答を得られなかった場合の例外."""


class LlmResponseError(LlmError):
    """LLM の応答が期待した形式でない場合の例外.

    Attributes:
        snippet: 解析できなかった応答の先頭部分
    """

    def __init__(self, message: str, snippet: str = "") -> None:
        self.snippet = snippet
        if snippet:
            message = f"{message}. Response snippet: {snippet!r}"
        super().__init__(message)
