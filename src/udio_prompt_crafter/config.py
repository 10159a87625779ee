"""設定ファイル（settings.yml）の読み込み."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import yaml
from loguru import logger

from .presets import HISTORY_LIMIT


@dataclass(frozen=True)
class AiSettings:
    provider: str = "ollama"
    base_url: str = "http://localhost:11434"
    model: str = "llama3"
    timeout: float = 60.0


@dataclass(frozen=True)
class Settings:
    """アプリ設定.

    パスは設定ファイルからの相対パスとして解決します（None は同梱デフォルト／未使用）。
    """

    ai: AiSettings = field(default_factory=AiSettings)
    taxonomy_path: Path | None = None
    presets_path: Path | None = None
    history_path: Path | None = None
    macros_path: Path | None = None
    history_limit: int = HISTORY_LIMIT


def _resolve(base_dir: Path, value: object) -> Path | None:
    if not value:
        return None
    path = Path(str(value))
    return path if path.is_absolute() else base_dir / path


def load_settings(settings_yml: Path | str | None = None) -> Settings:
    """settings.yml を読み込む.

    Args:
        settings_yml: 設定ファイルのパス（None またはファイルが無い場合は既定値）

    Returns:
        設定

    Raises:
        ValueError: YAMLが不正、またはトップレベルがマッピングでない場合
    """
    if settings_yml is None:
        return Settings()

    settings_yml = Path(settings_yml)
    if not settings_yml.exists():
        logger.info(f"Settings file not found, using defaults: {settings_yml}")
        return Settings()

    try:
        with open(settings_yml, encoding="utf-8") as f:
            config = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in settings file: {settings_yml}") from e

    if not isinstance(config, dict):
        raise ValueError(f"Settings file must contain a mapping, got {type(config)}")

    ai = config.get("ai") or {}
    defaults = AiSettings()
    base_dir = settings_yml.parent

    settings = Settings(
        ai=AiSettings(
            provider=ai.get("provider", defaults.provider),
            base_url=ai.get("base_url", defaults.base_url),
            model=ai.get("model", defaults.model),
            timeout=float(ai.get("timeout", defaults.timeout)),
        ),
        taxonomy_path=_resolve(base_dir, config.get("taxonomy_path")),
        presets_path=_resolve(base_dir, config.get("presets_path")),
        history_path=_resolve(base_dir, config.get("history_path")),
        macros_path=_resolve(base_dir, config.get("macros_path")),
        history_limit=int(config.get("history_limit", HISTORY_LIMIT)),
    )
    logger.info(f"Loaded settings from {settings_yml} (ai provider={settings.ai.provider})")
    return settings
