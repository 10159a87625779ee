"""コマンドラインからプロンプトを組み立てる.

タクソノミーとプリセット/マクロ/タグIDから選択状態を作り、プロンプト文字列（または構造化JSON）を出力します。
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from loguru import logger

from .config import load_settings
from .core.composer import PREVIEW_SEPARATOR, PROMPT_SEPARATOR
from .core.conflicts import Resolution, export_conflict_report
from .core.exceptions import PromptCrafterError
from .core.selection import SelectionStore
from .core.taxonomy import load_taxonomy
from .presets import load_history, load_macros, load_presets, save_history


def _split_ids(value: str | None) -> list[str]:
    if not value:
        return []
    return [v.strip() for v in value.split(",") if v.strip()]


def _parse_text_value(value: str) -> tuple[str, str]:
    category_id, sep, text = value.partition("=")
    if not sep or not category_id.strip():
        raise argparse.ArgumentTypeError(f"Expected CATEGORY=TEXT, got '{value}'")
    return category_id.strip(), text


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Compose a music generation prompt from taxonomy tags")
    parser.add_argument(
        "--settings",
        type=Path,
        default=None,
        help="Settings YAML file (taxonomy/presets/history/macros paths, AI provider)",
    )
    parser.add_argument(
        "--taxonomy",
        type=Path,
        default=None,
        help="Taxonomy JSON file (default: settings taxonomy_path or the bundled taxonomy)",
    )
    parser.add_argument("--preset", type=str, default=None, help="Load a preset by name")
    parser.add_argument("--macro", type=str, default=None, help="Apply a macro by name")
    parser.add_argument(
        "--tags",
        type=str,
        default=None,
        help="Comma-separated tag ids to add (already selected ids are kept; conflicting tags replace earlier ones)",
    )
    parser.add_argument(
        "--text",
        type=_parse_text_value,
        action="append",
        default=None,
        help="Free text for a text category (repeatable). Example: --text lyrics='neon rain'",
    )
    parser.add_argument("--order", type=str, default=None, help="Comma-separated category order")
    parser.add_argument(
        "--preview",
        action="store_true",
        help=f"Join with '{PREVIEW_SEPARATOR}' instead of '{PROMPT_SEPARATOR}'",
    )
    parser.add_argument("--json", action="store_true", help="Print the structured JSON output")
    parser.add_argument(
        "--conflict-report",
        type=Path,
        default=None,
        help="Directory to write conflicts.csv into when the selection has conflicts",
    )
    parser.add_argument("--record-history", action="store_true", help="Append the prompt to the history file")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    return parser


def main(argv: list[str] | None = None) -> int:
    """CLI エントリポイント."""
    args = build_parser().parse_args(argv)

    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if args.verbose else "INFO")

    try:
        settings = load_settings(args.settings)
        taxonomy = load_taxonomy(args.taxonomy or settings.taxonomy_path)
        store = SelectionStore(taxonomy)

        if args.preset:
            preset = load_presets(settings.presets_path).get(args.preset)
            store.load_snapshot(preset.snapshot, preset_name=preset.name)

        if args.macro:
            macros = {m.name.casefold(): m for m in load_macros(settings.macros_path)}
            macro = macros.get(args.macro.casefold())
            if macro is None:
                logger.error(f"Macro not found: {args.macro}")
                return 2
            store.load_tag_ids(macro.tags)

        for tag_id in _split_ids(args.tags):
            if store.is_selected(tag_id):
                continue
            pending = store.toggle(tag_id)
            if pending is not None:
                labels = ", ".join(t.label for t in pending.conflicting_tags)
                logger.warning(f"'{pending.newly_selected_tag.label}' conflicts with {labels}; keeping the new tag")
                store.resolve(Resolution.KEEP_NEW)

        for category_id, text in args.text or []:
            store.set_text_value(category_id, text)

        if args.order:
            store.reorder_categories(_split_ids(args.order))

    except (PromptCrafterError, FileNotFoundError, ValueError) as e:
        logger.error(str(e))
        return 1

    for conflict in store.conflicts:
        logger.warning(f"'{conflict.tag_a.label}' conflicts with '{conflict.tag_b.label}'")
    if args.conflict_report is not None:
        report_path = export_conflict_report(store.conflicts, args.conflict_report)
        if report_path:
            logger.info(f"Conflict report: {report_path}")

    composed = store.compose(PREVIEW_SEPARATOR if args.preview else PROMPT_SEPARATOR)
    print(composed.to_json() if args.json else composed.prompt)

    if args.record_history:
        if settings.history_path is None:
            logger.warning("No history_path configured; skipping history")
        else:
            history = load_history(settings.history_path, limit=settings.history_limit)
            history.record(composed.prompt, store.snapshot())
            save_history(history, settings.history_path)

    return 0


if __name__ == "__main__":
    sys.exit(main())
