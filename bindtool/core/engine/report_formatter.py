"""生成結果のフォーマット

ErrorKind別に分類したDiagnostic、フィルタで除外された項目、生成された型を
CLI向けのテキストに整形する。
"""

from __future__ import annotations

from bindtool.core.base.errors import Diagnostic, ErrorKind, SkippedItem
from bindtool.core.base.ir import kind_label
from bindtool.core.engine.pipeline import GenerationResult

_KIND_LABELS = {
    ErrorKind.UNRESOLVED_TYPE_REFERENCE: "🔗 Unresolved Type References",
    ErrorKind.NAMING_CONFLICT: "🏷️  Naming Conflicts",
    ErrorKind.UNSUPPORTED_TYPE: "🚫 Unsupported Types",
    ErrorKind.ATTRIBUTE_RESOLUTION: "⚙️  Attribute Resolution",
    ErrorKind.LOWERING: "📄 IR Lowering",
    ErrorKind.LIFETIME_VIOLATION: "⏳ Lifetime Violations",
}


def categorize(diagnostics: list[Diagnostic]) -> dict[ErrorKind, list[Diagnostic]]:
    """DiagnosticをErrorKind別に分類（ErrorKindの定義順）"""
    categories: dict[ErrorKind, list[Diagnostic]] = {kind: [] for kind in ErrorKind}
    for diagnostic in diagnostics:
        categories[diagnostic.kind].append(diagnostic)
    return categories


def _format_category(label: str, messages: list[str], message_type: str) -> list[str]:
    if not messages:
        return []
    count = len(messages)
    suffix = "s" if count > 1 and message_type != "generated" else ""
    lines = [f"{label} ({count} {message_type}{suffix}):"]
    lines.extend(f"  • {msg}" for msg in messages)
    lines.append("")
    return lines


def _format_errors(diagnostics: list[Diagnostic]) -> list[str]:
    if not diagnostics:
        return []
    lines = [f"\n❌ Generation failed with {len(diagnostics)} error(s):\n"]
    for kind, items in categorize(diagnostics).items():
        messages = [f"{d.location}: {d.message}" for d in items]
        lines.extend(_format_category(_KIND_LABELS[kind], messages, "error"))
    return lines


def _format_skipped(skipped: list[SkippedItem]) -> list[str]:
    if not skipped:
        return []
    messages = [f"{item.location}: {item.reason}" for item in sorted(skipped, key=lambda s: s.location)]
    return ["", *_format_category("⏭️  Skipped", messages, "item")]


def _format_generated(result: GenerationResult) -> list[str]:
    messages = [
        f"{unit.plan.typedef.name} ({kind_label(unit.plan.typedef)}, {len(unit.symbols)} symbol(s))"
        for unit in result.units
    ]
    return ["", *_format_category("📦 Types", messages, "generated")]


def format_generation_result(result: GenerationResult, verbose: bool = False) -> str:
    """生成結果をフォーマットして文字列に変換

    Args:
        result: generate()の戻り値
        verbose: 詳細表示モード（除外項目・生成された型も表示）

    Returns:
        フォーマットされた文字列
    """
    lines = _format_errors(result.diagnostics)
    if verbose:
        lines.extend(_format_skipped(result.skipped))
        if result.units:
            lines.extend(_format_generated(result))
    if result.ok:
        lines.append(f"✅ {len(result.units)} type(s), {len(result.symbols)} symbol(s) ready")
    return "\n".join(lines)
