"""生成結果フォーマッターのテスト"""

from bindtool.core.base.errors import Diagnostic, ErrorKind, SkippedItem
from bindtool.core.engine.pipeline import GenerationResult
from bindtool.core.engine.report_formatter import categorize, format_generation_result
from helpers import run


def diagnostic(kind: ErrorKind, method: str | None = None) -> Diagnostic:
    return Diagnostic(type_id="Canvas", method=method, kind=kind, message="problem")


def test_categorize_keeps_kind_order():
    diagnostics = [diagnostic(ErrorKind.LIFETIME_VIOLATION), diagnostic(ErrorKind.NAMING_CONFLICT, "draw")]

    categories = categorize(diagnostics)

    assert list(categories) == list(ErrorKind)
    assert categories[ErrorKind.NAMING_CONFLICT] == [diagnostics[1]]
    assert categories[ErrorKind.UNSUPPORTED_TYPE] == []


def test_format_errors():
    result = GenerationResult(
        diagnostics=[
            diagnostic(ErrorKind.UNSUPPORTED_TYPE, "tag"),
            diagnostic(ErrorKind.UNSUPPORTED_TYPE, "title"),
            diagnostic(ErrorKind.LIFETIME_VIOLATION, "parent"),
        ]
    )

    output = format_generation_result(result)

    assert "❌ Generation failed with 3 error(s):" in output
    assert "🚫 Unsupported Types (2 errors):\n  • Canvas::tag: problem\n  • Canvas::title: problem" in output
    assert "⏳ Lifetime Violations (1 error):\n  • Canvas::parent: problem" in output
    assert "Naming Conflicts" not in output
    assert "ready" not in output


def test_format_success(opaque_registry):
    output = format_generation_result(run(opaque_registry, "c"))

    assert output == "✅ 2 type(s), 6 symbol(s) ready"


def test_format_verbose(geometry_registry):
    """詳細表示では除外項目と生成された型も表示"""
    result = run(geometry_registry, "py")
    result.skipped.append(SkippedItem("Canvas", "zoom", "disabled by feature"))

    output = format_generation_result(result, verbose=True)

    assert "⏭️  Skipped (3 items):" in output
    assert "  • Canvas::blur: disabled for backend" in output
    assert "  • Canvas::zoom: disabled by feature" in output
    assert "📦 Types (6 generated):" in output
    assert "  • Canvas (opaque, 12 symbol(s))" in output
    assert output.endswith("✅ 6 type(s), 12 symbol(s) ready")
