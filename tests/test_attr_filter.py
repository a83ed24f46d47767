"""Attribute Filterの単体テスト"""

import pytest

from bindtool.core.base.errors import AttributeResolutionError, UnresolvedTypeReferenceError
from bindtool.core.base.ir import AttrOutcome
from bindtool.core.engine.attr_filter import EnabledSurface, FilterContext, filter_registry, resolve_enabled
from helpers import registry_of

KNOWN = frozenset({"c", "py"})


def ctx(backend: str = "py", *features: str) -> FilterContext:
    return FilterContext(backend=backend, features=frozenset(features), known_backends=KNOWN)


def test_no_attributes_means_enabled():
    assert resolve_enabled((), ctx()) is True


def test_backend_specific_outcome_wins_over_wildcard():
    """バックエンド明示の結果はワイルドカードより優先"""
    attrs = (AttrOutcome("*", (), True), AttrOutcome("py", (), False))

    assert resolve_enabled(attrs, ctx("py")) is False
    assert resolve_enabled(attrs, ctx("c")) is True


def test_more_features_is_more_specific():
    """フィーチャー数が多い結果が優先"""
    attrs = (AttrOutcome("*", (), False), AttrOutcome("*", ("simd",), True))

    assert resolve_enabled(attrs, ctx("py")) is False
    assert resolve_enabled(attrs, ctx("py", "simd")) is True


def test_explicit_backend_beats_feature_count():
    attrs = (AttrOutcome("*", ("simd", "avx"), True), AttrOutcome("c", (), False))

    assert resolve_enabled(attrs, ctx("c", "simd", "avx")) is False
    assert resolve_enabled(attrs, ctx("py", "simd", "avx")) is True


def test_outcome_for_other_backend_is_ignored():
    assert resolve_enabled((AttrOutcome("c", (), False),), ctx("py")) is True


def test_contradictory_outcomes():
    """同じ具体度で矛盾する結果はAttributeResolutionError"""
    attrs = (AttrOutcome("py", ("a",), True), AttrOutcome("py", ("b",), False))

    assert resolve_enabled(attrs, ctx("py", "a")) is True
    with pytest.raises(AttributeResolutionError, match="contradictory"):
        resolve_enabled(attrs, ctx("py", "a", "b"))


def test_agreeing_outcomes_are_not_contradictory():
    attrs = (AttrOutcome("py", ("a",), False), AttrOutcome("py", ("b",), False))

    assert resolve_enabled(attrs, ctx("py", "a", "b")) is False


def test_malformed_outcomes():
    """未知のバックエンド・空のフィーチャー名は不正"""
    with pytest.raises(AttributeResolutionError, match="unknown backend 'rust'"):
        resolve_enabled((AttrOutcome("rust", (), False),), ctx())
    with pytest.raises(AttributeResolutionError, match="empty feature"):
        resolve_enabled((AttrOutcome("*", ("",), True),), ctx())


def test_filter_registry_skips_disabled_items(geometry_registry):
    """無効な型・メソッドはSkippedItemとして記録され、診断にはならない"""
    result = filter_registry(geometry_registry, ctx("py"))

    assert "GpuSurface" not in result.types
    assert [m.name for m in result.methods["Canvas"] if m.name == "blur"] == []
    assert {(s.type_id, s.method) for s in result.skipped} == {("GpuSurface", None), ("Canvas", "blur")}
    assert result.diagnostics == []


def test_filter_registry_with_feature(geometry_registry):
    result = filter_registry(geometry_registry, ctx("c", "simd"))

    assert "GpuSurface" in result.types
    assert "blur" in [m.name for m in result.methods["Canvas"]]
    assert result.skipped == []


def test_attribute_errors_become_diagnostics():
    registry = registry_of(
        {
            "id": "Handle",
            "kind": "opaque",
            "methods": [{"name": "odd", "attrs": [{"backend": "java", "enabled": False}]}],
        },
        {"id": "Broken", "kind": "opaque", "attrs": [{"features": [""], "enabled": True}]},
    )

    result = filter_registry(registry, ctx("py"))

    assert [(d.type_id, d.method, d.kind.value) for d in result.diagnostics] == [
        ("Broken", None, "AttributeResolutionError"),
        ("Handle", "odd", "AttributeResolutionError"),
    ]
    assert result.failed_types() == {"Broken", "Handle"}
    assert "Broken" not in result.types


def test_enabled_surface_reports_disabled_reference(geometry_registry):
    """無効化された型への参照はUnresolvedTypeReference"""
    surface = EnabledSurface(geometry_registry, filter_registry(geometry_registry, ctx("py")))

    assert surface.resolve("Canvas").name == "Canvas"
    with pytest.raises(UnresolvedTypeReferenceError, match="disabled"):
        surface.resolve("GpuSurface")
    with pytest.raises(UnresolvedTypeReferenceError, match="undefined"):
        surface.resolve("Nothing")
