"""Attribute Filter: 解決済み属性からの有効/無効判定

(バックエンドID, 有効フィーチャー集合) ごとに、型・メソッドが有効かどうかを決定する純関数群。
属性の構文解析は行わない（解決済みのAttrOutcomeのみを消費する）。
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from bindtool.core.base.errors import (
    AttributeResolutionError,
    Diagnostic,
    GenerationError,
    SkippedItem,
    UnresolvedTypeReferenceError,
)
from bindtool.core.base.ir import AttrOutcome, MethodDef, TypeDef, TypeId, declared_methods
from bindtool.core.engine.registry import TypeRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FilterContext:
    """フィルタの入力

    Attributes:
        backend: 対象バックエンドID
        features: 有効なフィーチャー名
        known_backends: 属性に記述可能なバックエンドID
    """

    backend: str
    features: frozenset[str] = frozenset()
    known_backends: frozenset[str] = frozenset()


def _specificity(outcome: AttrOutcome) -> tuple[bool, int]:
    return (outcome.backend != "*", len(outcome.features))


def resolve_enabled(attrs: Iterable[AttrOutcome], ctx: FilterContext) -> bool:
    """属性結果の集合から有効/無効を解決

    適用可能な結果のうち最も具体的なもの（バックエンド明示 > フィーチャー数）が優先される。
    適用可能な結果がない場合は有効。

    Raises:
        AttributeResolutionError: 不正な属性、または同じ具体度で矛盾する結果
    """
    applicable: list[AttrOutcome] = []
    for outcome in attrs:
        if outcome.backend != "*" and outcome.backend not in ctx.known_backends:
            raise AttributeResolutionError(f"attribute names unknown backend '{outcome.backend}'")
        if any(not feature for feature in outcome.features):
            raise AttributeResolutionError("attribute names an empty feature")
        if outcome.backend not in ("*", ctx.backend):
            continue
        if all(feature in ctx.features for feature in outcome.features):
            applicable.append(outcome)

    if not applicable:
        return True

    top = max(_specificity(o) for o in applicable)
    decisions = {o.enabled for o in applicable if _specificity(o) == top}
    if len(decisions) > 1:
        raise AttributeResolutionError(f"contradictory attributes for backend '{ctx.backend}'")
    return decisions.pop()


@dataclass
class FilterResult:
    """フィルタ結果

    Attributes:
        types: 有効な型定義（TypeId順）
        methods: 有効な型ごとの有効メソッド
        skipped: 無効化された項目
        diagnostics: 属性解決エラー
    """

    types: dict[TypeId, TypeDef] = field(default_factory=dict)
    methods: dict[TypeId, tuple[MethodDef, ...]] = field(default_factory=dict)
    skipped: list[SkippedItem] = field(default_factory=list)
    diagnostics: list[Diagnostic] = field(default_factory=list)

    def failed_types(self) -> set[TypeId]:
        """属性解決エラーが発生した型"""
        return {d.type_id for d in self.diagnostics}


def filter_registry(registry: TypeRegistry, ctx: FilterContext) -> FilterResult:
    """Registry全体をフィルタ

    無効な型は走査対象から除外され、そのメソッドも出力されない。
    有効な型のメソッドは、メソッド自身の属性が有効に解決された場合のみ有効。
    """
    result = FilterResult()

    for type_id, typedef in registry.all_types():
        try:
            enabled = resolve_enabled(typedef.attrs, ctx)
        except GenerationError as exc:
            result.diagnostics.append(exc.to_diagnostic(type_id))
            continue
        if not enabled:
            logger.debug(f"skipped type '{type_id}' for backend '{ctx.backend}'")
            result.skipped.append(SkippedItem(type_id))
            continue

        result.types[type_id] = typedef
        methods = []
        for method in declared_methods(typedef):
            try:
                method_enabled = resolve_enabled(method.attrs, ctx)
            except GenerationError as exc:
                result.diagnostics.append(exc.to_diagnostic(type_id, method.name))
                continue
            if method_enabled:
                methods.append(method)
            else:
                logger.debug(f"skipped method '{type_id}::{method.name}' for backend '{ctx.backend}'")
                result.skipped.append(SkippedItem(type_id, method.name))
        result.methods[type_id] = tuple(methods)

    return result


class EnabledSurface:
    """バックエンドで有効な型への参照解決

    Registryの参照解決に加え、無効化された型への参照をUnresolvedTypeReferenceとして報告する。
    """

    def __init__(self, registry: TypeRegistry, filtered: FilterResult) -> None:
        self.registry = registry
        self._enabled = filtered.types
        self._methods = filtered.methods

    def resolve(self, type_id: TypeId) -> TypeDef:
        """有効な型定義を解決

        Raises:
            UnresolvedTypeReferenceError: 未定義または無効化された型
        """
        if type_id not in self.registry:
            raise UnresolvedTypeReferenceError(f"reference to undefined type '{type_id}'")
        if type_id not in self._enabled:
            raise UnresolvedTypeReferenceError(f"reference to type '{type_id}' which is disabled for this backend")
        return self._enabled[type_id]

    def methods_of(self, type_id: TypeId) -> tuple[MethodDef, ...]:
        """型の有効メソッド"""
        return self._methods.get(type_id, ())

    def __contains__(self, type_id: object) -> bool:
        return type_id in self._enabled
