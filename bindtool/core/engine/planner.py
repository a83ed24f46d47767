"""型単位の生成計画

1つの有効なTypeDefについて、Mapper・Formatter・Ownership Trackerを協調させて生成計画（TypePlan）を作る。
メソッドごとの問題は全て収集してから型の失敗として送出する。
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from bindtool.core.base.errors import (
    GenerationError,
    MethodErrors,
    NamingConflictError,
    UnsupportedTypeError,
)
from bindtool.core.base.ir import (
    EnumDef,
    FieldDef,
    MethodDef,
    OpaqueDef,
    StructDef,
    TypeDef,
    TypeId,
    declared_methods,
)
from bindtool.core.engine.attr_filter import EnabledSurface
from bindtool.core.engine.dependency import method_refs, referenced_ids
from bindtool.core.engine.ownership import MethodOwnership, OwnershipTracker
from bindtool.core.engine.symbols import (
    LayoutCalculator,
    Signature,
    SignatureFormatter,
    check_symbol_collisions,
    is_c_identifier,
)
from bindtool.core.engine.type_mapper import HostTypeSystem, MappedType, TypeMapper

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MethodPlan:
    """メソッドの生成計画"""

    method: MethodDef
    params: tuple[MappedType, ...]
    returns: MappedType | None
    signature: Signature
    ownership: MethodOwnership


@dataclass(frozen=True)
class FieldPlan:
    """Structフィールドの生成計画"""

    field: FieldDef
    mapped: MappedType


@dataclass(frozen=True)
class TypePlan:
    """型の生成計画

    Attributes:
        typedef: 型定義
        methods: 有効メソッドの計画（宣言順）
        fields: Structフィールドの計画
        destructor: Opaqueのデストラクタ
        layout: Structの(サイズ, アラインメント)
    """

    typedef: TypeDef
    methods: tuple[MethodPlan, ...] = ()
    fields: tuple[FieldPlan, ...] = ()
    destructor: Signature | None = None
    layout: tuple[int, int] | None = None

    @property
    def type_id(self) -> TypeId:
        return self.typedef.id

    @property
    def signatures(self) -> list[Signature]:
        signatures = [m.signature for m in self.methods]
        if self.destructor is not None:
            signatures.append(self.destructor)
        return signatures

    @property
    def symbols(self) -> list[str]:
        return [s.symbol for s in self.signatures]

    def dependencies(self, by_value_only: bool = False) -> set[TypeId]:
        """この型が参照する他の型"""
        deps: set[TypeId] = set()
        for field_plan in self.fields:
            deps |= referenced_ids(field_plan.field.type, by_value_only)
        for method_plan in self.methods:
            for ref in method_refs(method_plan.method):
                deps |= referenced_ids(ref, by_value_only)
        deps.discard(self.typedef.id)
        return deps

    def field_dependencies(self) -> set[TypeId]:
        """型定義自体に必要な（値埋め込みの）依存"""
        deps: set[TypeId] = set()
        for field_plan in self.fields:
            deps |= referenced_ids(field_plan.field.type, by_value_only=True)
        deps.discard(self.typedef.id)
        return deps


class TypePlanner:
    """型単位の生成計画の作成

    Attributes:
        surface: 有効な型への参照解決
        pointer_width: ネイティブABIのポインタ幅
        recursive: 値埋め込みで再帰するStruct
        reserved_names: バックエンドのランタイムが使用する型名
    """

    def __init__(
        self,
        surface: EnabledSurface,
        pointer_width: int = 8,
        recursive: Iterable[TypeId] = (),
        reserved_names: Iterable[str] = (),
    ) -> None:
        self.surface = surface
        self.pointer_width = pointer_width
        self.recursive = frozenset(recursive)
        self.reserved_names = frozenset(reserved_names)

    def plan(self, typedef: TypeDef, host: HostTypeSystem) -> TypePlan:
        """生成計画を作成

        Raises:
            MethodErrors: 型・フィールド・メソッドで1つ以上の問題が見つかった場合
        """
        mapper = TypeMapper(self.surface, host)
        layout = LayoutCalculator(self.surface, mapper, self.pointer_width)
        formatter = SignatureFormatter(layout)
        tracker = OwnershipTracker(self.surface)
        errors: list[GenerationError] = []

        if not is_c_identifier(typedef.name):
            errors.append(NamingConflictError(f"type name '{typedef.name}' is not a valid C identifier"))
        elif typedef.name in self.reserved_names:
            errors.append(NamingConflictError(f"type name '{typedef.name}' is reserved by the runtime"))

        fields, struct_layout = self._plan_struct(typedef, mapper, layout, errors)
        self._check_enum(typedef, errors)

        methods = []
        for method in self.surface.methods_of(typedef.id):
            try:
                methods.append(self._plan_method(typedef, method, mapper, formatter, tracker))
            except GenerationError as exc:
                if exc.method is None:
                    exc.method = method.name
                errors.append(exc)

        destructor = formatter.destructor(typedef) if isinstance(typedef, OpaqueDef) else None
        signatures: list[tuple[str | None, Signature]] = [(m.method.name, m.signature) for m in methods]
        if destructor is not None:
            signatures.append((None, destructor))
        errors.extend(check_symbol_collisions(typedef, signatures))

        if errors:
            raise MethodErrors(errors)

        logger.debug(f"planned {typedef.id}: {len(methods)} method(s), {len(fields)} field(s)")
        return TypePlan(
            typedef=typedef,
            methods=tuple(methods),
            fields=tuple(fields),
            destructor=destructor,
            layout=struct_layout,
        )

    def _plan_struct(
        self,
        typedef: TypeDef,
        mapper: TypeMapper,
        layout: LayoutCalculator,
        errors: list[GenerationError],
    ) -> tuple[list[FieldPlan], tuple[int, int] | None]:
        if not isinstance(typedef, StructDef):
            return [], None
        if typedef.id in self.recursive:
            errors.append(UnsupportedTypeError(f"struct '{typedef.name}' contains itself by value"))
            return [], None
        if not typedef.fields:
            errors.append(UnsupportedTypeError(f"struct '{typedef.name}' has no fields"))
            return [], None

        fields = []
        for field_def in typedef.fields:
            try:
                fields.append(FieldPlan(field_def, mapper.map(field_def.type, "field")))
            except GenerationError as exc:
                exc.message = f"field '{field_def.name}': {exc.message}"
                errors.append(exc)
            if not is_c_identifier(field_def.name):
                errors.append(NamingConflictError(f"field name '{field_def.name}' is not a valid C identifier"))

        if len(fields) != len(typedef.fields):
            return fields, None
        try:
            return fields, layout.struct_layout(typedef.id)
        except GenerationError as exc:
            errors.append(exc)
            return fields, None

    @staticmethod
    def _check_enum(typedef: TypeDef, errors: list[GenerationError]) -> None:
        if not isinstance(typedef, EnumDef):
            return
        if not typedef.variants:
            errors.append(UnsupportedTypeError(f"enum '{typedef.name}' has no variants"))
        for variant in typedef.variants:
            if not is_c_identifier(variant.name):
                errors.append(NamingConflictError(f"enum variant '{variant.name}' is not a valid C identifier"))
            if not -(2**31) <= variant.value < 2**31:
                errors.append(UnsupportedTypeError(f"enum variant '{variant.name}' does not fit in 32 bits"))

    @staticmethod
    def _plan_method(
        owner: TypeDef,
        method: MethodDef,
        mapper: TypeMapper,
        formatter: SignatureFormatter,
        tracker: OwnershipTracker,
    ) -> MethodPlan:
        params = [mapper.map(p.type, "param") for p in method.params]
        returns = None if method.returns is None else mapper.map(method.returns, "return")
        signature = formatter.method(owner, method, params, returns)
        ownership = tracker.plan_method(owner, method)
        return MethodPlan(
            method=method,
            params=tuple(params),
            returns=returns,
            signature=signature,
            ownership=ownership,
        )


def count_declared(types: Iterable[TypeDef]) -> tuple[int, int]:
    """(型数, メソッド数)"""
    type_count = 0
    method_count = 0
    for typedef in types:
        type_count += 1
        method_count += len(declared_methods(typedef))
    return type_count, method_count


