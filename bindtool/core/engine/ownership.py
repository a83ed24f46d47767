"""Ownership/Lifetime Tracker

全てのOpaqueハンドルと境界を越える参照について、コピー・借用・所有権移動・破棄の方針を決定する。

- 所有Opaqueの戻り値: ホストラッパーが唯一の所有者となり、ファイナライズ時に一度だけ ``_destroy`` を呼ぶ
- 借用Opaqueの戻り値: 借用元の入力をkeepaliveとして保持し、借用元より長く生存させない
- Struct/Enum/Primitiveの値: 常にコピー（所有権の義務なし）
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from typing import Literal

from typing_extensions import assert_never

from bindtool.core.base.errors import LifetimeViolationError
from bindtool.core.base.ir import (
    EnumRef,
    FallibleRef,
    MethodDef,
    NullableRef,
    OpaqueDef,
    OpaqueRef,
    PrimitiveRef,
    SliceRef,
    StructDef,
    StructRef,
    TypeDef,
    TypeId,
    TypeRef,
    WriteableRef,
)
from bindtool.core.engine.attr_filter import EnabledSurface
from bindtool.core.engine.symbols import destructor_symbol

Transfer = Literal["copy", "borrow", "move_in", "adopt", "borrow_return"]


@dataclass(frozen=True)
class OwnershipPlan:
    """1つの値の所有権方針

    Attributes:
        transfer: 受け渡し方法
        destructor: adoptの場合に呼び出すデストラクタシンボル
        keepalive: borrow_returnの場合に生存させる入力（"self" またはパラメータ名）
    """

    transfer: Transfer
    destructor: str | None = None
    keepalive: tuple[str, ...] = ()


COPY = OwnershipPlan("copy")
BORROW = OwnershipPlan("borrow")
MOVE_IN = OwnershipPlan("move_in")


@dataclass(frozen=True)
class MethodOwnership:
    """メソッド単位の所有権方針

    Attributes:
        self_plan: selfの方針（staticの場合はNone）
        params: パラメータ名→方針
        returns: 戻り値（Fallibleの場合は成功値）の方針
        error: Fallibleのエラー値の方針
    """

    self_plan: OwnershipPlan | None
    params: dict[str, OwnershipPlan]
    returns: OwnershipPlan | None
    error: OwnershipPlan | None = None


class OwnershipTracker:
    """所有権方針の決定"""

    def __init__(self, surface: EnabledSurface) -> None:
        self.surface = surface

    def plan_method(self, owner: TypeDef, method: MethodDef) -> MethodOwnership:
        """メソッドの所有権方針

        Raises:
            LifetimeViolationError: 借用戻り値の借用元が存在しない、または不正
        """
        self_plan = None
        if method.self_param is not None:
            if isinstance(owner, OpaqueDef):
                self_plan = MOVE_IN if method.self_param.kind == "value" else BORROW
            else:
                self_plan = COPY

        params = {p.name: self.plan_param(p.type) for p in method.params}

        returns = None
        error = None
        if isinstance(method.returns, FallibleRef):
            returns = self._plan_return(owner, method, method.returns.ok)
            error = self._plan_return(owner, method, method.returns.err)
        elif method.returns is not None:
            returns = self._plan_return(owner, method, method.returns)

        return MethodOwnership(self_plan=self_plan, params=params, returns=returns, error=error)

    def plan_param(self, ref: TypeRef) -> OwnershipPlan:
        """パラメータの方針"""
        if isinstance(ref, OpaqueRef):
            return MOVE_IN if ref.ownership == "owned" else BORROW
        elif isinstance(ref, StructRef):
            return BORROW if ref.by_ref else COPY
        elif isinstance(ref, (PrimitiveRef, EnumRef)):
            return COPY
        elif isinstance(ref, (SliceRef, WriteableRef)):
            return BORROW
        elif isinstance(ref, NullableRef):
            return self.plan_param(ref.inner)
        elif isinstance(ref, FallibleRef):
            return COPY
        else:
            assert_never(ref)

    def _plan_return(self, owner: TypeDef, method: MethodDef, ref: TypeRef | None) -> OwnershipPlan | None:
        if ref is None:
            return None
        if isinstance(ref, NullableRef):
            return self._plan_return(owner, method, ref.inner)
        if isinstance(ref, OpaqueRef):
            if ref.ownership == "owned":
                opaque = self.surface.resolve(ref.type_id)
                assert isinstance(opaque, OpaqueDef)
                return OwnershipPlan("adopt", destructor=destructor_symbol(opaque))
            return OwnershipPlan("borrow_return", keepalive=self._borrow_owners(owner, method))
        if isinstance(ref, StructRef) and self._borrows_opaque(ref.type_id, set()):
            return OwnershipPlan("borrow_return", keepalive=self._borrow_owners(owner, method))
        return COPY

    def _borrows_opaque(self, type_id: TypeId, seen: set[TypeId]) -> bool:
        """Structが（再帰的に）借用Opaqueフィールドを持つかどうか"""
        if type_id in seen:
            return False
        seen.add(type_id)
        struct = self.surface.resolve(type_id)
        if not isinstance(struct, StructDef):
            return False
        for field_def in struct.fields:
            ref = field_def.type.inner if isinstance(field_def.type, NullableRef) else field_def.type
            if isinstance(ref, OpaqueRef) and ref.ownership == "borrowed":
                return True
            if isinstance(ref, StructRef) and self._borrows_opaque(ref.type_id, seen):
                return True
        return False

    def _borrow_owners(self, owner: TypeDef, method: MethodDef) -> tuple[str, ...]:
        """借用戻り値の借用元

        lifetime_edgesが指定されていればそれを検証し、なければ借用self・借用Opaqueパラメータから推論する。
        """
        inputs = [p.name for p in method.params]
        if method.self_param is not None:
            inputs.insert(0, "self")

        if method.lifetime_edges:
            for edge in method.lifetime_edges:
                if edge not in inputs:
                    raise LifetimeViolationError(
                        f"lifetime edge '{edge}' does not name an input of {method.name}", method=method.name
                    )
            return tuple(method.lifetime_edges)

        owners: list[str] = []
        if (
            method.self_param is not None
            and method.self_param.kind == "borrowed"
            and isinstance(owner, OpaqueDef)
        ):
            owners.append("self")
        for param in method.params:
            ref = param.type.inner if isinstance(param.type, NullableRef) else param.type
            if isinstance(ref, OpaqueRef) and ref.ownership == "borrowed":
                owners.append(param.name)

        if not owners:
            raise LifetimeViolationError(
                f"borrowed return of {method.name} has no borrowed input to borrow from", method=method.name
            )
        return tuple(owners)


def destructors(types: Iterable[TypeDef]) -> Iterator[tuple[TypeId, str]]:
    """有効なOpaque型ごとに1つのデストラクタシンボル"""
    for typedef in types:
        if isinstance(typedef, OpaqueDef):
            yield typedef.id, destructor_symbol(typedef)
