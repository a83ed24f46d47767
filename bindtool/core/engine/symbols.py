"""Symbol & Signature Formatter

決定的なネイティブシンボル名とC ABIレベルの呼び出しシグネチャを計算する。

ABI規約:
    - メソッドシンボル: ``{OwnerTypeName}_{methodName}``（abi_nameで上書き可能）
    - デストラクタ: ``{TypeName}_destroy(T* self) -> void``
    - パラメータ順: self → 宣言順のパラメータ（スロット展開） → ``BridgeWrite* write`` → ``out``
    - レジスタ幅に収まる値は直接返す。それ以外は末尾の隠しoutパラメータに書き込み、関数はvoidを返す
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Literal

from typing_extensions import assert_never

from bindtool.core.base.errors import NamingConflictError, UnsupportedTypeError
from bindtool.core.base.ir import (
    FallibleRef,
    MethodDef,
    NullableRef,
    OpaqueDef,
    Param,
    SliceRef,
    StructDef,
    StructRef,
    TypeDef,
    TypeId,
    WriteableRef,
)
from bindtool.core.engine.attr_filter import EnabledSurface
from bindtool.core.engine.type_mapper import BRIDGE_SLICE, BRIDGE_WRITE, CType, MappedType, TypeMapper

_C_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
C_KEYWORDS = frozenset(
    """auto break case char const continue default do double else enum extern float for goto if inline int long
    register restrict return short signed sizeof static struct switch typedef union unsigned void volatile while
    _Bool _Complex _Imaginary bool true false NULL""".split()
)

_PRIMITIVE_SIZES = {
    "bool": 1,
    "char": 4,
    "u8": 1,
    "i8": 1,
    "u16": 2,
    "i16": 2,
    "u32": 4,
    "i32": 4,
    "u64": 8,
    "i64": 8,
    "f32": 4,
    "f64": 8,
}
ENUM_SIZE = 4

ParamRole = Literal["self", "arg", "write", "out"]
ReturnMode = Literal["void", "direct", "write", "out_value", "out_result", "out_slice"]


def is_c_identifier(name: str) -> bool:
    return bool(_C_IDENTIFIER.match(name)) and name not in C_KEYWORDS


def method_symbol(owner: TypeDef, method: MethodDef) -> str:
    """メソッドのエクスポートシンボル名"""
    return method.abi_name or f"{owner.name}_{method.name}"


def destructor_symbol(owner: OpaqueDef) -> str:
    """Opaque型のデストラクタシンボル名"""
    return f"{owner.name}_destroy"


# ============================================================
# C ABIレイアウト
# ============================================================


class LayoutCalculator:
    """C ABIのサイズ・アラインメント計算（自然アラインメント）

    Attributes:
        pointer_width: ポインタ幅（バイト）
    """

    def __init__(self, surface: EnabledSurface, mapper: TypeMapper, pointer_width: int = 8) -> None:
        self.surface = surface
        self.mapper = mapper
        self.pointer_width = pointer_width
        self._structs: dict[TypeId, tuple[int, int]] = {}
        self._in_progress: set[TypeId] = set()

    def size_align(self, ctype: CType) -> tuple[int, int]:
        """C型の(サイズ, アラインメント)"""
        if ctype.pointer:
            return self.pointer_width, self.pointer_width
        if ctype.kind == "scalar":
            if ctype.primitive in ("usize", "isize"):
                return self.pointer_width, self.pointer_width
            size = _PRIMITIVE_SIZES[ctype.primitive or "i32"]
            return size, size
        if ctype.kind == "text":
            return 1, 1
        if ctype.kind == "enum":
            return ENUM_SIZE, ENUM_SIZE
        if ctype.kind == "struct" and ctype.type_id is not None:
            return self.struct_layout(ctype.type_id)
        if ctype.name in (BRIDGE_SLICE.name, "BridgeStrView"):
            return 2 * self.pointer_width, self.pointer_width
        raise UnsupportedTypeError(f"no by-value layout for '{ctype.render()}'")

    def struct_layout(self, type_id: TypeId) -> tuple[int, int]:
        """Structの(サイズ, アラインメント)

        Raises:
            UnsupportedTypeError: 値埋め込みで再帰するStruct
        """
        if type_id in self._structs:
            return self._structs[type_id]
        if type_id in self._in_progress:
            raise UnsupportedTypeError(f"struct '{type_id}' contains itself by value")

        struct = self.surface.resolve(type_id)
        if not isinstance(struct, StructDef):
            raise UnsupportedTypeError(f"'{type_id}' is not a struct")

        self._in_progress.add(type_id)
        try:
            offset = 0
            align = 1
            for field_def in struct.fields:
                for slot in self.mapper.map(field_def.type, "field").native.slots:
                    slot_size, slot_align = self.size_align(slot.ctype)
                    offset = _round_up(offset, slot_align) + slot_size
                    align = max(align, slot_align)
            layout = (_round_up(offset, align), align)
        finally:
            self._in_progress.discard(type_id)

        self._structs[type_id] = layout
        return layout

    def fits_register(self, ctype: CType) -> bool:
        """レジスタ幅で直接返せるかどうか"""
        if ctype.kind == "runtime" and not ctype.pointer:
            return False
        return self.size_align(ctype)[0] <= self.pointer_width


def _round_up(value: int, align: int) -> int:
    return (value + align - 1) // align * align


# ============================================================
# シグネチャ
# ============================================================


@dataclass(frozen=True)
class CParam:
    """Cパラメータ

    Attributes:
        name: パラメータ名
        ctype: C型
        role: 役割（self, arg, write, out）
        source: 由来するIRパラメータ名（selfの場合は"self"）
        suffix: スロット接尾辞
    """

    name: str
    ctype: CType
    role: ParamRole
    source: str | None = None
    suffix: str = ""


@dataclass(frozen=True)
class ResultStruct:
    """Fallible/Nullable値の戻り値用構造体 ``{ union { ok; err; }; bool is_ok; }``"""

    name: str
    ok: CType | None
    err: CType | None


@dataclass(frozen=True)
class Signature:
    """C ABIシグネチャ

    Attributes:
        symbol: エクスポートシンボル名
        params: Cパラメータ
        returns: 直接返す型（Noneはvoid）
        mode: 戻り値の受け渡し方法
        result: 戻り値用構造体（mode == "out_result"の場合）
    """

    symbol: str
    params: tuple[CParam, ...]
    returns: CType | None = None
    mode: ReturnMode = "void"
    result: ResultStruct | None = None

    def prototype(self) -> str:
        params = ", ".join(f"{p.ctype.render()} {p.name}" for p in self.params) or "void"
        returns = self.returns.render() if self.returns is not None else "void"
        return f"{returns} {self.symbol}({params});"

    @property
    def writes(self) -> bool:
        return any(p.role == "write" for p in self.params)


class SignatureFormatter:
    """メソッド・デストラクタのシグネチャ生成"""

    def __init__(self, layout: LayoutCalculator) -> None:
        self.layout = layout

    def destructor(self, owner: OpaqueDef) -> Signature:
        self_type = CType(owner.name, "opaque", pointer=True, type_id=owner.id)
        return Signature(
            symbol=destructor_symbol(owner),
            params=(CParam("self", self_type, "self", "self"),),
        )

    def method(
        self,
        owner: TypeDef,
        method: MethodDef,
        params: list[MappedType],
        returns: MappedType | None,
    ) -> Signature:
        """メソッドのシグネチャ

        Raises:
            NamingConflictError: シンボル・パラメータ名が不正または衝突
            UnsupportedTypeError: 戻り値の受け渡しができない型
        """
        symbol = method_symbol(owner, method)
        if not is_c_identifier(symbol):
            raise NamingConflictError(f"symbol '{symbol}' is not a valid C identifier", method=method.name)

        c_params: list[CParam] = []
        self_param = self._self_param(owner, method)
        if self_param is not None:
            c_params.append(self_param)
        for param, mapped in zip(method.params, params):
            c_params.extend(self._expand(param, mapped))

        mode, direct, out, result = self._return_convention(symbol, returns)
        if returns is not None and _carries_writeable(returns):
            c_params.append(CParam("write", BRIDGE_WRITE, "write"))
        if out is not None:
            c_params.append(CParam("out", out, "out"))

        self._check_param_names(method, c_params)
        return Signature(symbol=symbol, params=tuple(c_params), returns=direct, mode=mode, result=result)

    def _self_param(self, owner: TypeDef, method: MethodDef) -> CParam | None:
        if method.self_param is None:
            return None
        if isinstance(owner, OpaqueDef):
            const = method.self_param.kind == "borrowed" and not method.self_param.mutable
            ctype = CType(owner.name, "opaque", pointer=True, const=const, type_id=owner.id)
        elif isinstance(owner, StructDef):
            ctype = CType(owner.name, "struct", type_id=owner.id)
        else:
            raise UnsupportedTypeError(f"{owner.name} cannot declare instance methods", method=method.name)
        return CParam("self", ctype, "self", "self")

    @staticmethod
    def _expand(param: Param, mapped: MappedType) -> list[CParam]:
        return [
            CParam(f"{param.name}{slot.suffix}", slot.ctype, "arg", param.name, slot.suffix)
            for slot in mapped.native.slots
        ]

    def _return_convention(
        self, symbol: str, returns: MappedType | None
    ) -> tuple[ReturnMode, CType | None, CType | None, ResultStruct | None]:
        """(mode, 直接返す型, outパラメータ型, 戻り値用構造体)"""
        if returns is None:
            return "void", None, None, None

        ref = returns.ref
        if isinstance(ref, WriteableRef):
            return "write", None, None, None

        if isinstance(ref, FallibleRef):
            ok, err = returns.parts
            result = ResultStruct(f"{symbol}_result", _payload(ok), _payload(err))
            return "out_result", None, CType(result.name, "result", pointer=True), result

        if isinstance(ref, NullableRef) and returns.native.presence == "flag":
            result = ResultStruct(f"{symbol}_result", returns.native.value, None)
            return "out_result", None, CType(result.name, "result", pointer=True), result

        value = returns.native.value
        if value is None:
            raise UnsupportedTypeError(f"cannot return {type(ref).__name__}")
        if value == BRIDGE_SLICE or isinstance(ref, SliceRef):
            return "out_slice", None, BRIDGE_SLICE.to_pointer(), None
        if isinstance(ref, StructRef) and not self.layout.fits_register(value):
            return "out_value", None, value.to_pointer(), None
        return "direct", value, None, None

    @staticmethod
    def _check_param_names(method: MethodDef, params: list[CParam]) -> None:
        seen: set[str] = set()
        for param in params:
            if not is_c_identifier(param.name):
                raise NamingConflictError(
                    f"parameter '{param.name}' is not a valid C identifier", method=method.name
                )
            if param.name in seen:
                raise NamingConflictError(f"parameter name '{param.name}' is used twice", method=method.name)
            seen.add(param.name)


def _payload(mapped: MappedType | None) -> CType | None:
    if mapped is None or isinstance(mapped.ref, WriteableRef):
        return None
    return mapped.native.value


def _carries_writeable(returns: MappedType) -> bool:
    ref = returns.ref
    if isinstance(ref, WriteableRef):
        return True
    if isinstance(ref, FallibleRef):
        return isinstance(ref.ok, WriteableRef)
    return False


def check_symbol_collisions(owner: TypeDef, signatures: list[tuple[str | None, Signature]]) -> list[NamingConflictError]:
    """1つの型内のシンボル衝突（デストラクタとの衝突を含む）

    Args:
        owner: 型定義
        signatures: (メソッド名 または None（デストラクタ）, シグネチャ)

    Returns:
        衝突ごとのNamingConflictError
    """
    errors = []
    owners: dict[str, str] = {}
    for method_name, signature in signatures:
        label = method_name or "destructor"
        names = [signature.symbol]
        if signature.result is not None:
            names.append(signature.result.name)
        for name in names:
            if name in owners:
                errors.append(
                    NamingConflictError(
                        f"symbol '{name}' of {label} collides with {owners[name]} in {owner.name}",
                        method=method_name,
                    )
                )
            else:
                owners[name] = label
    return errors


def render_mode(mode: ReturnMode) -> str:
    """戻り値受け渡し方法の表示名"""
    if mode == "void":
        return "void"
    elif mode == "direct":
        return "direct"
    elif mode == "write":
        return "writeable sink"
    elif mode == "out_value":
        return "out pointer"
    elif mode == "out_result":
        return "result struct"
    elif mode == "out_slice":
        return "slice view"
    else:
        assert_never(mode)
