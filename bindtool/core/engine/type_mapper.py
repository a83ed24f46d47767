"""Type Mapper: IR型参照→(ホスト型, ネイティブ表現)

各TypeRefを、バックエンドのホスト表面の型名と、C ABI上のネイティブ表現（スロット列と値型）に変換する。
ホスト型名はバックエンドのHostTypeSystemから、TypeId→型名の解決のみによって得る。
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Protocol

from typing_extensions import assert_never

from bindtool.core.base.errors import UnsupportedTypeError
from bindtool.core.base.ir import (
    EnumDef,
    EnumRef,
    FallibleRef,
    NullableRef,
    OpaqueDef,
    OpaqueRef,
    PrimitiveDef,
    PrimitiveKind,
    PrimitiveRef,
    SliceRef,
    StructDef,
    StructRef,
    TypeDef,
    TypeId,
    TypeRef,
    WriteableRef,
    kind_label,
)
from bindtool.core.engine.attr_filter import EnabledSurface

Position = Literal["param", "return", "field"]
CTypeKind = Literal["scalar", "text", "opaque", "struct", "enum", "runtime", "result"]
Presence = Literal["none", "null", "flag"]

C_PRIMITIVES: dict[str, str] = {
    "bool": "bool",
    "char": "uint32_t",
    "u8": "uint8_t",
    "i8": "int8_t",
    "u16": "uint16_t",
    "i16": "int16_t",
    "u32": "uint32_t",
    "i32": "int32_t",
    "u64": "uint64_t",
    "i64": "int64_t",
    "usize": "size_t",
    "isize": "ptrdiff_t",
    "f32": "float",
    "f64": "double",
}


@dataclass(frozen=True)
class CType:
    """C ABI上の型

    Attributes:
        name: C型名（typedef名を含む）
        kind: 種別
        pointer: ポインタかどうか
        const: constポインタかどうか
        primitive: スカラーの場合のプリミティブ種別
        type_id: IR型を指す場合のTypeId
    """

    name: str
    kind: CTypeKind
    pointer: bool = False
    const: bool = False
    primitive: PrimitiveKind | None = None
    type_id: TypeId | None = None

    def render(self) -> str:
        if not self.pointer:
            return self.name
        return f"{'const ' if self.const else ''}{self.name}*"

    def to_pointer(self, const: bool = False) -> CType:
        return CType(self.name, self.kind, True, const, self.primitive, self.type_id)


BOOL = CType("bool", "scalar", primitive="bool")
SIZE = CType("size_t", "scalar", primitive="usize")
BRIDGE_SLICE = CType("BridgeSlice", "runtime")
BRIDGE_STR_VIEW = CType("BridgeStrView", "runtime")
BRIDGE_WRITE = CType("BridgeWrite", "runtime", pointer=True)


def primitive_ctype(kind: PrimitiveKind) -> CType:
    return CType(C_PRIMITIVES[kind], "scalar", primitive=kind)


@dataclass(frozen=True)
class Slot:
    """1つのIRパラメータから生成されるCパラメータ（またはStructフィールド）

    Attributes:
        suffix: 名前の接尾辞（"", "_data", "_len", "_present"）
        ctype: C型
    """

    suffix: str
    ctype: CType


@dataclass(frozen=True)
class NativeRepr:
    """ネイティブ表現

    Attributes:
        slots: パラメータ・フィールドとして渡す場合のスロット列
        value: 戻り値として返す場合の単一のC型（Writeable/Fallibleの場合はNone）
        presence: Nullableの存在表現（"null": NULLポインタ, "flag": bool フラグ）
    """

    slots: tuple[Slot, ...]
    value: CType | None
    presence: Presence = "none"


@dataclass(frozen=True)
class MappedType:
    """マッピング結果

    Attributes:
        ref: 元のTypeRef
        host: ホスト表面の型名
        native: ネイティブ表現
        parts: 内包する型（Nullableは(inner,)、Fallibleは(ok, err)、unitはNone）
    """

    ref: TypeRef
    host: str
    native: NativeRepr
    parts: tuple[MappedType | None, ...] = ()


class HostTypeSystem(Protocol):
    """バックエンドが提供するホスト表面の型名"""

    def primitive(self, kind: PrimitiveKind, alias: PrimitiveDef | None) -> str: ...

    def opaque(self, typedef: OpaqueDef, ref: OpaqueRef) -> str: ...

    def struct(self, typedef: StructDef) -> str: ...

    def enum(self, typedef: EnumDef) -> str: ...

    def slice(self, ref: SliceRef, position: Position) -> str: ...

    def writeable(self, position: Position) -> str: ...

    def nullable(self, inner: str) -> str: ...

    def fallible(self, ok: str | None, err: str | None) -> str: ...


class TypeMapper:
    """TypeRef→MappedType変換

    Attributes:
        surface: 有効な型への参照解決
        host: ホスト型システム
    """

    def __init__(self, surface: EnabledSurface, host: HostTypeSystem) -> None:
        self.surface = surface
        self.host = host

    def map(self, ref: TypeRef, position: Position) -> MappedType:
        """TypeRefをマッピング

        Raises:
            UnresolvedTypeReferenceError: 未定義または無効化された型への参照
            UnsupportedTypeError: このバックエンドが実装しない組み合わせ
        """
        return self._map(ref, position, None)

    def _map(self, ref: TypeRef, position: Position, wrapper: str | None) -> MappedType:  # noqa: C901
        if isinstance(ref, PrimitiveRef):
            alias = None
            ctype = primitive_ctype(ref.kind)
            if ref.alias is not None:
                alias = self._resolve(ref.alias, PrimitiveDef)
                ctype = CType(alias.name, "scalar", primitive=alias.kind, type_id=alias.id)
            return self._single(ref, self.host.primitive(ctype.primitive or ref.kind, alias), ctype)

        elif isinstance(ref, OpaqueRef):
            opaque = self._resolve(ref.type_id, OpaqueDef)
            if position == "field" and ref.ownership == "owned":
                raise UnsupportedTypeError(f"struct field cannot own opaque '{opaque.name}'")
            ctype = CType(
                opaque.name,
                "opaque",
                pointer=True,
                const=ref.ownership == "borrowed" and not ref.mutable,
                type_id=opaque.id,
            )
            return self._single(ref, self.host.opaque(opaque, ref), ctype)

        elif isinstance(ref, StructRef):
            struct = self._resolve(ref.type_id, StructDef)
            ctype = CType(struct.name, "struct", type_id=struct.id)
            if ref.by_ref:
                if position == "return" or wrapper == "fallible":
                    raise UnsupportedTypeError(f"struct '{struct.name}' cannot be returned by reference")
                if position == "field":
                    raise UnsupportedTypeError(f"struct field cannot reference struct '{struct.name}'")
                ctype = ctype.to_pointer(const=True)
            return self._single(ref, self.host.struct(struct), ctype)

        elif isinstance(ref, EnumRef):
            enum = self._resolve(ref.type_id, EnumDef)
            return self._single(ref, self.host.enum(enum), CType(enum.name, "enum", type_id=enum.id))

        elif isinstance(ref, SliceRef):
            return self._map_slice(ref, position)

        elif isinstance(ref, WriteableRef):
            if position == "field":
                raise UnsupportedTypeError("struct field cannot be a writeable")
            if wrapper == "nullable":
                raise UnsupportedTypeError("Nullable<Writeable> is not supported")
            if wrapper == "fallible_err":
                raise UnsupportedTypeError("writeable cannot be a fallible error payload")
            native = NativeRepr(slots=(Slot("", BRIDGE_WRITE),), value=None)
            return MappedType(ref, self.host.writeable(position), native)

        elif isinstance(ref, NullableRef):
            return self._map_nullable(ref, position, wrapper)

        elif isinstance(ref, FallibleRef):
            if position != "return" or wrapper is not None:
                raise UnsupportedTypeError("Fallible is only supported as the top-level return type")
            ok = None if ref.ok is None else self._map(ref.ok, position, "fallible")
            err = None if ref.err is None else self._map(ref.err, position, "fallible_err")
            for payload in (ok, err):
                if payload is not None and payload.native.presence == "flag":
                    raise UnsupportedTypeError("nullable value payloads inside Fallible are not supported")
            host = self.host.fallible(ok.host if ok else None, err.host if err else None)
            return MappedType(ref, host, NativeRepr(slots=(), value=None), (ok, err))

        else:
            assert_never(ref)

    def _map_slice(self, ref: SliceRef, position: Position) -> MappedType:
        if position == "field":
            raise UnsupportedTypeError("struct field cannot be a slice")
        if position == "return" and ref.encoding == "strs":
            raise UnsupportedTypeError("slices of strings cannot be returned")

        if ref.encoding == "primitive":
            if ref.element is None:
                raise UnsupportedTypeError("primitive slice without element kind")
            data = primitive_ctype(ref.element).to_pointer(const=True)
        elif ref.encoding == "utf8":
            data = CType("char", "text", pointer=True, const=True)
        elif ref.encoding == "utf16":
            data = primitive_ctype("u16").to_pointer(const=True)
        elif ref.encoding == "strs":
            data = BRIDGE_STR_VIEW.to_pointer(const=True)
        else:
            assert_never(ref.encoding)

        native = NativeRepr(slots=(Slot("_data", data), Slot("_len", SIZE)), value=BRIDGE_SLICE)
        return MappedType(ref, self.host.slice(ref, position), native)

    def _map_nullable(self, ref: NullableRef, position: Position, wrapper: str | None) -> MappedType:
        if wrapper == "nullable" or isinstance(ref.inner, (NullableRef, FallibleRef, WriteableRef)):
            raise UnsupportedTypeError(f"Nullable<{type(ref.inner).__name__}> is not supported")

        inner = self._map(ref.inner, position, "nullable")
        host = self.host.nullable(inner.host)
        pointer_like = isinstance(ref.inner, (OpaqueRef, SliceRef)) or (
            isinstance(ref.inner, StructRef) and ref.inner.by_ref
        )
        if pointer_like:
            native = NativeRepr(slots=inner.native.slots, value=inner.native.value, presence="null")
        else:
            native = NativeRepr(
                slots=(*inner.native.slots, Slot("_present", BOOL)),
                value=inner.native.value,
                presence="flag",
            )
        return MappedType(ref, host, native, (inner,))

    def _single(self, ref: TypeRef, host: str, ctype: CType) -> MappedType:
        return MappedType(ref, host, NativeRepr(slots=(Slot("", ctype),), value=ctype))

    def _resolve(self, type_id: TypeId, expected: type) -> TypeDef:
        typedef = self.surface.resolve(type_id)
        if not isinstance(typedef, expected):
            raise UnsupportedTypeError(
                f"'{type_id}' is a {kind_label(typedef)} type but is referenced as {expected.__name__}"
            )
        return typedef
