"""中間表現（IR）データ構造定義

ネイティブライブラリの公開面を言語非依存に記述するIR。
Loader→Registry→Filter→Mapper/Formatter/Ownership→Backendの各段階で読み取り専用として使用される。
全てのIR値はfrozenなdataclass（不変・ハッシュ可能）。
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, NewType, Union, get_args

TypeId = NewType("TypeId", str)

PrimitiveKind = Literal[
    "bool",
    "char",
    "u8",
    "i8",
    "u16",
    "i16",
    "u32",
    "i32",
    "u64",
    "i64",
    "usize",
    "isize",
    "f32",
    "f64",
]
PRIMITIVE_KINDS: tuple[str, ...] = get_args(PrimitiveKind)

Ownership = Literal["owned", "borrowed"]
SliceEncoding = Literal["primitive", "utf8", "utf16", "strs"]
SLICE_ENCODINGS: tuple[str, ...] = get_args(SliceEncoding)
SelfKind = Literal["value", "borrowed"]


# ============================================================
# 型参照（メソッドのパラメータ・戻り値・フィールドに現れる型）
# ============================================================


@dataclass(frozen=True)
class PrimitiveRef:
    """プリミティブ型参照

    Attributes:
        kind: プリミティブ種別
        alias: Primitive TypeDefを経由する場合のTypeId（名前付きプリミティブ）
    """

    kind: PrimitiveKind
    alias: TypeId | None = None


@dataclass(frozen=True)
class OpaqueRef:
    """Opaque型参照（ポインタハンドル）

    Attributes:
        type_id: 参照先のOpaque TypeDef
        ownership: "owned"（所有権移動）または "borrowed"（呼び出し中のみ有効な借用）
        mutable: 可変借用かどうか
    """

    type_id: TypeId
    ownership: Ownership = "borrowed"
    mutable: bool = False


@dataclass(frozen=True)
class StructRef:
    """Struct型参照

    Attributes:
        type_id: 参照先のStruct TypeDef
        by_ref: 参照渡し（const T*）かどうか
    """

    type_id: TypeId
    by_ref: bool = False


@dataclass(frozen=True)
class EnumRef:
    """Enum型参照"""

    type_id: TypeId


@dataclass(frozen=True)
class SliceRef:
    """Slice型参照（ポインタ+長さ）

    Attributes:
        encoding: 要素エンコーディング
        element: encodingが"primitive"の場合の要素型
    """

    encoding: SliceEncoding
    element: PrimitiveKind | None = None


@dataclass(frozen=True)
class WriteableRef:
    """Writeable（呼び出し側が確保する伸長可能な出力バッファ）"""


@dataclass(frozen=True)
class NullableRef:
    """Nullable<T>"""

    inner: TypeRef


@dataclass(frozen=True)
class FallibleRef:
    """Fallible<Success, Error>（戻り値専用）

    Attributes:
        ok: 成功時のペイロード型（Noneはunit）
        err: 失敗時のペイロード型（Noneはunit）
    """

    ok: TypeRef | None = None
    err: TypeRef | None = None


TypeRef = Union[
    PrimitiveRef,
    OpaqueRef,
    StructRef,
    EnumRef,
    SliceRef,
    WriteableRef,
    NullableRef,
    FallibleRef,
]


# ============================================================
# 属性（解決済みの有効/無効判定）
# ============================================================


@dataclass(frozen=True)
class AttrOutcome:
    """解決済み属性の結果

    backendが一致し、featuresが全て有効な場合にこの結果が適用される。

    Attributes:
        backend: バックエンドID、または全バックエンドを表す "*"
        features: 適用に必要なフィーチャー名
        enabled: 適用時の有効/無効
    """

    backend: str = "*"
    features: tuple[str, ...] = ()
    enabled: bool = True


# ============================================================
# メソッド・フィールド
# ============================================================


@dataclass(frozen=True)
class SelfParam:
    """selfパラメータ"""

    kind: SelfKind = "borrowed"
    mutable: bool = False


@dataclass(frozen=True)
class Param:
    """メソッドパラメータ"""

    name: str
    type: TypeRef
    docs: str = ""


@dataclass(frozen=True)
class MethodDef:
    """メソッド定義

    Attributes:
        name: メソッド名
        params: パラメータ（宣言順）
        returns: 戻り値型（Noneはvoid）
        self_param: selfパラメータ（Noneはstaticメソッド）
        attrs: 解決済み属性
        docs: ドキュメント
        abi_name: エクスポートシンボル名の明示的な上書き
        lifetime_edges: 借用戻り値の借用元（"self" またはパラメータ名）。空の場合は推論
    """

    name: str
    params: tuple[Param, ...] = ()
    returns: TypeRef | None = None
    self_param: SelfParam | None = None
    attrs: tuple[AttrOutcome, ...] = ()
    docs: str = ""
    abi_name: str | None = None
    lifetime_edges: tuple[str, ...] = ()

    @property
    def is_static(self) -> bool:
        return self.self_param is None


@dataclass(frozen=True)
class FieldDef:
    """Structフィールド定義"""

    name: str
    type: TypeRef
    docs: str = ""


@dataclass(frozen=True)
class EnumVariant:
    """Enumメンバー定義（ordinalはネイティブ側と同一）"""

    name: str
    value: int
    docs: str = ""


# ============================================================
# 型定義
# ============================================================


@dataclass(frozen=True)
class OpaqueDef:
    """Opaque型定義（表現は隠蔽され、ポインタハンドルとしてのみ境界を越える）"""

    id: TypeId
    name: str
    methods: tuple[MethodDef, ...] = ()
    attrs: tuple[AttrOutcome, ...] = ()
    docs: str = ""


@dataclass(frozen=True)
class StructDef:
    """Struct型定義（値としてコピーされる）"""

    id: TypeId
    name: str
    fields: tuple[FieldDef, ...] = ()
    methods: tuple[MethodDef, ...] = ()
    attrs: tuple[AttrOutcome, ...] = ()
    docs: str = ""


@dataclass(frozen=True)
class EnumDef:
    """Enum型定義"""

    id: TypeId
    name: str
    variants: tuple[EnumVariant, ...] = ()
    attrs: tuple[AttrOutcome, ...] = ()
    docs: str = ""


@dataclass(frozen=True)
class PrimitiveDef:
    """名前付きプリミティブ型定義（C側ではtypedef）"""

    id: TypeId
    name: str
    kind: PrimitiveKind = "i32"
    attrs: tuple[AttrOutcome, ...] = ()
    docs: str = ""


TypeDef = Union[OpaqueDef, StructDef, EnumDef, PrimitiveDef]


def declared_methods(typedef: TypeDef) -> tuple[MethodDef, ...]:
    """TypeDefが宣言するメソッド（Opaque/Structのみ）"""
    if isinstance(typedef, (OpaqueDef, StructDef)):
        return typedef.methods
    return ()


def kind_label(typedef: TypeDef) -> str:
    """TypeDef種別の表示名"""
    if isinstance(typedef, OpaqueDef):
        return "opaque"
    if isinstance(typedef, StructDef):
        return "struct"
    if isinstance(typedef, EnumDef):
        return "enum"
    return "primitive"


@dataclass(frozen=True)
class IRMeta:
    """IRドキュメントのメタデータ"""

    name: str = "unknown"
    description: str = ""
    version: str = "1"
