"""bindtool.core.base: IR（中間表現）とエラー定義

純粋なデータ定義（最下層）
"""

from .errors import (
    AttributeResolutionError,
    Diagnostic,
    ErrorKind,
    GenerationError,
    LifetimeViolationError,
    LoweringError,
    NamingConflictError,
    SkippedItem,
    UnknownTypeId,
    UnresolvedTypeReferenceError,
    UnsupportedTypeError,
)
from .ir import (
    AttrOutcome,
    EnumDef,
    EnumRef,
    EnumVariant,
    FallibleRef,
    FieldDef,
    IRMeta,
    MethodDef,
    NullableRef,
    OpaqueDef,
    OpaqueRef,
    Param,
    PrimitiveDef,
    PrimitiveRef,
    SelfParam,
    SliceRef,
    StructDef,
    StructRef,
    TypeDef,
    TypeId,
    TypeRef,
    WriteableRef,
)

__all__ = [
    # IR data classes
    "AttrOutcome",
    "EnumDef",
    "EnumRef",
    "EnumVariant",
    "FallibleRef",
    "FieldDef",
    "IRMeta",
    "MethodDef",
    "NullableRef",
    "OpaqueDef",
    "OpaqueRef",
    "Param",
    "PrimitiveDef",
    "PrimitiveRef",
    "SelfParam",
    "SliceRef",
    "StructDef",
    "StructRef",
    "TypeDef",
    "TypeId",
    "TypeRef",
    "WriteableRef",
    # Errors
    "AttributeResolutionError",
    "Diagnostic",
    "ErrorKind",
    "GenerationError",
    "LifetimeViolationError",
    "LoweringError",
    "NamingConflictError",
    "SkippedItem",
    "UnknownTypeId",
    "UnresolvedTypeReferenceError",
    "UnsupportedTypeError",
]
