"""Type Mapperの単体テスト"""

import pytest

from bindtool.backends.c_header import CHostTypes
from bindtool.backends.py_ctypes import PyHostTypes
from bindtool.core.base.errors import UnresolvedTypeReferenceError, UnsupportedTypeError
from bindtool.core.base.ir import (
    EnumRef,
    FallibleRef,
    NullableRef,
    OpaqueRef,
    PrimitiveRef,
    SliceRef,
    StructRef,
    WriteableRef,
)
from bindtool.core.engine.attr_filter import EnabledSurface, FilterContext, filter_registry
from bindtool.core.engine.type_mapper import BRIDGE_SLICE, TypeMapper


@pytest.fixture
def surface(geometry_registry) -> EnabledSurface:
    ctx = FilterContext(backend="py", known_backends=frozenset({"c", "py"}))
    return EnabledSurface(geometry_registry, filter_registry(geometry_registry, ctx))


@pytest.fixture
def mapper(surface) -> TypeMapper:
    return TypeMapper(surface, CHostTypes())


def slot_decls(mapped) -> list[str]:
    return [f"{slot.ctype.render()} x{slot.suffix}" for slot in mapped.native.slots]


@pytest.mark.parametrize(
    ("kind", "c_type"),
    [("i32", "int32_t"), ("u8", "uint8_t"), ("char", "uint32_t"), ("usize", "size_t"), ("f64", "double")],
)
def test_primitives(mapper, kind, c_type):
    mapped = mapper.map(PrimitiveRef(kind), "param")

    assert slot_decls(mapped) == [f"{c_type} x"]
    assert mapped.native.value.render() == c_type


def test_named_primitive_uses_typedef(mapper):
    mapped = mapper.map(PrimitiveRef("f64", alias="Meters"), "return")

    assert mapped.host == "Meters"
    assert mapped.native.value.render() == "Meters"
    assert mapped.native.value.primitive == "f64"


def test_opaque_constness(mapper):
    """借用（不変）はconst T*、所有・可変借用はT*"""
    borrowed = mapper.map(OpaqueRef("Canvas"), "param")
    mutable = mapper.map(OpaqueRef("Canvas", mutable=True), "param")
    owned = mapper.map(OpaqueRef("Canvas", ownership="owned"), "return")

    assert slot_decls(borrowed) == ["const Canvas* x"]
    assert slot_decls(mutable) == ["Canvas* x"]
    assert owned.native.value.render() == "Canvas*"


def test_struct_and_enum(mapper):
    assert slot_decls(mapper.map(StructRef("Rect"), "param")) == ["Rect x"]
    assert slot_decls(mapper.map(StructRef("Rect", by_ref=True), "param")) == ["const Rect* x"]
    assert slot_decls(mapper.map(EnumRef("Color"), "param")) == ["Color x"]


@pytest.mark.parametrize(
    ("ref", "data"),
    [
        (SliceRef("primitive", "u16"), "const uint16_t* x_data"),
        (SliceRef("utf8"), "const char* x_data"),
        (SliceRef("utf16"), "const uint16_t* x_data"),
        (SliceRef("strs"), "const BridgeStrView* x_data"),
    ],
)
def test_slice_params_expand_to_data_and_len(mapper, ref, data):
    """Sliceは(data, len)の2スロット"""
    assert slot_decls(mapper.map(ref, "param")) == [data, "size_t x_len"]


def test_slice_return_is_bridge_slice(mapper):
    mapped = mapper.map(SliceRef("utf8"), "return")

    assert mapped.native.value == BRIDGE_SLICE


def test_writeable(mapper):
    mapped = mapper.map(WriteableRef(), "param")

    assert slot_decls(mapped) == ["BridgeWrite* x"]
    assert mapped.native.value is None


def test_nullable_pointer_like_uses_null(mapper):
    """Nullable<Opaque>/Nullable<Slice>はNULLで不在を表す"""
    opaque = mapper.map(NullableRef(OpaqueRef("Canvas")), "param")
    text = mapper.map(NullableRef(SliceRef("utf8")), "param")

    assert opaque.native.presence == "null"
    assert slot_decls(opaque) == ["const Canvas* x"]
    assert text.native.presence == "null"
    assert slot_decls(text) == ["const char* x_data", "size_t x_len"]


def test_nullable_value_adds_present_flag(mapper):
    """Nullable<値型>は_presentフラグを追加"""
    mapped = mapper.map(NullableRef(PrimitiveRef("i32")), "param")

    assert mapped.native.presence == "flag"
    assert slot_decls(mapped) == ["int32_t x", "bool x_present"]


def test_fallible_parts(mapper):
    mapped = mapper.map(FallibleRef(ok=OpaqueRef("Canvas", ownership="owned"), err=EnumRef("ErrorCode")), "return")

    ok, err = mapped.parts
    assert ok.native.value.render() == "Canvas*"
    assert err.native.value.render() == "ErrorCode"
    assert mapped.native.slots == ()


def test_unit_fallible(mapper):
    mapped = mapper.map(FallibleRef(), "return")

    assert mapped.parts == (None, None)


@pytest.mark.parametrize(
    ("ref", "position", "message"),
    [
        (FallibleRef(ok=PrimitiveRef("i32")), "param", "top-level return"),
        (NullableRef(FallibleRef()), "return", "Nullable<FallibleRef>"),
        (NullableRef(NullableRef(PrimitiveRef("i32"))), "param", "Nullable<NullableRef>"),
        (NullableRef(WriteableRef()), "param", "Nullable<WriteableRef>"),
        (FallibleRef(ok=PrimitiveRef("i32"), err=WriteableRef()), "return", "error payload"),
        (FallibleRef(ok=FallibleRef()), "return", "top-level return"),
        (FallibleRef(ok=NullableRef(PrimitiveRef("i32"))), "return", "inside Fallible"),
        (StructRef("Rect", by_ref=True), "return", "by reference"),
        (OpaqueRef("Canvas", ownership="owned"), "field", "cannot own"),
        (SliceRef("utf8"), "field", "slice"),
        (WriteableRef(), "field", "writeable"),
        (SliceRef("strs"), "return", "cannot be returned"),
    ],
)
def test_unsupported_combinations(mapper, ref, position, message):
    with pytest.raises(UnsupportedTypeError, match=message):
        mapper.map(ref, position)


def test_kind_mismatch_is_unsupported(mapper):
    """参照先の種別が異なる場合はUnsupportedType"""
    with pytest.raises(UnsupportedTypeError, match="'Point' is a struct type"):
        mapper.map(OpaqueRef("Point"), "param")


def test_disabled_reference_is_unresolved(mapper):
    with pytest.raises(UnresolvedTypeReferenceError):
        mapper.map(OpaqueRef("GpuSurface"), "param")


def test_python_host_names(surface, geometry_registry):
    """Pythonのホスト型名は他モジュールの型を修飾する"""
    canvas = geometry_registry.resolve("Canvas")
    mapper = TypeMapper(surface, PyHostTypes(canvas))

    assert mapper.map(OpaqueRef("Canvas"), "param").host == "Canvas"
    assert mapper.map(StructRef("Rect"), "param").host == "_rect.Rect"
    assert mapper.map(PrimitiveRef("f64", alias="Meters"), "return").host == "_meters.Meters"
    assert mapper.map(NullableRef(StructRef("Point")), "return").host == "_point.Point | None"
    assert mapper.map(SliceRef("primitive", "i32"), "param").host == "Sequence[int]"
    assert mapper.map(SliceRef("primitive", "i32"), "return").host == "list[int]"
    assert mapper.map(SliceRef("primitive", "u8"), "param").host == "bytes"
    assert mapper.map(SliceRef("utf16"), "return").host == "str"
    assert mapper.map(WriteableRef(), "return").host == "str"
    assert mapper.map(FallibleRef(err=EnumRef("ErrorCode")), "return").host == "None"
