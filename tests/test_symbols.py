"""Symbol & Signature Formatter・レイアウト計算の単体テスト"""

import pytest

from bindtool.backends.c_header import CHostTypes
from bindtool.core.base.errors import NamingConflictError
from bindtool.core.base.ir import MethodDef, OpaqueDef, TypeId
from bindtool.core.engine.attr_filter import EnabledSurface, FilterContext, filter_registry
from bindtool.core.engine.symbols import (
    LayoutCalculator,
    check_symbol_collisions,
    destructor_symbol,
    is_c_identifier,
    method_symbol,
    render_mode,
)
from bindtool.core.engine.type_mapper import CType, TypeMapper
from helpers import diagnostics_of, registry_of, run


def signatures_by_method(result, type_id: str) -> dict:
    (unit,) = [u for u in result.units if u.type_id == type_id]
    return {m.method.name: m.signature for m in unit.plan.methods}


@pytest.fixture
def layout(geometry_registry):
    ctx = FilterContext(backend="c", known_backends=frozenset({"c", "py"}))
    surface = EnabledSurface(geometry_registry, filter_registry(geometry_registry, ctx))
    return LayoutCalculator(surface, TypeMapper(surface, CHostTypes()), pointer_width=8)


def test_symbol_names():
    canvas = OpaqueDef(id=TypeId("Canvas"), name="Canvas")

    assert method_symbol(canvas, MethodDef(name="draw")) == "Canvas_draw"
    assert method_symbol(canvas, MethodDef(name="draw", abi_name="canvas_draw_v2")) == "canvas_draw_v2"
    assert destructor_symbol(canvas) == "Canvas_destroy"


def test_c_identifiers():
    assert is_c_identifier("Canvas_new")
    assert not is_c_identifier("2d")
    assert not is_c_identifier("has-dash")
    assert not is_c_identifier("register")


def test_struct_layouts(layout):
    """自然アラインメントでのサイズ計算"""
    assert layout.struct_layout(TypeId("Point")) == (8, 4)
    assert layout.struct_layout(TypeId("Rect")) == (20, 4)


def test_layout_padding_and_pointer_width():
    registry = registry_of(
        {
            "id": "Mixed",
            "kind": "struct",
            "fields": [{"name": "flag", "type": "bool"}, {"name": "count", "type": "u64"}, {"name": "tail", "type": "u8"}],
        },
        {"id": "Sized", "kind": "struct", "fields": [{"name": "n", "type": "usize"}]},
    )
    ctx = FilterContext(backend="c", known_backends=frozenset({"c"}))
    surface = EnabledSurface(registry, filter_registry(registry, ctx))
    mapper = TypeMapper(surface, CHostTypes())

    assert LayoutCalculator(surface, mapper, 8).struct_layout(TypeId("Mixed")) == (24, 8)
    assert LayoutCalculator(surface, mapper, 8).struct_layout(TypeId("Sized")) == (8, 8)
    assert LayoutCalculator(surface, mapper, 4).struct_layout(TypeId("Sized")) == (4, 4)


def test_fits_register(layout):
    assert layout.fits_register(CType("Point", "struct", type_id=TypeId("Point")))
    assert not layout.fits_register(CType("Rect", "struct", type_id=TypeId("Rect")))
    assert layout.fits_register(CType("int64_t", "scalar", primitive="i64"))


def test_return_conventions(geometry_registry):
    """戻り値の受け渡し方法"""
    signatures = signatures_by_method(run(geometry_registry, "c"), "Canvas")

    assert signatures["new"].mode == "direct"
    assert signatures["area"].mode == "direct"
    assert signatures["draw"].mode == "void"
    assert signatures["bounds"].mode == "out_value"
    assert signatures["describe"].mode == "write"
    assert signatures["title"].mode == "out_slice"
    assert signatures["find"].mode == "out_result"
    assert signatures["parse"].mode == "out_result"
    assert signatures["parent"].mode == "direct"


def test_prototypes(geometry_registry):
    """パラメータ順: self → 宣言順（スロット展開） → write → out"""
    signatures = signatures_by_method(run(geometry_registry, "c"), "Canvas")

    assert signatures["new"].prototype() == "Canvas* Canvas_new(uint32_t width, uint32_t height);"
    assert signatures["area"].prototype() == "Meters Canvas_area(const Canvas* self);"
    assert signatures["draw"].prototype() == "void Canvas_draw(Canvas* self, Rect rect);"
    assert signatures["bounds"].prototype() == "void Canvas_bounds(const Canvas* self, Rect* out);"
    assert signatures["describe"].prototype() == "void Canvas_describe(const Canvas* self, BridgeWrite* write);"
    assert signatures["title"].prototype() == "void Canvas_title(const Canvas* self, BridgeSlice* out);"
    assert signatures["set_title"].prototype() == (
        "void Canvas_set_title(Canvas* self, const char* title_data, size_t title_len);"
    )
    assert signatures["tag"].prototype() == (
        "void Canvas_tag(Canvas* self, const BridgeStrView* tags_data, size_t tags_len);"
    )
    assert signatures["find"].prototype() == "void Canvas_find(const Canvas* self, Color color, Canvas_find_result* out);"
    assert signatures["parse"].prototype() == (
        "void Canvas_parse(const char* text_data, size_t text_len, Canvas_parse_result* out);"
    )
    assert signatures["parent"].prototype() == "const Canvas* Canvas_parent(const Canvas* self);"


def test_result_structs(geometry_registry):
    signatures = signatures_by_method(run(geometry_registry, "c"), "Canvas")

    find = signatures["find"].result
    assert find.name == "Canvas_find_result"
    assert find.ok.render() == "Point"
    assert find.err is None

    parse = signatures["parse"].result
    assert parse.ok.render() == "Canvas*"
    assert parse.err.render() == "ErrorCode"


def test_struct_methods_take_self_by_value():
    registry = registry_of(
        {
            "id": "Point",
            "kind": "struct",
            "fields": [{"name": "x", "type": "i32"}, {"name": "y", "type": "i32"}],
            "methods": [{"name": "norm", "self": "borrowed", "returns": "f64"}],
        }
    )

    signatures = signatures_by_method(run(registry, "c"), "Point")

    assert signatures["norm"].prototype() == "double Point_norm(Point self);"


def test_symbol_collision_with_destructor():
    """メソッドとデストラクタのシンボル衝突はNamingConflict"""
    registry = registry_of(
        {
            "id": "Handle",
            "kind": "opaque",
            "methods": [{"name": "close", "self": "borrowed", "abi_name": "Handle_destroy"}],
        }
    )

    result = run(registry, "c")

    assert diagnostics_of(result) == [("Handle", None, "NamingConflict")]
    assert "collides with close" in result.diagnostics[0].message


def test_duplicate_abi_names_conflict():
    registry = registry_of(
        {
            "id": "Handle",
            "kind": "opaque",
            "methods": [
                {"name": "a", "abi_name": "shared"},
                {"name": "b", "abi_name": "shared"},
            ],
        }
    )
    result = run(registry, "c")

    assert diagnostics_of(result) == [("Handle", "b", "NamingConflict")]


def test_invalid_symbol_and_param_names():
    registry = registry_of(
        {
            "id": "Handle",
            "kind": "opaque",
            "methods": [
                {"name": "bad", "abi_name": "not-valid"},
                {"name": "clash", "params": [{"name": "out", "type": "i32"}], "returns": {"fallible": {"ok": "i32"}}},
                {"name": "keyword", "params": [{"name": "int", "type": "i32"}]},
            ],
        }
    )

    result = run(registry, "c")

    assert diagnostics_of(result) == [
        ("Handle", "bad", "NamingConflict"),
        ("Handle", "clash", "NamingConflict"),
        ("Handle", "keyword", "NamingConflict"),
    ]


def test_check_symbol_collisions_direct(geometry_registry):
    signatures = signatures_by_method(run(geometry_registry, "c"), "Canvas")
    owner = geometry_registry.resolve("Canvas")

    errors = check_symbol_collisions(owner, [("area", signatures["area"]), ("area2", signatures["area"])])

    assert len(errors) == 1
    assert isinstance(errors[0], NamingConflictError)
    assert errors[0].method == "area2"


def test_enum_checks():
    registry = registry_of(
        {"id": "Empty", "kind": "enum", "variants": []},
        {"id": "Huge", "kind": "enum", "variants": [{"name": "Big", "value": 2**31}]},
    )

    result = run(registry, "c")

    assert diagnostics_of(result) == [("Empty", None, "UnsupportedType"), ("Huge", None, "UnsupportedType")]


def test_render_mode():
    assert render_mode("out_result") == "result struct"
    assert render_mode("write") == "writeable sink"


def test_struct_ref_by_ref_param_is_pointer():
    registry = registry_of(
        {"id": "Point", "kind": "struct", "fields": [{"name": "x", "type": "i32"}]},
        {
            "id": "Path",
            "kind": "opaque",
            "methods": [{"name": "push", "self": "borrowed", "params": [{"name": "p", "type": {"struct": "Point", "by_ref": True}}]}],
        },
    )

    signatures = signatures_by_method(run(registry, "c"), "Path")

    assert signatures["push"].prototype() == "void Path_push(const Path* self, const Point* p);"
