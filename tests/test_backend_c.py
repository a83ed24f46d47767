"""Cヘッダーバックエンドのテスト"""

from bindtool.backends.c_header import RUNTIME_HEADER, doc_comment
from helpers import artifact_text, registry_of, run

POINT_HEADER = """\
/* Generated by bindtool. Do not edit. */
#ifndef BINDTOOL_POINT_H
#define BINDTOOL_POINT_H

#include <stdbool.h>
#include <stddef.h>
#include <stdint.h>
#include "bridge_runtime.h"

#ifdef __cplusplus
extern "C" {
#endif

typedef struct Point {
    int32_t x;
    int32_t y;
} Point;

#ifdef __cplusplus
}  /* extern "C" */
#endif

#endif  /* BINDTOOL_POINT_H */
"""


def test_struct_header(geometry_registry):
    result = run(geometry_registry, "c")

    assert artifact_text(result, "include/Point.h") == POINT_HEADER


def test_artifact_paths(geometry_registry):
    result = run(geometry_registry, "c")

    assert [a.path for a in result.artifacts] == [
        "bindtool-manifest.json",
        "include/Canvas.h",
        "include/Color.h",
        "include/ErrorCode.h",
        "include/GpuSurface.h",
        "include/Meters.h",
        "include/Point.h",
        "include/Rect.h",
        "include/bridge_runtime.h",
    ]


def test_enum_and_primitive_headers(geometry_registry):
    result = run(geometry_registry, "c")

    color = artifact_text(result, "include/Color.h")
    assert "typedef enum Color {\n    Color_Red = 0,\n    Color_Green = 5,\n    Color_Blue = 6,\n} Color;" in color

    meters = artifact_text(result, "include/Meters.h")
    assert "/** Length in meters. */\ntypedef double Meters;" in meters


def test_field_dependencies_included_before_definition(geometry_registry):
    """値埋め込みの依存は型定義の前にinclude"""
    rect = artifact_text(run(geometry_registry, "c"), "include/Rect.h")

    assert rect.index('#include "Color.h"') < rect.index("typedef struct Rect {")
    assert rect.index('#include "Point.h"') < rect.index("typedef struct Rect {")
    assert "    Point origin;\n    Point size;\n    Color color;\n" in rect
    assert "/** Axis-aligned rectangle. */" in rect


def test_signature_dependencies_included_after_definition(geometry_registry):
    """シグネチャのみの依存は型定義の後にinclude（相互参照を許す）"""
    canvas = artifact_text(run(geometry_registry, "c"), "include/Canvas.h")

    definition = canvas.index("typedef struct Canvas Canvas;")
    for name in ("Color", "ErrorCode", "Meters", "Point", "Rect"):
        assert canvas.index(f'#include "{name}.h"') > definition
    assert canvas.count("#ifndef BINDTOOL_CANVAS_H") == 1
    assert canvas.rstrip().endswith("#endif  /* BINDTOOL_CANVAS_H */")


def test_opaque_header_declarations(opaque_registry):
    header = artifact_text(run(opaque_registry, "c"), "include/OpaqueStruct.h")

    assert "/** A counter living on the native heap. */\ntypedef struct OpaqueStruct OpaqueStruct;" in header
    assert "int32_t OpaqueStruct_add_two(int32_t x);" in header
    assert "int32_t OpaqueStruct_get(const OpaqueStruct* self);" in header
    assert "bool OpaqueStruct_same_as(const OpaqueStruct* self, const OpaqueStruct* other);" in header
    assert (
        "/** Releases a OpaqueStruct owned by the caller. */\nvoid OpaqueStruct_destroy(OpaqueStruct* self);"
        in header
    )


def test_result_struct_declaration(opaque_registry):
    """Fallibleの戻り値用構造体（匿名union + is_ok）"""
    header = artifact_text(run(opaque_registry, "c"), "include/OpaqueStruct.h")

    assert (
        "typedef struct OpaqueStruct_checked_div_result {\n"
        "    union {\n"
        "        int32_t ok;\n"
        "        DivError err;\n"
        "    };\n"
        "    bool is_ok;\n"
        "} OpaqueStruct_checked_div_result;"
    ) in header
    assert header.index("} OpaqueStruct_checked_div_result;") < header.index("OpaqueStruct_checked_div(")


def test_ownership_notes(opaque_registry, geometry_registry):
    """所有権の契約はドキュメントコメントとして出力"""
    opaque = artifact_text(run(opaque_registry, "c"), "include/OpaqueStruct.h")
    assert (
        "/**\n"
        " * Creates a counter starting at `start`.\n"
        " *\n"
        " * The caller owns the returned handle and releases it with OpaqueStruct_destroy.\n"
        " */\n"
        "OpaqueStruct* OpaqueStruct_new(int32_t start);"
    ) in opaque

    canvas = artifact_text(run(geometry_registry, "c"), "include/Canvas.h")
    assert "The returned value borrows from `self` and must not outlive it." in canvas
    assert "stays valid only until the next call on the same object" in canvas
    assert "Writes exactly one of `out->ok` / `out->err`" in canvas
    assert "Sets `out->is_ok`; `out->ok` is written only when it is true." in canvas


def test_consuming_method_note():
    registry = registry_of(
        {
            "id": "Handle",
            "kind": "opaque",
            "methods": [
                {"name": "close", "self": "value"},
                {"name": "merge", "self": "borrowed", "params": [{"name": "other", "type": {"opaque": "Handle", "ownership": "owned"}}]},
            ],
        }
    )
    header = artifact_text(run(registry, "c"), "include/Handle.h")

    assert "/** Consumes self; the caller must not use or destroy it afterwards. */\nvoid Handle_close(Handle* self);" in header
    assert "/** Takes ownership of `other`. */" in header


def test_foreign_opaque_is_forward_declared():
    """他のOpaque型はincludeせず前方宣言する"""
    registry = registry_of(
        {"id": "Device", "kind": "opaque"},
        {
            "id": "Queue",
            "kind": "opaque",
            "methods": [{"name": "device", "self": "borrowed", "returns": {"opaque": "Device", "ownership": "borrowed"}}],
        },
    )
    header = artifact_text(run(registry, "c"), "include/Queue.h")

    assert "typedef struct Device Device;\n\ntypedef struct Queue Queue;" in header
    assert '#include "Device.h"' not in header
    assert "const Device* Queue_device(const Queue* self);" in header


def test_runtime_header(opaque_registry):
    runtime = artifact_text(run(opaque_registry, "c"), RUNTIME_HEADER)

    assert "#ifndef BINDTOOL_BRIDGE_RUNTIME_H" in runtime
    assert "#include <string.h>" in runtime
    for name in ("BridgeStrView", "BridgeSlice", "BridgeWrite"):
        assert f"}} {name};" in runtime
    assert "static inline bool bridge_write_bytes(" in runtime
    assert "A present slice always has a non-NULL `data`" in runtime


def test_doc_comment():
    assert doc_comment("") == []
    assert doc_comment("One line.") == ["/** One line. */"]
    assert doc_comment("", ["A note."], indent="    ") == ["    /** A note. */"]
    assert doc_comment("First.\nSecond.") == ["/**", " * First.", " * Second.", " */"]
