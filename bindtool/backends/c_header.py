"""Cバックエンド: 型ごとのCヘッダーとランタイムヘッダー

ネイティブ側のグルー（C ABI契約）を生成する。ネイティブライブラリはこのヘッダーの宣言を実装する。

- ``include/{Type}.h``: 型定義、戻り値用構造体、メソッド・デストラクタのプロトタイプ
- ``include/bridge_runtime.h``: BridgeStrView / BridgeSlice / BridgeWrite

ヘッダーは「値埋め込み依存のinclude → 型定義 → シグネチャ依存のinclude → プロトタイプ」の順に並べ、
メソッドシグネチャを介した相互参照があってもincludeガードで解決できるようにする。
"""

from __future__ import annotations

from bindtool.backends.base import GENERATED_NOTICE, Artifact, Backend, EmitContext, TypeUnit
from bindtool.core.base.ir import (
    EnumDef,
    OpaqueDef,
    OpaqueRef,
    PrimitiveDef,
    PrimitiveKind,
    SliceRef,
    StructDef,
    TypeDef,
    TypeId,
)
from bindtool.core.engine.dependency import referenced_ids
from bindtool.core.engine.planner import MethodPlan, TypePlan
from bindtool.core.engine.symbols import ResultStruct
from bindtool.core.engine.type_mapper import C_PRIMITIVES, Position

RUNTIME_HEADER = "include/bridge_runtime.h"
RUNTIME_NAMES = frozenset({"BridgeSlice", "BridgeStrView", "BridgeWrite"})

_STD_INCLUDES = ["#include <stdbool.h>", "#include <stddef.h>", "#include <stdint.h>"]
_EXTERN_OPEN = ["#ifdef __cplusplus", 'extern "C" {', "#endif"]
_EXTERN_CLOSE = ["#ifdef __cplusplus", '}  /* extern "C" */', "#endif"]


def header_path(typedef: TypeDef) -> str:
    """型のヘッダーパス"""
    return f"include/{typedef.name}.h"


def _guard(name: str) -> str:
    return f"BINDTOOL_{name.upper()}_H"


def doc_comment(docs: str, notes: list[str] | None = None, indent: str = "") -> list[str]:
    """ドキュメントコメント（docsとnotesが空なら何も出力しない）"""
    lines = [line.rstrip() for line in docs.strip().splitlines()] if docs.strip() else []
    if notes:
        if lines:
            lines.append("")
        lines.extend(notes)
    if not lines:
        return []
    if len(lines) == 1:
        return [f"{indent}/** {lines[0]} */"]
    body = [f"{indent} *{(' ' + line) if line else ''}" for line in lines]
    return [f"{indent}/**", *body, f"{indent} */"]


class CHostTypes:
    """Cバックエンドのホスト型（C宣言そのもの）"""

    def primitive(self, kind: PrimitiveKind, alias: PrimitiveDef | None) -> str:
        return alias.name if alias is not None else C_PRIMITIVES[kind]

    def opaque(self, typedef: OpaqueDef, ref: OpaqueRef) -> str:
        const = "const " if ref.ownership == "borrowed" and not ref.mutable else ""
        return f"{const}{typedef.name}*"

    def struct(self, typedef: StructDef) -> str:
        return typedef.name

    def enum(self, typedef: EnumDef) -> str:
        return typedef.name

    def slice(self, ref: SliceRef, position: Position) -> str:
        if position == "return":
            return "BridgeSlice"
        if ref.encoding == "primitive":
            return f"const {C_PRIMITIVES[ref.element or 'u8']}[]"
        if ref.encoding == "utf8":
            return "const char[]"
        if ref.encoding == "utf16":
            return "const uint16_t[]"
        return "const BridgeStrView[]"

    def writeable(self, position: Position) -> str:
        return "BridgeWrite*"

    def nullable(self, inner: str) -> str:
        return inner

    def fallible(self, ok: str | None, err: str | None) -> str:
        return f"result<{ok or 'void'}, {err or 'void'}>"


# ============================================================
# 型ヘッダー
# ============================================================


def _opaque_forwards(plan: TypePlan, ctx: EmitContext) -> list[str]:
    """前方宣言が必要なOpaque型名"""
    names = set()
    if isinstance(plan.typedef, OpaqueDef):
        names.add(plan.typedef.name)
    for dep in plan.dependencies():
        typedef = ctx.surface.resolve(dep)
        if isinstance(typedef, OpaqueDef):
            names.add(typedef.name)
    return sorted(names)


def _includes(type_ids: set[TypeId], ctx: EmitContext) -> list[str]:
    names = sorted(ctx.surface.resolve(t).name for t in type_ids)
    return [f'#include "{name}.h"' for name in names]


def _render_definition(plan: TypePlan) -> list[str]:
    typedef = plan.typedef
    lines = doc_comment(typedef.docs)

    if isinstance(typedef, OpaqueDef):
        lines.append(f"typedef struct {typedef.name} {typedef.name};")
    elif isinstance(typedef, StructDef):
        lines.append(f"typedef struct {typedef.name} {{")
        for field_plan in plan.fields:
            lines.extend(doc_comment(field_plan.field.docs, indent="    "))
            for slot in field_plan.mapped.native.slots:
                lines.append(f"    {slot.ctype.render()} {field_plan.field.name}{slot.suffix};")
        lines.append(f"}} {typedef.name};")
    elif isinstance(typedef, EnumDef):
        lines.append(f"typedef enum {typedef.name} {{")
        for variant in typedef.variants:
            lines.extend(doc_comment(variant.docs, indent="    "))
            lines.append(f"    {typedef.name}_{variant.name} = {variant.value},")
        lines.append(f"}} {typedef.name};")
    else:
        lines.append(f"typedef {C_PRIMITIVES[typedef.kind]} {typedef.name};")
    return lines


def render_result_struct(result: ResultStruct) -> list[str]:
    """戻り値用構造体"""
    lines = [f"typedef struct {result.name} {{"]
    members = [(name, ctype) for name, ctype in (("ok", result.ok), ("err", result.err)) if ctype is not None]
    if members:
        lines.append("    union {")
        lines.extend(f"        {ctype.render()} {name};" for name, ctype in members)
        lines.append("    };")
    lines.append("    bool is_ok;")
    lines.append(f"}} {result.name};")
    return lines


def ownership_notes(method_plan: MethodPlan) -> list[str]:
    """所有権・借用の契約（ヘッダーのコメントとして出力）"""
    notes = []
    ownership = method_plan.ownership
    if ownership.self_plan is not None and ownership.self_plan.transfer == "move_in":
        notes.append("Consumes self; the caller must not use or destroy it afterwards.")
    for name, plan in ownership.params.items():
        if plan.transfer == "move_in":
            notes.append(f"Takes ownership of `{name}`.")
    for label, plan in (("returned", ownership.returns), ("error", ownership.error)):
        if plan is None:
            continue
        if plan.transfer == "adopt":
            notes.append(f"The caller owns the {label} handle and releases it with {plan.destructor}.")
        elif plan.transfer == "borrow_return":
            owners = ", ".join(f"`{owner}`" for owner in plan.keepalive)
            notes.append(f"The {label} value borrows from {owners} and must not outlive it.")
    mode = method_plan.signature.mode
    if mode == "out_slice":
        notes.append("The slice written to `out` stays valid only until the next call on the same object.")
    elif mode == "out_result" and method_plan.signature.result is not None:
        result = method_plan.signature.result
        if result.ok is not None and result.err is not None:
            notes.append("Writes exactly one of `out->ok` / `out->err` and sets `out->is_ok` accordingly.")
        elif result.ok is not None:
            notes.append("Sets `out->is_ok`; `out->ok` is written only when it is true.")
        elif result.err is not None:
            notes.append("Sets `out->is_ok`; `out->err` is written only when it is false.")
    return notes


def render_type_header(plan: TypePlan, ctx: EmitContext) -> str:
    """型ヘッダーを生成"""
    typedef = plan.typedef
    guard = _guard(typedef.name)
    field_deps = plan.field_dependencies()
    signature_deps: set[TypeId] = set()
    for method_plan in plan.methods:
        for param in method_plan.method.params:
            signature_deps |= referenced_ids(param.type, by_value_only=True)
        signature_deps |= referenced_ids(method_plan.method.returns, by_value_only=True)
    signature_deps -= field_deps | {typedef.id}

    lines = [f"/* {GENERATED_NOTICE} */", f"#ifndef {guard}", f"#define {guard}", ""]
    lines.extend(_STD_INCLUDES)
    lines.append('#include "bridge_runtime.h"')
    lines.extend(_includes(field_deps, ctx))
    lines.append("")
    lines.extend(_EXTERN_OPEN)
    lines.append("")

    forwards = [name for name in _opaque_forwards(plan, ctx) if name != typedef.name]
    if forwards:
        lines.extend(f"typedef struct {name} {name};" for name in forwards)
        lines.append("")
    lines.extend(_render_definition(plan))
    lines.append("")
    lines.extend(_EXTERN_CLOSE)

    if signature_deps:
        lines.append("")
        lines.extend(_includes(signature_deps, ctx))

    declarations = _render_declarations(plan, ctx)
    if declarations:
        lines.append("")
        lines.extend(_EXTERN_OPEN)
        lines.append("")
        lines.extend(declarations)
        lines.extend(_EXTERN_CLOSE)

    lines.extend(["", f"#endif  /* {guard} */", ""])
    return "\n".join(lines)


def _render_declarations(plan: TypePlan, ctx: EmitContext) -> list[str]:
    lines: list[str] = []
    for method_plan in plan.methods:
        if method_plan.signature.result is not None:
            lines.extend(render_result_struct(method_plan.signature.result))
            lines.append("")
    for method_plan in plan.methods:
        lines.extend(doc_comment(method_plan.method.docs, ownership_notes(method_plan)))
        lines.append(method_plan.signature.prototype())
        lines.append("")
    if plan.destructor is not None:
        lines.extend(doc_comment(f"Releases a {plan.typedef.name} owned by the caller."))
        lines.append(plan.destructor.prototype())
        lines.append("")
    return lines


# ============================================================
# ランタイムヘッダー
# ============================================================

_RUNTIME_BODY = """\
/** One element of a `strs` slice: a borrowed UTF-8 string. */
typedef struct BridgeStrView {
    const char* data;
    size_t len;
} BridgeStrView;

/**
 * A (data, len) view returned through an out pointer.
 * The host copies it immediately; native code keeps ownership of the storage.
 * A present slice always has a non-NULL `data`, even when `len` is 0;
 * a `Nullable<Slice>` return reports absence with `data == NULL`.
 */
typedef struct BridgeSlice {
    const void* data;
    size_t len;
} BridgeSlice;

/**
 * A growable UTF-8 sink allocated by the host.
 * Native code appends at `buf + len`, calling `grow` first when `cap` is too small
 * and `flush` once it has finished writing.
 */
typedef struct BridgeWrite {
    void* context;
    char* buf;
    size_t len;
    size_t cap;
    void (*flush)(struct BridgeWrite*);
    bool (*grow)(struct BridgeWrite*, size_t);
} BridgeWrite;

/** Appends `len` bytes to `write`, growing it when needed. Returns false if growing failed. */
static inline bool bridge_write_bytes(BridgeWrite* write, const char* data, size_t len) {
    if (write->len + len > write->cap) {
        if (!write->grow(write, write->len + len)) {
            return false;
        }
    }
    memcpy(write->buf + write->len, data, len);
    write->len += len;
    return true;
}
"""


def render_runtime_header() -> str:
    """ランタイムヘッダーを生成"""
    guard = _guard("bridge_runtime")
    lines = [f"/* {GENERATED_NOTICE} */", f"#ifndef {guard}", f"#define {guard}", ""]
    lines.extend(_STD_INCLUDES)
    lines.append("#include <string.h>")
    lines.append("")
    lines.extend(_EXTERN_OPEN)
    lines.append("")
    lines.append(_RUNTIME_BODY)
    lines.extend(_EXTERN_CLOSE)
    lines.extend(["", f"#endif  /* {guard} */", ""])
    return "\n".join(lines)


class CBackend(Backend):
    """Cヘッダーバックエンド"""

    id = "c"
    description = "C ABI headers (native-side glue)"
    reserved_names = RUNTIME_NAMES

    def host_types(self, owner: TypeDef, ctx: EmitContext) -> CHostTypes:
        return CHostTypes()

    def emit_type(self, plan: TypePlan, ctx: EmitContext) -> TypeUnit:
        header = Artifact(header_path(plan.typedef), render_type_header(plan, ctx))
        return TypeUnit(plan=plan, files=(header,))

    def emit_shared(self, units: list[TypeUnit], ctx: EmitContext) -> list[Artifact]:
        return [Artifact(RUNTIME_HEADER, render_runtime_header())]
