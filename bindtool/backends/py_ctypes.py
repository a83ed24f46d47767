"""Pythonバックエンド: ctypesバインディング

生成物:
    - ``{package}/{snake_name}.py``: 型ごとのホストラッパー
      （Opaque → ``_abi.Opaque``のサブクラス, Struct → dataclass, Enum → IntEnum, Primitive → TypeAlias）
    - ``{package}/_abi.py``: ctypesランタイム・ミラー・プロトタイプ
    - ``{package}/__init__.py``: 全型の再エクスポート
    - ``include/*.h``: ネイティブ側が実装するCヘッダー（Cバックエンドと同一）

型を跨いだ参照は ``from . import other as _other`` によるモジュール参照で解決し、
関数本体と（文字列化された）アノテーションからのみ使用するため循環importにならない。
"""

from __future__ import annotations

import keyword
import re

from typing_extensions import assert_never

from bindtool.backends.base import GENERATED_NOTICE, Artifact, Backend, EmitContext, TypeUnit
from bindtool.backends.c_header import (
    RUNTIME_HEADER,
    RUNTIME_NAMES,
    header_path,
    render_runtime_header,
    render_type_header,
)
from bindtool.backends.py_ctypes_runtime import RUNTIME_PY_NAMES, render_abi_module
from bindtool.core.base.errors import NamingConflictError, UnsupportedTypeError
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
)
from bindtool.core.engine.attr_filter import EnabledSurface
from bindtool.core.engine.ownership import OwnershipPlan
from bindtool.core.engine.planner import FieldPlan, MethodPlan, TypePlan
from bindtool.core.engine.type_mapper import MappedType, Position

_PY_NUMBERS: dict[str, str] = {"bool": "bool", "char": "str", "f32": "float", "f64": "float"}
_SHADOWED = frozenset({"ctypes", "_abi", "self", "cls", "out", "writer", "result"})
# _abi.Opaque と生成dataclassが使用する属性
_RUNTIME_MEMBERS = frozenset(
    {
        "_ptr",
        "_owned",
        "_keepalive",
        "_finalizer",
        "_destructor",
        "_adopt",
        "_borrow",
        "_handle",
        "_consume",
        "_release",
        "_to_c",
        "_from_c",
    }
)


def snake_case(name: str) -> str:
    """CamelCase → snake_case（モジュール名）"""
    words = re.sub(r"([a-z0-9])([A-Z])", r"\1_\2", name)
    words = re.sub(r"([A-Z]+)([A-Z][a-z])", r"\1_\2", words)
    return words.lower()


def module_name(typedef: TypeDef) -> str:
    name = snake_case(typedef.name)
    return f"{name}_" if keyword.iskeyword(name) else name


def py_ident(name: str) -> str:
    """Pythonの識別子（予約語・生成コードのローカル名と衝突する場合は末尾に_）"""
    if keyword.iskeyword(name) or name in _SHADOWED:
        return f"{name}_"
    return name


def _py_number(kind: PrimitiveKind) -> str:
    return _PY_NUMBERS.get(kind, "int")


class PyHostTypes:
    """Pythonバックエンドのホスト型（ownerモジュールから見たアノテーション）"""

    def __init__(self, owner: TypeDef) -> None:
        self.owner = owner

    def qualified(self, typedef: TypeDef) -> str:
        if typedef.id == self.owner.id:
            return typedef.name
        return f"_{module_name(typedef)}.{typedef.name}"

    def primitive(self, kind: PrimitiveKind, alias: PrimitiveDef | None) -> str:
        if alias is not None:
            return self.qualified(alias)
        return _py_number(kind)

    def opaque(self, typedef: OpaqueDef, ref: OpaqueRef) -> str:
        return self.qualified(typedef)

    def struct(self, typedef: StructDef) -> str:
        return self.qualified(typedef)

    def enum(self, typedef: EnumDef) -> str:
        return self.qualified(typedef)

    def slice(self, ref: SliceRef, position: Position) -> str:
        if ref.encoding in ("utf8", "utf16"):
            return "str"
        if ref.encoding == "strs":
            return "Sequence[str]"
        if ref.element == "u8":
            return "bytes"
        element = _py_number(ref.element or "u8")
        return f"list[{element}]" if position == "return" else f"Sequence[{element}]"

    def writeable(self, position: Position) -> str:
        return "str" if position == "return" else "_abi.Writer"

    def nullable(self, inner: str) -> str:
        return f"{inner} | None"

    def fallible(self, ok: str | None, err: str | None) -> str:
        return ok or "None"


# ============================================================
# 値変換式
# ============================================================


class _Converter:
    """ホスト値⇔ctypes値の変換式の生成"""

    def __init__(self, owner: TypeDef, surface: EnabledSurface) -> None:
        self.host = PyHostTypes(owner)
        self.surface = surface

    def qualified(self, type_id: TypeId) -> str:
        return self.host.qualified(self.surface.resolve(type_id))

    def to_c(self, mapped: MappedType, expr: str) -> str:
        """単一スロットの値をctypes値に変換"""
        ref = mapped.ref
        if isinstance(ref, PrimitiveRef):
            return f"ord({expr})" if ref.kind == "char" else expr
        elif isinstance(ref, EnumRef):
            return f"int({expr})"
        elif isinstance(ref, OpaqueRef):
            return f"{expr}._consume()" if ref.ownership == "owned" else f"{expr}._handle()"
        elif isinstance(ref, StructRef):
            return f"ctypes.pointer({expr}._to_c())" if ref.by_ref else f"{expr}._to_c()"
        elif isinstance(ref, WriteableRef):
            return f"{expr}.pointer()"
        elif isinstance(ref, (SliceRef, NullableRef, FallibleRef)):
            raise UnsupportedTypeError(f"{type(ref).__name__} is not a single-slot value")
        else:
            assert_never(ref)

    def zero(self, mapped: MappedType) -> str:
        """存在フラグがfalseの場合に渡す値"""
        ref = mapped.ref
        if isinstance(ref, StructRef):
            return f"_abi.{self.surface.resolve(ref.type_id).name}()"
        if isinstance(ref, PrimitiveRef) and ref.kind == "bool":
            return "False"
        if isinstance(ref, PrimitiveRef) and ref.kind in ("f32", "f64"):
            return "0.0"
        return "0"

    def from_c(self, mapped: MappedType, expr: str, keep: str = "()") -> str:
        """ctypes値をホスト値に変換（Nullableはnull表現のみ）"""
        ref = mapped.ref
        if isinstance(ref, PrimitiveRef):
            return f"chr({expr})" if ref.kind == "char" else expr
        elif isinstance(ref, EnumRef):
            return f"{self.qualified(ref.type_id)}({expr})"
        elif isinstance(ref, OpaqueRef):
            cls = self.qualified(ref.type_id)
            return f"{cls}._adopt({expr})" if ref.ownership == "owned" else f"{cls}._borrow({expr}, {keep})"
        elif isinstance(ref, StructRef):
            cls = self.qualified(ref.type_id)
            return f"{cls}._from_c({expr}, {keep})" if keep != "()" else f"{cls}._from_c({expr})"
        elif isinstance(ref, SliceRef):
            return f"_abi.read_slice({expr}, {ref.encoding!r}, {ref.element!r})"
        elif isinstance(ref, WriteableRef):
            return "writer.getvalue()"
        elif isinstance(ref, NullableRef):
            (inner,) = mapped.parts
            assert inner is not None
            check = f"{expr}.data" if isinstance(ref.inner, SliceRef) else expr
            return f"None if not {check} else {self.from_c(inner, expr, keep)}"
        elif isinstance(ref, FallibleRef):
            raise UnsupportedTypeError("Fallible is not a single value")
        else:
            assert_never(ref)


def _keep_tuple(plan: OwnershipPlan | None, names: dict[str, str]) -> str:
    if plan is None or not plan.keepalive:
        return "()"
    return "(" + ", ".join(names.get(owner, owner) for owner in plan.keepalive) + ",)"


def _docstring(docs: str, indent: str) -> list[str]:
    text = docs.strip().replace('"""', '\\"\\"\\"')
    if not text:
        return []
    doc_lines = text.splitlines()
    if len(doc_lines) == 1:
        return [f'{indent}"""{doc_lines[0]}"""']
    body = [f"{indent}{line}".rstrip() for line in doc_lines[1:]]
    return [f'{indent}"""{doc_lines[0]}', *body, f'{indent}"""']


# ============================================================
# メソッド
# ============================================================


def _render_method(method_plan: MethodPlan, owner: TypeDef, conv: _Converter) -> list[str]:  # noqa: C901
    method = method_plan.method
    signature = method_plan.signature
    ownership = method_plan.ownership
    names = {p.name: py_ident(p.name) for p in method.params}
    names["self"] = "self"

    params = [f"{names[p.name]}: {mapped.host}" for p, mapped in zip(method.params, method_plan.params)]
    returns = method_plan.returns
    annotation = returns.host if returns is not None else "None"

    lines = []
    if method.is_static:
        lines.append("    @staticmethod")
        lines.append(f"    def {py_ident(method.name)}({', '.join(params)}) -> {annotation}:")
    else:
        lines.append(f"    def {py_ident(method.name)}({', '.join(['self', *params])}) -> {annotation}:")
    lines.extend(_docstring(method.docs, "        "))

    body: list[str] = []
    args: list[str] = []
    if method.self_param is not None:
        if isinstance(owner, OpaqueDef):
            args.append("self._consume()" if method.self_param.kind == "value" else "self._handle()")
        else:
            args.append("self._to_c()")

    for param, mapped in zip(method.params, method_plan.params):
        name = names[param.name]
        args.extend(_param_args(param.type, mapped, name, conv, body))

    if signature.writes:
        body.append("writer = _abi.Writer()")
        args.append("writer.pointer()")

    mode = signature.mode
    if mode == "out_value":
        body.append(f"out = _abi.{conv.surface.resolve(returns.ref.type_id).name}()")
    elif mode == "out_slice":
        body.append("out = _abi.BridgeSlice()")
    elif mode == "out_result":
        body.append(f"out = _abi.{signature.result.name}()")
    if mode in ("out_value", "out_slice", "out_result"):
        args.append("ctypes.pointer(out)")

    call = f"_abi.lib().{signature.symbol}({', '.join(args)})"
    keep = _keep_tuple(ownership.returns, names)

    if mode == "void":
        body.append(call)
    elif mode == "write":
        body.append(call)
        body.append("return writer.getvalue()")
    elif mode == "direct":
        converted = conv.from_c(returns, "result", keep)
        if converted == "result":
            body.append(f"return {call}")
        else:
            body.append(f"result = {call}")
            body.append(f"return {converted}")
    elif mode in ("out_value", "out_slice"):
        body.append(call)
        body.append(f"return {conv.from_c(returns, 'out', keep)}")
    elif mode == "out_result":
        body.append(call)
        body.extend(_result_branch(method_plan, conv, names))
    else:
        assert_never(mode)

    lines.extend(f"        {line}" for line in body)
    return lines


def _param_args(ref: TypeRef, mapped: MappedType, name: str, conv: _Converter, body: list[str]) -> list[str]:
    """1つのIRパラメータのC引数式（必要な前処理はbodyに追加）"""
    if isinstance(ref, SliceRef) or (isinstance(ref, NullableRef) and isinstance(ref.inner, SliceRef)):
        slice_ref = ref if isinstance(ref, SliceRef) else ref.inner
        body.append(f"_{name} = _abi.slice_arg({name}, {slice_ref.encoding!r}, {slice_ref.element!r})")
        return [f"_{name}[0]", f"_{name}[1]"]

    if isinstance(ref, NullableRef):
        (inner,) = mapped.parts
        value = conv.to_c(inner, name)
        if mapped.native.presence == "null":
            return [f"None if {name} is None else {value}"]
        return [f"{conv.zero(inner)} if {name} is None else {value}", f"{name} is not None"]

    return [conv.to_c(mapped, name)]


def _result_branch(method_plan: MethodPlan, conv: _Converter, names: dict[str, str]) -> list[str]:
    returns = method_plan.returns
    ownership = method_plan.ownership
    ref = returns.ref

    if isinstance(ref, NullableRef):
        (inner,) = returns.parts
        keep = _keep_tuple(ownership.returns, names)
        return ["if not out.is_ok:", "    return None", f"return {conv.from_c(inner, 'out.ok', keep)}"]

    ok, err = returns.parts
    ok_value = "None" if ok is None else conv.from_c(ok, "out.ok", _keep_tuple(ownership.returns, names))
    err_value = "None" if err is None else conv.from_c(err, "out.err", _keep_tuple(ownership.error, names))
    return ["if out.is_ok:", f"    return {ok_value}", f"raise _abi.BindingError({err_value})"]


# ============================================================
# 型モジュール
# ============================================================


def _render_opaque(plan: TypePlan, conv: _Converter) -> list[str]:
    typedef = plan.typedef
    lines = [f"class {typedef.name}(_abi.Opaque):"]
    lines.extend(_docstring(typedef.docs, "    ") or [f'    """Handle to a native {typedef.name}."""'])
    lines.append("")
    lines.append("    __slots__ = ()")
    lines.append(f'    _destructor = "{plan.destructor.symbol}"')
    for method_plan in plan.methods:
        lines.append("")
        lines.extend(_render_method(method_plan, typedef, conv))
    return lines


def _field_assignments(field_plan: FieldPlan, conv: _Converter) -> list[str]:
    name = field_plan.field.name
    attr = f"self.{py_ident(name)}"
    mapped = field_plan.mapped
    if isinstance(mapped.ref, NullableRef):
        (inner,) = mapped.parts
        value = conv.to_c(inner, attr)
        if mapped.native.presence == "null":
            return [f"c.{name} = None if {attr} is None else {value}"]
        return [
            f"c.{name} = {conv.zero(inner)} if {attr} is None else {value}",
            f"c.{name}_present = {attr} is not None",
        ]
    return [f"c.{name} = {conv.to_c(mapped, attr)}"]


def _field_value(field_plan: FieldPlan, conv: _Converter) -> str:
    name = field_plan.field.name
    mapped = field_plan.mapped
    if isinstance(mapped.ref, NullableRef) and mapped.native.presence == "flag":
        (inner,) = mapped.parts
        return f"{conv.from_c(inner, f'c.{name}', 'keepalive')} if c.{name}_present else None"
    return conv.from_c(mapped, f"c.{name}", "keepalive")


def _render_struct(plan: TypePlan, conv: _Converter) -> list[str]:
    typedef = plan.typedef
    lines = ["@dataclasses.dataclass", f"class {typedef.name}:"]
    lines.extend(_docstring(typedef.docs, "    "))
    if typedef.docs.strip():
        lines.append("")
    for field_plan in plan.fields:
        lines.append(f"    {py_ident(field_plan.field.name)}: {field_plan.mapped.host}")

    lines.append("")
    lines.append(f"    def _to_c(self) -> _abi.{typedef.name}:")
    lines.append(f"        c = _abi.{typedef.name}()")
    for field_plan in plan.fields:
        lines.extend(f"        {line}" for line in _field_assignments(field_plan, conv))
    lines.append("        return c")

    lines.append("")
    lines.append("    @classmethod")
    lines.append(f"    def _from_c(cls, c: _abi.{typedef.name}, keepalive: tuple = ()) -> {typedef.name}:")
    lines.append("        return cls(")
    for field_plan in plan.fields:
        lines.append(f"            {py_ident(field_plan.field.name)}={_field_value(field_plan, conv)},")
    lines.append("        )")

    for method_plan in plan.methods:
        lines.append("")
        lines.extend(_render_method(method_plan, typedef, conv))
    return lines


def _render_enum(typedef: EnumDef) -> list[str]:
    lines = [f"class {typedef.name}(enum.IntEnum):"]
    lines.extend(_docstring(typedef.docs, "    "))
    if typedef.docs.strip():
        lines.append("")
    for variant in typedef.variants:
        lines.append(f"    {py_ident(variant.name)} = {variant.value}")
    return lines


def _render_primitive(typedef: PrimitiveDef) -> list[str]:
    lines = [f"{typedef.name}: TypeAlias = {_py_number(typedef.kind)}"]
    if typedef.docs.strip():
        lines.extend(_docstring(typedef.docs, ""))
    return lines


def render_type_module(plan: TypePlan, ctx: EmitContext) -> str:
    """型モジュールを生成"""
    typedef = plan.typedef
    conv = _Converter(typedef, ctx.surface)

    if isinstance(typedef, OpaqueDef):
        body = _render_opaque(plan, conv)
    elif isinstance(typedef, StructDef):
        body = _render_struct(plan, conv)
    elif isinstance(typedef, EnumDef):
        body = _render_enum(typedef)
    elif isinstance(typedef, PrimitiveDef):
        body = _render_primitive(typedef)
    else:
        assert_never(typedef)

    text = "\n".join(body)
    imports = []
    if "dataclasses." in text:
        imports.append("import dataclasses")
    if "ctypes." in text:
        imports.append("import ctypes")
    if "enum.IntEnum" in text:
        imports.append("import enum")
    if "Sequence[" in text:
        imports.append("from collections.abc import Sequence")
    if "TypeAlias" in text:
        imports.append("from typing import TypeAlias")
    imports.sort(key=lambda line: (line.startswith("from "), line))

    local = []
    if "_abi." in text:
        local.append("from . import _abi")
    for dep in sorted(plan.dependencies(), key=lambda t: module_name(ctx.surface.resolve(t))):
        dep_module = module_name(ctx.surface.resolve(dep))
        if f"_{dep_module}." in text:
            local.append(f"from . import {dep_module} as _{dep_module}")

    summary = typedef.docs.strip().splitlines()[0] if typedef.docs.strip() else f"Bindings for {typedef.name}."
    lines = [f'"""{summary}', "", GENERATED_NOTICE, '"""', "", "from __future__ import annotations", ""]
    if imports:
        lines.extend(imports)
        lines.append("")
    if local:
        lines.extend(local)
        lines.append("")
    lines.append("")
    lines.extend(body)
    lines.append("")
    return "\n".join(lines)


def render_init_module(units: list[TypeUnit], ctx: EmitContext) -> str:
    """``__init__.py`` を生成"""
    exports = {"BindingError": "_abi", "Writer": "_abi", "bind": "_abi", "load": "_abi"}
    for unit in units:
        exports[unit.plan.typedef.name] = module_name(unit.plan.typedef)

    by_module: dict[str, list[str]] = {}
    for name, module in exports.items():
        by_module.setdefault(module, []).append(name)

    lines = [f'"""Python bindings for the {ctx.config.library_name} native library.', "", GENERATED_NOTICE, '"""', ""]
    for module in sorted(by_module):
        lines.append(f"from .{module} import {', '.join(sorted(by_module[module]))}")
    lines.append("")
    lines.append("__all__ = [")
    lines.extend(f'    "{name}",' for name in sorted(exports))
    lines.append("]")
    lines.append("")
    return "\n".join(lines)


def check_member_names(plan: TypePlan) -> None:
    """生成クラスの属性名（フィールド・メソッド）が一意であることを確認

    Raises:
        NamingConflictError: 識別子の変換後に名前が重複、またはランタイムのメンバーと衝突する場合
    """
    owner = plan.typedef.name
    members: dict[str, str] = {}
    entries = [(py_ident(f.field.name), f"field '{f.field.name}'") for f in plan.fields]
    entries += [(py_ident(m.method.name), f"method '{m.method.name}'") for m in plan.methods]
    for name, label in entries:
        if name in _RUNTIME_MEMBERS or name.startswith("__"):
            raise NamingConflictError(f"{label} of {owner} clashes with the runtime member '{name}'")
        if name in members:
            raise NamingConflictError(f"{label} and {members[name]} of {owner} both map to '{name}'")
        members[name] = label


class PyCtypesBackend(Backend):
    """Python ctypesバックエンド"""

    id = "py"
    description = "Python ctypes bindings plus C ABI headers"
    reserved_names = RUNTIME_NAMES | RUNTIME_PY_NAMES

    def host_types(self, owner: TypeDef, ctx: EmitContext) -> PyHostTypes:
        return PyHostTypes(owner)

    def emit_type(self, plan: TypePlan, ctx: EmitContext) -> TypeUnit:
        module = module_name(plan.typedef)
        if module.startswith("_") or module == "abi":
            raise NamingConflictError(f"module name '{module}' of {plan.typedef.name} clashes with the runtime module")
        check_member_names(plan)
        package = ctx.config.host_package
        files = (
            Artifact(header_path(plan.typedef), render_type_header(plan, ctx)),
            Artifact(f"{package}/{module}.py", render_type_module(plan, ctx)),
        )
        return TypeUnit(plan=plan, files=files)

    def emit_shared(self, units: list[TypeUnit], ctx: EmitContext) -> list[Artifact]:
        package = ctx.config.host_package
        return [
            Artifact(RUNTIME_HEADER, render_runtime_header()),
            Artifact(f"{package}/_abi.py", render_abi_module(units, ctx)),
            Artifact(f"{package}/__init__.py", render_init_module(units, ctx)),
        ]
