"""Loader: YAML/JSON→Registry変換

IRドキュメントを読み込み、JSON Schemaで構造検証した後、TypeDefへ変換してRegistryを構築する。
失敗は全て収集し、1つのLoweringErrorとして送出する（生成の前提条件違反）。
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import jsonschema
import yaml

from bindtool.core.base.errors import LoweringError
from bindtool.core.base.ir import (
    PRIMITIVE_KINDS,
    SLICE_ENCODINGS,
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
from bindtool.core.engine.ir_schema import IR_DOCUMENT_SCHEMA
from bindtool.core.engine.registry import TypeRegistry

_REF_KEYS = ("opaque", "struct", "enum", "primitive", "slice", "nullable", "fallible")


def load_registry(ir_path: str | Path) -> TypeRegistry:
    """IRファイルを読み込み、Registryを構築

    Args:
        ir_path: IRファイルのパス（.yaml/.yml/.json）

    Returns:
        TypeRegistry: 構築済みRegistry

    Raises:
        FileNotFoundError: ファイルが存在しない
        LoweringError: 未対応の形式、構文エラー、IR構築の失敗
    """
    ir_path = Path(ir_path)
    if not ir_path.exists():
        raise FileNotFoundError(f"IR file not found: {ir_path}")

    with open(ir_path, encoding="utf-8") as f:
        try:
            if ir_path.suffix in {".yaml", ".yml"}:
                data = yaml.safe_load(f)
            elif ir_path.suffix == ".json":
                data = json.load(f)
            else:
                raise LoweringError(f"Unsupported IR file format: {ir_path.suffix}")
        except (yaml.YAMLError, json.JSONDecodeError) as exc:
            raise LoweringError(f"Cannot parse IR file {ir_path}: {exc}") from exc

    return load_document(data)


def load_document(data: Any) -> TypeRegistry:  # noqa: ANN401
    """パース済みIRドキュメントからRegistryを構築

    Args:
        data: yaml/jsonから読み込んだドキュメント

    Returns:
        TypeRegistry: 構築済みRegistry

    Raises:
        LoweringError: 構造検証または意味解析の失敗
    """
    if not isinstance(data, dict):
        raise LoweringError("IR document must be a mapping")

    schema_problems = _validate_schema(data)
    if schema_problems:
        raise LoweringError("IR document does not match the schema", schema_problems)

    meta_data = data.get("meta", {})
    meta = IRMeta(
        name=meta_data.get("name", "unknown"),
        description=meta_data.get("description", ""),
        version=str(data.get("version", "1")),
    )

    lowering = _Lowering(data["types"])
    types = lowering.lower_all()
    if lowering.problems:
        raise LoweringError("IR lowering failed", lowering.problems)

    return TypeRegistry(types, meta)


def _validate_schema(data: dict[str, Any]) -> list[str]:
    """JSON Schemaによる構造検証"""
    validator = jsonschema.Draft7Validator(IR_DOCUMENT_SCHEMA)
    problems = []
    for error in sorted(validator.iter_errors(data), key=lambda e: [str(p) for p in e.absolute_path]):
        path = "/".join(str(p) for p in error.absolute_path) or "<root>"
        problems.append(f"{path}: {error.message}")
    return problems


class _Lowering:
    """IRドキュメントの型定義をTypeDefへ変換する

    1パス目で宣言済みTypeIdと種別を収集し、2パス目で型式を解決する。
    """

    def __init__(self, type_entries: list[dict[str, Any]]) -> None:
        self.entries = type_entries
        self.problems: list[str] = []
        self.kinds: dict[str, str] = {}
        self.primitive_kinds: dict[str, str] = {}

        seen: set[str] = set()
        for entry in type_entries:
            type_id = entry["id"]
            if type_id in seen:
                self.problems.append(f"duplicate type id '{type_id}'")
                continue
            seen.add(type_id)
            self.kinds[type_id] = entry["kind"]
            if entry["kind"] == "primitive":
                self.primitive_kinds[type_id] = entry.get("primitive", "")

    def lower_all(self) -> list[TypeDef]:
        """全型定義を変換"""
        types: list[TypeDef] = []
        lowered: set[str] = set()
        for entry in self.entries:
            if entry["id"] in lowered:
                continue
            lowered.add(entry["id"])
            typedef = self._lower_typedef(entry)
            if typedef is not None:
                types.append(typedef)
        return types

    # ===== 型定義 =====

    def _lower_typedef(self, entry: dict[str, Any]) -> TypeDef | None:
        type_id = TypeId(entry["id"])
        name = entry.get("name", entry["id"])
        attrs = self._lower_attrs(entry.get("attrs", []))
        docs = entry.get("docs", "")
        kind = entry["kind"]

        self._check_members(entry, kind)

        if kind == "opaque":
            methods = self._lower_methods(type_id, entry.get("methods", []))
            return OpaqueDef(id=type_id, name=name, methods=methods, attrs=attrs, docs=docs)

        if kind == "struct":
            fields = tuple(
                FieldDef(
                    name=f["name"],
                    type=self._lower_type(f["type"], f"{type_id}.{f['name']}"),
                    docs=f.get("docs", ""),
                )
                for f in entry.get("fields", [])
            )
            self._check_unique([f.name for f in fields], f"struct '{type_id}' field")
            methods = self._lower_methods(type_id, entry.get("methods", []))
            return StructDef(id=type_id, name=name, fields=fields, methods=methods, attrs=attrs, docs=docs)

        if kind == "enum":
            variants = self._lower_variants(type_id, entry.get("variants", []))
            return EnumDef(id=type_id, name=name, variants=variants, attrs=attrs, docs=docs)

        primitive = entry.get("primitive", "")
        if primitive not in PRIMITIVE_KINDS:
            self.problems.append(f"primitive type '{type_id}': invalid primitive kind '{primitive}'")
            return None
        return PrimitiveDef(id=type_id, name=name, kind=primitive, attrs=attrs, docs=docs)

    def _check_members(self, entry: dict[str, Any], kind: str) -> None:
        """種別に対応しないメンバーの検出"""
        allowed = {
            "opaque": {"methods"},
            "struct": {"fields", "methods"},
            "enum": {"variants"},
            "primitive": {"primitive"},
        }[kind]
        for member in ("methods", "fields", "variants", "primitive"):
            if member in entry and member not in allowed:
                self.problems.append(f"{kind} type '{entry['id']}' cannot declare '{member}'")

    def _lower_variants(self, type_id: str, variants_data: list[dict[str, Any]]) -> tuple[EnumVariant, ...]:
        """Enumメンバーを変換（値の省略時はC同様に直前の値+1）"""
        variants = []
        next_value = 0
        for variant_data in variants_data:
            value = variant_data.get("value", next_value)
            variants.append(EnumVariant(name=variant_data["name"], value=value, docs=variant_data.get("docs", "")))
            next_value = value + 1
        self._check_unique([v.name for v in variants], f"enum '{type_id}' variant")
        return tuple(variants)

    def _lower_methods(self, type_id: str, methods_data: list[dict[str, Any]]) -> tuple[MethodDef, ...]:
        methods = []
        for method_data in methods_data:
            where = f"{type_id}::{method_data['name']}"
            params = tuple(
                Param(
                    name=p["name"],
                    type=self._lower_type(p["type"], f"{where}({p['name']})"),
                    docs=p.get("docs", ""),
                )
                for p in method_data.get("params", [])
            )
            self._check_unique([p.name for p in params], f"method '{where}' parameter")
            returns_data = method_data.get("returns")
            returns = None if returns_data is None else self._lower_type(returns_data, f"{where} return")
            methods.append(
                MethodDef(
                    name=method_data["name"],
                    params=params,
                    returns=returns,
                    self_param=self._lower_self(method_data.get("self"), where),
                    attrs=self._lower_attrs(method_data.get("attrs", [])),
                    docs=method_data.get("docs", ""),
                    abi_name=method_data.get("abi_name"),
                    lifetime_edges=tuple(method_data.get("lifetime_edges", [])),
                )
            )
        self._check_unique([m.name for m in methods], f"type '{type_id}' method")
        return tuple(methods)

    def _lower_self(self, self_data: Any, where: str) -> SelfParam | None:  # noqa: ANN401
        if self_data is None:
            return None
        if isinstance(self_data, str):
            self_data = {"kind": self_data}
        kind = self_data.get("kind", "borrowed")
        if kind not in {"value", "borrowed"}:
            self.problems.append(f"{where}: invalid self kind '{kind}'")
            return None
        return SelfParam(kind=kind, mutable=bool(self_data.get("mutable", False)))

    @staticmethod
    def _lower_attrs(attrs_data: list[dict[str, Any]]) -> tuple[AttrOutcome, ...]:
        return tuple(
            AttrOutcome(
                backend=a.get("backend", "*"),
                features=tuple(a.get("features", [])),
                enabled=a["enabled"],
            )
            for a in attrs_data
        )

    def _check_unique(self, names: list[str], label: str) -> None:
        duplicates = sorted({name for name in names if names.count(name) > 1})
        for name in duplicates:
            self.problems.append(f"duplicate {label} '{name}'")

    # ===== 型式 =====

    def _lower_type(self, expr: Any, where: str) -> TypeRef:  # noqa: ANN401
        """型式をTypeRefへ変換

        解決できない場合は問題を記録し、プレースホルダ（i32）を返す。
        """
        if isinstance(expr, str):
            return self._lower_named(expr, where)

        keys = [key for key in _REF_KEYS if key in expr]
        if len(keys) != 1:
            self.problems.append(f"{where}: type expression must have exactly one of {list(_REF_KEYS)}, got {sorted(expr)}")
            return PrimitiveRef("i32")
        key = keys[0]

        if key == "nullable":
            return NullableRef(self._lower_type(expr["nullable"], where))
        if key == "fallible":
            outcome = expr["fallible"] or {}
            if not isinstance(outcome, dict):
                self.problems.append(f"{where}: fallible must be a mapping with 'ok' and 'err'")
                return PrimitiveRef("i32")
            ok = outcome.get("ok")
            err = outcome.get("err")
            return FallibleRef(
                ok=None if ok is None else self._lower_type(ok, where),
                err=None if err is None else self._lower_type(err, where),
            )
        if key == "slice":
            return self._lower_slice(expr, where)
        if key == "primitive":
            return self._lower_named(expr["primitive"], where, expected="primitive")

        target = expr[key]
        if self.kinds.get(target) != key:
            self._report_reference(target, key, where)
            return PrimitiveRef("i32")
        if key == "opaque":
            ownership = expr.get("ownership")
            if ownership not in {"owned", "borrowed"}:
                self.problems.append(f"{where}: opaque reference '{target}' must declare ownership (owned|borrowed)")
                return PrimitiveRef("i32")
            return OpaqueRef(TypeId(target), ownership=ownership, mutable=bool(expr.get("mutable", False)))
        if key == "struct":
            return StructRef(TypeId(target), by_ref=bool(expr.get("by_ref", False)))
        return EnumRef(TypeId(target))

    def _lower_named(self, name: str, where: str, expected: str | None = None) -> TypeRef:
        if name in PRIMITIVE_KINDS:
            return PrimitiveRef(name)
        if name == "writeable" and expected is None:
            return WriteableRef()

        kind = self.kinds.get(name)
        if kind is None or (expected is not None and kind != expected):
            self._report_reference(name, expected, where)
            return PrimitiveRef("i32")
        if kind == "primitive":
            return PrimitiveRef(self.primitive_kinds.get(name) or "i32", alias=TypeId(name))
        if kind == "struct":
            return StructRef(TypeId(name))
        if kind == "enum":
            return EnumRef(TypeId(name))
        self.problems.append(f"{where}: opaque reference '{name}' must declare ownership (owned|borrowed)")
        return PrimitiveRef("i32")

    def _lower_slice(self, expr: dict[str, Any], where: str) -> TypeRef:
        encoding = expr["slice"]
        element = expr.get("element")
        if encoding not in SLICE_ENCODINGS:
            self.problems.append(f"{where}: unknown slice encoding '{encoding}'")
            return PrimitiveRef("i32")
        if encoding == "primitive":
            if element not in PRIMITIVE_KINDS:
                self.problems.append(f"{where}: primitive slice requires a primitive element kind, got '{element}'")
                return PrimitiveRef("i32")
        elif element is not None:
            self.problems.append(f"{where}: {encoding} slice cannot declare an element kind")
        return SliceRef(encoding=encoding, element=element)

    def _report_reference(self, target: str, expected: str | None, where: str) -> None:
        actual = self.kinds.get(target)
        if actual is None:
            self.problems.append(f"{where}: unknown type '{target}'")
        else:
            self.problems.append(f"{where}: '{target}' is a {actual} type, not {expected}")
