"""Output Emitter: 型単位の出力の組み立てと書き込み

型単位の出力（TypeUnit）を受け取り、型を跨いだ最終チェック（シンボル・出力パスの衝突、
失敗した型への依存）を行った上で、共有ファイルとABIマニフェストを加えて成果物を組み立てる。
マッピングの再導出は行わない。
"""

from __future__ import annotations

import difflib
import json
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

import networkx as nx

from bindtool.backends.base import Artifact, Backend, EmitContext, TypeUnit
from bindtool.core.base.errors import Diagnostic, ErrorKind
from bindtool.core.base.ir import TypeId, kind_label
from bindtool.core.engine.dependency import layout_order
from bindtool.core.engine.ownership import destructors

logger = logging.getLogger(__name__)

MANIFEST_PATH = "bindtool-manifest.json"
MANIFEST_FORMAT = 1

ArtifactState = Literal["unchanged", "updated", "drift"]


@dataclass
class EmitResult:
    """組み立て結果

    Attributes:
        artifacts: 出力ファイル（パス順）
        units: 出力に含まれた型単位（依存順）
        diagnostics: 型を跨いだチェックで検出された問題
    """

    artifacts: list[Artifact] = field(default_factory=list)
    units: list[TypeUnit] = field(default_factory=list)
    diagnostics: list[Diagnostic] = field(default_factory=list)


def assemble(units: list[TypeUnit], backend: Backend, ctx: EmitContext) -> EmitResult:
    """型単位の出力から成果物を組み立てる

    Args:
        units: 計画・生成に成功した型単位
        backend: バックエンド
        ctx: 生成コンテキスト

    Returns:
        EmitResult: 組み立て結果
    """
    result = EmitResult()
    surviving = _drop_symbol_collisions(units, result.diagnostics)
    surviving = _drop_path_collisions(surviving, result.diagnostics)
    surviving = _drop_broken_dependents(surviving, result.diagnostics)

    surviving_ids = {u.type_id for u in surviving}
    for unit in units:
        if unit.type_id not in surviving_ids:
            logger.warning(f"dropped output of {unit.type_id}")

    ordered = dependency_order(surviving)
    artifacts = [artifact for unit in ordered for artifact in unit.files]
    artifacts.extend(backend.emit_shared(ordered, ctx))
    artifacts.append(build_manifest(ordered, backend, ctx))

    result.units = ordered
    result.artifacts = sorted(artifacts, key=lambda a: a.path)
    return result


def _conflict(type_id: TypeId, message: str) -> Diagnostic:
    return Diagnostic(type_id=type_id, method=None, kind=ErrorKind.NAMING_CONFLICT, message=message)


def _drop_symbol_collisions(units: list[TypeUnit], diagnostics: list[Diagnostic]) -> list[TypeUnit]:
    """型を跨いだエクスポートシンボルの衝突"""
    owners: dict[str, list[TypeId]] = defaultdict(list)
    for unit in units:
        for symbol in unit.plan.symbols:
            owners[symbol].append(unit.type_id)
        for signature in unit.plan.signatures:
            if signature.result is not None:
                owners[signature.result.name].append(unit.type_id)

    bad: set[TypeId] = set()
    for symbol, type_ids in sorted(owners.items()):
        distinct = sorted(set(type_ids))
        if len(distinct) > 1:
            for type_id in distinct:
                others = ", ".join(t for t in distinct if t != type_id)
                diagnostics.append(_conflict(type_id, f"exported symbol '{symbol}' is also generated by {others}"))
            bad.update(distinct)
    return [u for u in units if u.type_id not in bad]


def _drop_path_collisions(units: list[TypeUnit], diagnostics: list[Diagnostic]) -> list[TypeUnit]:
    """型を跨いだ出力パスの衝突"""
    owners: dict[str, set[TypeId]] = defaultdict(set)
    for unit in units:
        for artifact in unit.files:
            owners[artifact.path.lower()].add(unit.type_id)

    bad: set[TypeId] = set()
    for path, type_ids in sorted(owners.items()):
        if len(type_ids) > 1:
            for type_id in sorted(type_ids):
                diagnostics.append(_conflict(type_id, f"output path '{path}' is shared by {sorted(type_ids)}"))
            bad.update(type_ids)
    return [u for u in units if u.type_id not in bad]


def _drop_broken_dependents(units: list[TypeUnit], diagnostics: list[Diagnostic]) -> list[TypeUnit]:
    """出力されなかった型に依存する型を除外（不動点まで）"""
    surviving = list(units)
    while True:
        present = {u.type_id for u in surviving}
        kept = []
        for unit in surviving:
            missing = sorted(unit.plan.dependencies() - present)
            if missing:
                diagnostics.append(
                    Diagnostic(
                        type_id=unit.type_id,
                        method=None,
                        kind=ErrorKind.UNRESOLVED_TYPE_REFERENCE,
                        message=f"depends on {', '.join(missing)} which could not be generated",
                    )
                )
            else:
                kept.append(unit)
        if len(kept) == len(surviving):
            return kept
        surviving = kept


def dependency_order(units: list[TypeUnit]) -> list[TypeUnit]:
    """値埋め込みの依存先が先に来る順序（同順位はTypeId順）"""
    by_id = {u.type_id: u for u in units}
    graph = nx.DiGraph()
    for unit in units:
        graph.add_node(unit.type_id)
        for dep in unit.plan.field_dependencies():
            if dep in by_id:
                graph.add_edge(unit.type_id, dep)
    return [by_id[type_id] for type_id in layout_order(graph, by_id)]


def build_manifest(units: list[TypeUnit], backend: Backend, ctx: EmitContext) -> Artifact:
    """ABIマニフェスト（エクスポートシンボルとCプロトタイプの一覧）"""
    types = {}
    for unit in units:
        typedef = unit.plan.typedef
        types[typedef.name] = {
            "id": str(typedef.id),
            "kind": kind_label(typedef),
            "symbols": [
                {"symbol": signature.symbol, "prototype": signature.prototype(), "returns": signature.mode}
                for signature in unit.plan.signatures
            ],
        }
    data = {
        "format": MANIFEST_FORMAT,
        "backend": backend.id,
        "library": ctx.config.library_name,
        "features": sorted(ctx.config.features),
        "pointer_width": ctx.config.pointer_width,
        "types": types,
        "destructors": {str(type_id): symbol for type_id, symbol in destructors(u.plan.typedef for u in units)},
    }
    if backend.id == "py":
        data["package"] = ctx.config.host_package
    return Artifact(MANIFEST_PATH, json.dumps(data, indent=2, sort_keys=True, ensure_ascii=False) + "\n")


# ============================================================
# 書き込み・ドリフト検出
# ============================================================


@dataclass(frozen=True)
class ArtifactStatus:
    """ファイルごとの書き込み結果

    Attributes:
        path: 出力先パス
        state: "unchanged" / "updated"（書き込み済み） / "drift"（チェックモードで差分あり）
        diff: ドリフト時のunified diff
    """

    path: Path
    state: ArtifactState
    diff: str = ""


def write_artifacts(artifacts: list[Artifact], output_dir: str | Path, check: bool = False) -> list[ArtifactStatus]:
    """成果物を書き込む（内容が変わったファイルのみ）

    Args:
        artifacts: 成果物
        output_dir: 出力先ディレクトリ
        check: Trueの場合は書き込まず、差分をdriftとして報告する

    Returns:
        ファイルごとの結果
    """
    output_dir = Path(output_dir)
    statuses = []
    for artifact in artifacts:
        target = output_dir / artifact.path
        current = target.read_text(encoding="utf-8") if target.exists() else None
        if current == artifact.content:
            statuses.append(ArtifactStatus(target, "unchanged"))
            continue

        if check:
            diff = "".join(
                difflib.unified_diff(
                    (current or "").splitlines(keepends=True),
                    artifact.content.splitlines(keepends=True),
                    fromfile=f"a/{artifact.path}",
                    tofile=f"b/{artifact.path}",
                )
            )
            statuses.append(ArtifactStatus(target, "drift", diff))
            continue

        target.parent.mkdir(parents=True, exist_ok=True)
        with open(target, "w", encoding="utf-8", newline="\n") as f:
            f.write(artifact.content)
        logger.debug(f"wrote {target}")
        statuses.append(ArtifactStatus(target, "updated"))
    return statuses
