"""生成パイプライン

Registry → Filter → (Mapper, Formatter, Ownership Tracker) → Backend → Emitter

有効な型はTypeId順に1つずつ独立して処理され、型ごとの失敗はDiagnosticとして収集される。
全ての型を処理した後に、実行全体の成否を集約する（Diagnosticが0件の場合のみ成功）。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from bindtool.backends import create_backend, known_backends
from bindtool.backends.base import Artifact, Backend, EmitContext, TypeUnit
from bindtool.core.base.errors import (
    Diagnostic,
    DiagnosticBag,
    GenerationError,
    MethodErrors,
    SkippedItem,
)
from bindtool.core.base.ir import StructDef
from bindtool.core.engine.attr_filter import EnabledSurface, FilterContext, filter_registry
from bindtool.core.engine.config_model import GenerationConfig
from bindtool.core.engine.dependency import build_struct_graph, recursive_structs
from bindtool.core.engine.emitter import assemble
from bindtool.core.engine.planner import TypePlanner
from bindtool.core.engine.registry import TypeRegistry

logger = logging.getLogger(__name__)


@dataclass
class GenerationResult:
    """生成実行の結果

    Attributes:
        artifacts: 出力ファイル（失敗時も成功した型の分は含む。書き込むかどうかは呼び出し側が決める）
        diagnostics: 収集された問題（ソート済み）
        skipped: フィルタで除外された項目
        units: 出力に含まれた型単位
    """

    artifacts: list[Artifact] = field(default_factory=list)
    diagnostics: list[Diagnostic] = field(default_factory=list)
    skipped: list[SkippedItem] = field(default_factory=list)
    units: list[TypeUnit] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.diagnostics

    @property
    def symbols(self) -> list[str]:
        return sorted(symbol for unit in self.units for symbol in unit.symbols)


def generate(registry: TypeRegistry, config: GenerationConfig, backend: Backend | None = None) -> GenerationResult:
    """生成を実行

    Args:
        registry: 構築済みRegistry
        config: 生成設定
        backend: バックエンド（Noneの場合はconfig.backendから作成）

    Returns:
        GenerationResult: 生成結果
    """
    backend = backend or create_backend(config.backend)
    filter_ctx = FilterContext(
        backend=backend.id,
        features=frozenset(config.features),
        known_backends=known_backends() | config.foreign_backends,
    )
    filtered = filter_registry(registry, filter_ctx)
    surface = EnabledSurface(registry, filtered)
    ctx = EmitContext(config=config, registry=registry, surface=surface)

    bag = DiagnosticBag()
    bag.extend(filtered.diagnostics)
    failed = filtered.failed_types()

    struct_graph = build_struct_graph(t for t in filtered.types.values() if isinstance(t, StructDef))
    planner = TypePlanner(
        surface,
        pointer_width=config.pointer_width,
        recursive=recursive_structs(struct_graph),
        reserved_names=backend.reserved_names,
    )

    units: list[TypeUnit] = []
    for type_id, typedef in filtered.types.items():
        if type_id in failed:
            continue
        try:
            plan = planner.plan(typedef, backend.host_types(typedef, ctx))
            units.append(backend.emit_type(plan, ctx))
        except MethodErrors as exc:
            for error in exc.errors:
                bag.add(error.to_diagnostic(type_id))
        except GenerationError as exc:
            bag.add(exc.to_diagnostic(type_id))

    emitted = assemble(units, backend, ctx)
    bag.extend(emitted.diagnostics)

    result = GenerationResult(
        artifacts=emitted.artifacts,
        diagnostics=bag.sorted(),
        skipped=filtered.skipped,
        units=emitted.units,
    )
    logger.info(
        f"{backend.id}: {len(result.units)} type(s) generated, "
        f"{len(result.diagnostics)} error(s), {len(result.skipped)} skipped"
    )
    return result
