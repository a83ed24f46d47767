"""テスト用ヘルパー"""

from __future__ import annotations

from bindtool.core.engine.config_model import GenerationConfig
from bindtool.core.engine.loader import load_document
from bindtool.core.engine.pipeline import GenerationResult, generate
from bindtool.core.engine.registry import TypeRegistry


def registry_of(*types: dict) -> TypeRegistry:
    """型定義のdictからRegistryを構築"""
    return load_document({"version": "1", "types": list(types)})


def run(registry: TypeRegistry, backend: str = "c", **options: object) -> GenerationResult:
    """設定を組み立てて生成を実行"""
    return generate(registry, GenerationConfig(backend=backend, **options))


def artifact_text(result: GenerationResult, path: str) -> str:
    for artifact in result.artifacts:
        if artifact.path == path:
            return artifact.content
    raise AssertionError(f"{path} not generated; got {[a.path for a in result.artifacts]}")


def diagnostics_of(result: GenerationResult) -> list[tuple[str, str | None, str]]:
    """(type_id, method, kind) の一覧"""
    return [(d.type_id, d.method, d.kind.value) for d in result.diagnostics]
