"""共通フィクスチャ"""

from __future__ import annotations

import importlib
import sys
from collections.abc import Callable, Iterator
from pathlib import Path
from types import ModuleType

import pytest

from bindtool.core.engine.emitter import write_artifacts
from bindtool.core.engine.loader import load_registry
from bindtool.core.engine.registry import TypeRegistry
from helpers import run

FIXTURES = Path(__file__).parent / "fixtures"


@pytest.fixture
def fixtures_dir() -> Path:
    return FIXTURES


@pytest.fixture
def opaque_registry() -> TypeRegistry:
    return load_registry(FIXTURES / "opaque_struct.yaml")


@pytest.fixture
def geometry_registry() -> TypeRegistry:
    return load_registry(FIXTURES / "geometry.yaml")


@pytest.fixture
def import_bindings(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[Callable[..., ModuleType]]:
    """Pythonバインディングを生成してimportする

    生成したパッケージはテスト終了時にsys.modulesから取り除く。
    """
    packages: list[str] = []

    def _import(registry: TypeRegistry, package: str = "demo_bindings", **options: object) -> ModuleType:
        result = run(registry, "py", package_name=package, library_name="demo", **options)
        assert result.ok, [str(d) for d in result.diagnostics]
        write_artifacts(result.artifacts, tmp_path)
        monkeypatch.syspath_prepend(str(tmp_path))
        packages.append(package)
        return importlib.import_module(package)

    yield _import

    for name in list(sys.modules):
        if any(name == package or name.startswith(f"{package}.") for package in packages):
            del sys.modules[name]
