"""
bindtool CLI - native library binding generator

Usage:
    python -m bindtool validate <ir_file>
    python -m bindtool gen <ir_file> [--backend py] [--output-dir DIR] [--features a,b]
    python -m bindtool check <ir_file> [--backend py] [--output-dir DIR]
    python -m bindtool symbols <ir_file> [--backend c]
    python -m bindtool version
"""

from __future__ import annotations

import logging
import sys
import traceback
from collections.abc import Iterable
from pathlib import Path

import fire

from bindtool import __version__
from bindtool.core.base.errors import LoweringError
from bindtool.core.base.ir import kind_label
from bindtool.core.engine.config_model import GenerationConfig, load_config
from bindtool.core.engine.emitter import write_artifacts
from bindtool.core.engine.loader import load_registry
from bindtool.core.engine.pipeline import GenerationResult, generate
from bindtool.core.engine.planner import count_declared
from bindtool.core.engine.registry import TypeRegistry
from bindtool.core.engine.report_formatter import format_generation_result
from bindtool.core.engine.symbols import render_mode

DEFAULT_BACKEND = "c"


def _feature_set(features: str | Iterable[str] | None) -> frozenset[str] | None:
    """--features の値（"a,b" またはfireが解釈したタプル）を集合に変換"""
    if features is None:
        return None
    if isinstance(features, (str, int, float)):
        items = str(features).split(",")
    else:
        items = [str(item) for item in features]
    return frozenset(item.strip() for item in items if item.strip())


def resolve_config(
    backend: str | None = None,
    output_dir: str | None = None,
    features: str | Iterable[str] | None = None,
    config: str | None = None,
    library_name: str | None = None,
    package_name: str | None = None,
) -> GenerationConfig:
    """CLIオプションと設定ファイルからGenerationConfigを構築（オプションが優先）"""
    overrides = {
        "backend": backend,
        "output_dir": output_dir,
        "features": _feature_set(features),
        "library_name": library_name,
        "package_name": package_name,
    }
    if config is not None:
        return load_config(config, **overrides)
    overrides["backend"] = backend or DEFAULT_BACKEND
    return GenerationConfig.model_validate({key: value for key, value in overrides.items() if value is not None})


def _load(ir_file: str) -> TypeRegistry:
    ir_path = Path(ir_file)
    if not ir_path.exists():
        print(f"❌ Error: IR file not found: {ir_path}")
        sys.exit(1)
    print(f"📖 Loading IR: {ir_path}")
    registry = load_registry(ir_path)
    type_count, method_count = count_declared(typedef for _, typedef in registry.all_types())
    print(f"✅ Loaded {type_count} type(s), {method_count} method(s)")
    return registry


def _setup_logging(debug: bool) -> None:
    if debug:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")


def _fail(exc: Exception, debug: bool) -> None:
    print(f"❌ Error: {exc}")
    if debug:
        traceback.print_exc()
    sys.exit(1)


class BindtoolCLI:
    """bindtool - generate host-language bindings and C ABI glue from a typed IR"""

    def _run(self, ir_file: str, config: GenerationConfig, verbose: bool) -> GenerationResult:
        registry = _load(ir_file)
        print(f"🔨 Generating '{config.backend}' bindings (features: {', '.join(sorted(config.features)) or '-'})")
        result = generate(registry, config)
        print(format_generation_result(result, verbose=verbose))
        if not result.ok:
            sys.exit(1)
        return result

    def validate(self, ir_file: str, debug: bool = False) -> None:
        """Validate an IR document (schema and references) without generating.

        Args:
            ir_file: Path to the IR YAML/JSON file
            debug: Enable debug output
        """
        _setup_logging(debug)
        try:
            registry = _load(ir_file)
            for type_id, typedef in registry.all_types():
                print(f"  • {type_id}: {typedef.name} ({kind_label(typedef)})")
            print("✅ IR is valid")
        except LoweringError as e:
            print(f"❌ {e}")
            sys.exit(1)
        except Exception as e:
            _fail(e, debug)

    def gen(
        self,
        ir_file: str,
        backend: str | None = None,
        output_dir: str | None = None,
        features: str | None = None,
        config: str | None = None,
        library_name: str | None = None,
        package_name: str | None = None,
        debug: bool = False,
        verbose: bool = False,
    ) -> None:
        """Generate bindings. Nothing is written when any type fails.

        Args:
            ir_file: Path to the IR YAML/JSON file
            backend: Target backend (c, py)
            output_dir: Output directory (default: generated/)
            features: Active features, comma separated
            config: Path to a config YAML (options override its values)
            library_name: Native library name
            package_name: Generated Python package name
            debug: Enable debug output
            verbose: Also list skipped items and generated types
        """
        _setup_logging(debug)
        try:
            cfg = resolve_config(backend, output_dir, features, config, library_name, package_name)
            result = self._run(ir_file, cfg, verbose)

            print(f"📁 Output directory: {cfg.output_dir}")
            statuses = write_artifacts(result.artifacts, cfg.output_dir)
            updated = 0
            for status in statuses:
                if status.state == "updated":
                    updated += 1
                    print(f"  ✅ {status.path}")
            print(f"\n✅ Generation complete! {updated} file(s) written, {len(statuses) - updated} unchanged")
        except LoweringError as e:
            print(f"❌ {e}")
            sys.exit(1)
        except Exception as e:
            _fail(e, debug)

    def check(
        self,
        ir_file: str,
        backend: str | None = None,
        output_dir: str | None = None,
        features: str | None = None,
        config: str | None = None,
        library_name: str | None = None,
        package_name: str | None = None,
        debug: bool = False,
    ) -> None:
        """Check that generated files on disk are up to date (exit 1 on drift).

        Args:
            ir_file: Path to the IR YAML/JSON file
            backend: Target backend (c, py)
            output_dir: Output directory to compare against
            features: Active features, comma separated
            config: Path to a config YAML (options override its values)
            library_name: Native library name
            package_name: Generated Python package name
            debug: Enable debug output
        """
        _setup_logging(debug)
        try:
            cfg = resolve_config(backend, output_dir, features, config, library_name, package_name)
            result = self._run(ir_file, cfg, verbose=False)

            statuses = write_artifacts(result.artifacts, cfg.output_dir, check=True)
            drifted = [status for status in statuses if status.state == "drift"]
            if drifted:
                print(f"\n❌ {len(drifted)} generated file(s) are out of date:\n")
                for status in drifted:
                    print(status.diff or f"  • {status.path}")
                sys.exit(1)
            print(f"✅ All {len(statuses)} generated file(s) are up to date")
        except LoweringError as e:
            print(f"❌ {e}")
            sys.exit(1)
        except Exception as e:
            _fail(e, debug)

    def symbols(
        self,
        ir_file: str,
        backend: str | None = None,
        features: str | None = None,
        config: str | None = None,
        debug: bool = False,
    ) -> None:
        """List exported native symbols with their C prototypes.

        Args:
            ir_file: Path to the IR YAML/JSON file
            backend: Target backend (c, py)
            features: Active features, comma separated
            config: Path to a config YAML
            debug: Enable debug output
        """
        _setup_logging(debug)
        try:
            cfg = resolve_config(backend=backend, features=features, config=config)
            result = self._run(ir_file, cfg, verbose=False)
            for unit in result.units:
                print(f"\n{unit.plan.typedef.name}:")
                for signature in unit.plan.signatures:
                    print(f"  {signature.symbol}  [{render_mode(signature.mode)}]")
                    print(f"      {signature.prototype()}")
        except LoweringError as e:
            print(f"❌ {e}")
            sys.exit(1)
        except Exception as e:
            _fail(e, debug)

    def version(self) -> str:
        """Show the bindtool version."""
        return f"bindtool {__version__}"


def bindtool_main() -> None:
    """bindtool CLI entry point (called from python -m bindtool)."""
    fire.Fire(BindtoolCLI)


if __name__ == "__main__":
    bindtool_main()
