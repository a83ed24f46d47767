"""CLIエンドツーエンドテスト

CLIコマンドの実行結果を検証（内部実装に依存しない）
"""

import json
import subprocess
import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parent.parent
FIXTURES = Path(__file__).parent / "fixtures"


def bindtool(*args: str) -> subprocess.CompletedProcess:
    return subprocess.run(
        [sys.executable, "-m", "bindtool", *args],
        capture_output=True,
        text=True,
        cwd=REPO_ROOT,
    )


BROKEN_IR = """\
version: "1"
types:
  - id: Broken
    kind: opaque
    methods:
      - name: lines
        returns: {slice: strs}
  - id: Fine
    kind: opaque
"""


class TestCLIValidateCommand:
    """bindtool validate コマンドのE2Eテスト"""

    def test_validate_success(self):
        result = bindtool("validate", str(FIXTURES / "geometry.yaml"))

        assert result.returncode == 0
        assert "✅ Loaded 7 type(s), 13 method(s)" in result.stdout
        assert "• Canvas: Canvas (opaque)" in result.stdout
        assert "✅ IR is valid" in result.stdout

    def test_validate_nonexistent_file(self):
        """存在しないIRファイルでエラー"""
        result = bindtool("validate", "nonexistent.yaml")

        assert result.returncode == 1
        assert "not found" in result.stdout.lower()

    def test_validate_unknown_reference(self, tmp_path: Path):
        """未定義の型参照はLoweringErrorとして報告"""
        ir_file = tmp_path / "ir.yaml"
        ir_file.write_text(
            'version: "1"\ntypes:\n  - id: Shape\n    kind: struct\n    fields:\n      - {name: origin, type: Vec2}\n',
            encoding="utf-8",
        )

        result = bindtool("validate", str(ir_file))

        assert result.returncode == 1
        assert "unknown type 'Vec2'" in result.stdout


class TestCLIGenCommand:
    """bindtool gen コマンドのE2Eテスト"""

    def test_gen_c_headers(self, tmp_path: Path):
        result = bindtool("gen", str(FIXTURES / "opaque_struct.yaml"), "--output-dir", str(tmp_path))

        assert result.returncode == 0, result.stdout
        assert "✅ Generation complete!" in result.stdout
        assert (tmp_path / "include" / "OpaqueStruct.h").exists()
        assert (tmp_path / "include" / "bridge_runtime.h").exists()
        manifest = json.loads((tmp_path / "bindtool-manifest.json").read_text(encoding="utf-8"))
        assert manifest["backend"] == "c"

    def test_gen_python_with_features(self, tmp_path: Path):
        result = bindtool(
            "gen",
            str(FIXTURES / "geometry.yaml"),
            "--backend",
            "py",
            "--features",
            "simd",
            "--library-name",
            "geometry",
            "--output-dir",
            str(tmp_path),
            "--verbose",
        )

        assert result.returncode == 0, result.stdout
        assert "⏭️  Skipped (1 item):" in result.stdout
        assert "GpuSurface: disabled for backend" in result.stdout
        abi = (tmp_path / "geometry_bindings" / "_abi.py").read_text(encoding="utf-8")
        assert '"Canvas_blur"' in abi

    def test_gen_twice_reports_unchanged(self, tmp_path: Path):
        args = ("gen", str(FIXTURES / "opaque_struct.yaml"), "--output-dir", str(tmp_path))
        bindtool(*args)

        result = bindtool(*args)

        assert result.returncode == 0
        assert "0 file(s) written" in result.stdout

    def test_gen_with_errors_writes_nothing(self, tmp_path: Path):
        """1つでも型が失敗した場合は何も書き込まない"""
        ir_file = tmp_path / "broken.yaml"
        ir_file.write_text(BROKEN_IR, encoding="utf-8")
        output_dir = tmp_path / "out"

        result = bindtool("gen", str(ir_file), "--output-dir", str(output_dir))

        assert result.returncode == 1
        assert "❌ Generation failed with 1 error(s):" in result.stdout
        assert "🚫 Unsupported Types (1 error):" in result.stdout
        assert "Broken::lines" in result.stdout
        assert not output_dir.exists()

    def test_gen_with_config_file(self, tmp_path: Path):
        config_file = tmp_path / "bindtool.yaml"
        config_file.write_text(
            f"backend: py\nlibrary_name: counter\noutput_dir: {tmp_path / 'from_config'}\n", encoding="utf-8"
        )

        result = bindtool("gen", str(FIXTURES / "opaque_struct.yaml"), "--config", str(config_file))

        assert result.returncode == 0, result.stdout
        assert (tmp_path / "from_config" / "counter_bindings" / "opaque_struct.py").exists()

    def test_gen_unknown_backend(self, tmp_path: Path):
        result = bindtool("gen", str(FIXTURES / "opaque_struct.yaml"), "--backend", "java", "--output-dir", str(tmp_path))

        assert result.returncode == 1
        assert "Unknown backend 'java'" in result.stdout


class TestCLICheckCommand:
    """bindtool check コマンドのE2Eテスト"""

    def test_check_up_to_date_and_drift(self, tmp_path: Path):
        args = ("--backend", "py", "--output-dir", str(tmp_path))
        bindtool("gen", str(FIXTURES / "opaque_struct.yaml"), *args)

        clean = bindtool("check", str(FIXTURES / "opaque_struct.yaml"), *args)
        assert clean.returncode == 0
        assert "✅ All 8 generated file(s) are up to date" in clean.stdout

        (tmp_path / "include" / "OpaqueStruct.h").write_text("/* edited */\n", encoding="utf-8")
        drift = bindtool("check", str(FIXTURES / "opaque_struct.yaml"), *args)

        assert drift.returncode == 1
        assert "❌ 1 generated file(s) are out of date" in drift.stdout
        assert "-/* edited */" in drift.stdout
        assert (tmp_path / "include" / "OpaqueStruct.h").read_text(encoding="utf-8") == "/* edited */\n"


class TestCLIOtherCommands:
    def test_symbols(self):
        result = bindtool("symbols", str(FIXTURES / "opaque_struct.yaml"))

        assert result.returncode == 0
        assert "OpaqueStruct_checked_div  [result struct]" in result.stdout
        assert "void OpaqueStruct_checked_div(int32_t a, int32_t b, OpaqueStruct_checked_div_result* out);" in result.stdout
        assert "OpaqueStruct_destroy" in result.stdout

    def test_version(self):
        result = bindtool("version")

        assert result.returncode == 0
        assert "bindtool 0.1.0" in result.stdout
