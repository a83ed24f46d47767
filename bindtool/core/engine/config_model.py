"""生成設定のモデル定義とロード機能

CLI/設定ファイル層で解決済みの設定値を表す。コアは生のコマンドライン文字列や環境変数を読まない。
"""

from __future__ import annotations

import re
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class GenerationConfig(BaseModel):
    """1回の生成実行の設定

    Attributes:
        backend: 対象バックエンドID（1実行につき1つ）
        output_dir: 出力先ディレクトリ
        features: 有効なフィーチャー名
        library_name: ネイティブライブラリ名（libNAME.so / NAME.dll）
        package_name: 生成するホストパッケージ名（Noneの場合はlibrary_nameから導出）
        pointer_width: ネイティブABIのポインタ幅・レジスタ幅（バイト）
        foreign_backends: このツールでは生成しないが、IRの属性に記述されうるバックエンドID
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    backend: str
    output_dir: Path = Path("generated")
    features: frozenset[str] = Field(default_factory=frozenset)
    library_name: str = "native"
    package_name: str | None = None
    pointer_width: int = 8
    foreign_backends: frozenset[str] = Field(default_factory=frozenset)

    @field_validator("features", "foreign_backends")
    @classmethod
    def _check_features(cls, value: frozenset[str]) -> frozenset[str]:
        for feature in value:
            if not feature:
                raise ValueError("names must not be empty")
        return value

    @field_validator("library_name", "package_name")
    @classmethod
    def _check_identifier(cls, value: str | None) -> str | None:
        if value is not None and not _IDENTIFIER.match(value):
            raise ValueError(f"'{value}' is not a valid identifier")
        return value

    @field_validator("pointer_width")
    @classmethod
    def _check_pointer_width(cls, value: int) -> int:
        if value not in (4, 8):
            raise ValueError("pointer_width must be 4 or 8")
        return value

    @property
    def host_package(self) -> str:
        """生成するホストパッケージ名"""
        return self.package_name or f"{self.library_name.lower()}_bindings"


def load_config(config_path: str | Path, **overrides: object) -> GenerationConfig:
    """設定YAMLをロードして検証

    Args:
        config_path: 設定YAMLのパス
        **overrides: ファイルの値を上書きする値（Noneは無視）

    Returns:
        GenerationConfig: 検証済み設定

    Raises:
        FileNotFoundError: ファイルが存在しない
        yaml.YAMLError: YAML形式エラー
        pydantic.ValidationError: Pydantic検証エラー
    """
    config_path_obj = Path(config_path)

    if not config_path_obj.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path_obj, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    data.update({key: value for key, value in overrides.items() if value is not None})
    return GenerationConfig.model_validate(data)
