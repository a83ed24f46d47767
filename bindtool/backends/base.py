"""バックエンド共通定義

各バックエンドは1つのホスト言語を対象とし、型ごとの生成計画（TypePlan）から
型単位の出力（TypeUnit）と、全型で共有するファイルを生成する。
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import ClassVar

from bindtool.core.base.ir import TypeDef, TypeId
from bindtool.core.engine.attr_filter import EnabledSurface
from bindtool.core.engine.config_model import GenerationConfig
from bindtool.core.engine.planner import TypePlan
from bindtool.core.engine.registry import TypeRegistry
from bindtool.core.engine.type_mapper import HostTypeSystem

GENERATED_NOTICE = "Generated by bindtool. Do not edit."


@dataclass(frozen=True)
class Artifact:
    """出力ファイル

    Attributes:
        path: 出力ディレクトリからの相対パス（POSIX形式）
        content: ファイル内容
    """

    path: str
    content: str


@dataclass(frozen=True)
class TypeUnit:
    """1つのTypeDefが出力に寄与する内容

    Attributes:
        plan: 生成計画
        files: 型単位のファイル
    """

    plan: TypePlan
    files: tuple[Artifact, ...] = ()

    @property
    def type_id(self) -> TypeId:
        return self.plan.type_id

    @property
    def symbols(self) -> list[str]:
        return self.plan.symbols


@dataclass(frozen=True)
class EmitContext:
    """バックエンドへの入力

    Attributes:
        config: 生成設定
        registry: 型Registry
        surface: 有効な型への参照解決
    """

    config: GenerationConfig
    registry: TypeRegistry
    surface: EnabledSurface


class Backend(ABC):
    """バックエンドの基底クラス

    Attributes:
        id: バックエンドID（属性のbackendと照合される）
        reserved_names: ランタイムが使用するため型名として使えない名前
    """

    id: ClassVar[str]
    description: ClassVar[str] = ""
    reserved_names: ClassVar[frozenset[str]] = frozenset()

    @abstractmethod
    def host_types(self, owner: TypeDef, ctx: EmitContext) -> HostTypeSystem:
        """ownerの出力単位から見たホスト型システム"""

    @abstractmethod
    def emit_type(self, plan: TypePlan, ctx: EmitContext) -> TypeUnit:
        """型単位の出力を生成"""

    @abstractmethod
    def emit_shared(self, units: list[TypeUnit], ctx: EmitContext) -> list[Artifact]:
        """全型で共有するファイルを生成（unitsは依存順）"""
