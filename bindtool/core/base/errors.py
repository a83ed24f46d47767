"""エラー種別と診断情報の定義

型ごとの失敗は例外として送出され、型の境界で捕捉されてDiagnosticに変換される。
実行全体の結果は収集されたDiagnosticのリストで判定する。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from bindtool.core.base.ir import TypeId


class ErrorKind(str, Enum):
    """エラー種別"""

    UNRESOLVED_TYPE_REFERENCE = "UnresolvedTypeReference"
    NAMING_CONFLICT = "NamingConflict"
    UNSUPPORTED_TYPE = "UnsupportedType"
    ATTRIBUTE_RESOLUTION = "AttributeResolutionError"
    LOWERING = "LoweringError"
    LIFETIME_VIOLATION = "LifetimeViolation"


@dataclass(frozen=True)
class Diagnostic:
    """型（およびメソッド）単位の診断

    Attributes:
        type_id: 対象TypeDef
        method: 対象メソッド（型レベルの場合はNone）
        kind: エラー種別
        message: メッセージ
    """

    type_id: TypeId
    method: str | None
    kind: ErrorKind
    message: str

    @property
    def location(self) -> str:
        if self.method:
            return f"{self.type_id}::{self.method}"
        return str(self.type_id)

    def sort_key(self) -> tuple[str, str, str, str]:
        return (str(self.type_id), self.method or "", self.kind.value, self.message)

    def __str__(self) -> str:
        return f"[{self.kind.value}] {self.location}: {self.message}"


class GenerationError(Exception):
    """型単位パイプライン内で送出されるエラーの基底クラス"""

    kind: ErrorKind = ErrorKind.UNSUPPORTED_TYPE

    def __init__(self, message: str, *, type_id: TypeId | None = None, method: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.type_id = type_id
        self.method = method

    def to_diagnostic(self, type_id: TypeId, method: str | None = None) -> Diagnostic:
        """Diagnosticに変換（送出時の位置情報を優先）"""
        return Diagnostic(
            type_id=self.type_id or type_id,
            method=self.method if self.method is not None else method,
            kind=self.kind,
            message=self.message,
        )


class UnresolvedTypeReferenceError(GenerationError):
    """有効なメソッドがこのバックエンドで無効な型を参照している"""

    kind = ErrorKind.UNRESOLVED_TYPE_REFERENCE


class NamingConflictError(GenerationError):
    """生成されるネイティブシンボル（または出力パス）が衝突している"""

    kind = ErrorKind.NAMING_CONFLICT


class UnsupportedTypeError(GenerationError):
    """このバックエンドが実装していないIRバリアント・組み合わせ"""

    kind = ErrorKind.UNSUPPORTED_TYPE


class AttributeResolutionError(GenerationError):
    """不正または矛盾した解決済み属性"""

    kind = ErrorKind.ATTRIBUTE_RESOLUTION


class LifetimeViolationError(GenerationError):
    """借用戻り値の借用元が存在しない、または不正"""

    kind = ErrorKind.LIFETIME_VIOLATION


class MethodErrors(GenerationError):
    """1つの型で収集された複数のエラー"""

    def __init__(self, errors: list[GenerationError]) -> None:
        super().__init__(f"{len(errors)} error(s)")
        self.errors = errors


class LoweringError(Exception):
    """IR構築の失敗（生成の前提条件違反、致命的）

    Attributes:
        problems: 検出された問題のリスト
    """

    def __init__(self, message: str, problems: list[str] | None = None) -> None:
        self.problems: list[str] = list(problems or [])
        if self.problems:
            details = "\n".join(f"  - {p}" for p in self.problems)
            message = f"{message}\n{details}"
        super().__init__(message)


class UnknownTypeId(KeyError):
    """RegistryにTypeIdが存在しない"""

    def __init__(self, type_id: str) -> None:
        super().__init__(type_id)
        self.type_id = type_id

    def __str__(self) -> str:
        return f"unknown type id '{self.type_id}'"


@dataclass
class SkippedItem:
    """フィルタにより除外された項目（エラーではない）"""

    type_id: TypeId
    method: str | None = None
    reason: str = "disabled for backend"

    @property
    def location(self) -> str:
        if self.method:
            return f"{self.type_id}::{self.method}"
        return str(self.type_id)


@dataclass
class DiagnosticBag:
    """Diagnosticの収集器"""

    items: list[Diagnostic] = field(default_factory=list)

    def add(self, diagnostic: Diagnostic) -> None:
        self.items.append(diagnostic)

    def extend(self, diagnostics: list[Diagnostic]) -> None:
        self.items.extend(diagnostics)

    def sorted(self) -> list[Diagnostic]:
        return sorted(set(self.items), key=Diagnostic.sort_key)

    def __len__(self) -> int:
        return len(self.items)
