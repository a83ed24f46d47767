"""Type Registry: IR型定義の不変ストア

生成実行ごとに1回だけ構築され、以降は読み取り専用。
全コンポーネントはRegistryを明示的に受け取る（グローバル状態は持たない）。
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from types import MappingProxyType

from bindtool.core.base.errors import LoweringError, UnknownTypeId
from bindtool.core.base.ir import IRMeta, TypeDef, TypeId


class TypeRegistry:
    """IR型定義の不変ストア

    Attributes:
        meta: IRドキュメントのメタデータ
    """

    __slots__ = ("_types", "meta")

    def __init__(self, types: Iterable[TypeDef], meta: IRMeta | None = None) -> None:
        """初期化

        Args:
            types: 型定義
            meta: メタデータ

        Raises:
            LoweringError: TypeIdが重複している場合
        """
        collected: dict[TypeId, TypeDef] = {}
        duplicates: list[str] = []
        for typedef in types:
            if typedef.id in collected:
                duplicates.append(f"duplicate type id '{typedef.id}'")
                continue
            collected[typedef.id] = typedef
        if duplicates:
            raise LoweringError("Registry construction failed", duplicates)

        self._types = MappingProxyType(dict(sorted(collected.items())))
        self.meta = meta or IRMeta()

    def all_types(self) -> list[tuple[TypeId, TypeDef]]:
        """全型定義（TypeId順）"""
        return list(self._types.items())

    def resolve(self, type_id: TypeId) -> TypeDef:
        """TypeIdから型定義を解決

        Raises:
            UnknownTypeId: 存在しないTypeIdの場合
        """
        try:
            return self._types[type_id]
        except KeyError:
            raise UnknownTypeId(type_id) from None

    def name_of(self, type_id: TypeId) -> str:
        """TypeIdから型名を解決"""
        return self.resolve(type_id).name

    def __contains__(self, type_id: object) -> bool:
        return type_id in self._types

    def __iter__(self) -> Iterator[TypeId]:
        return iter(self._types)

    def __len__(self) -> int:
        return len(self._types)

    def __repr__(self) -> str:
        return f"TypeRegistry({self.meta.name!r}, {len(self)} types)"
