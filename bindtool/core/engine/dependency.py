"""型の依存グラフ

型参照からNetworkXの有向グラフを構築し、値埋め込み（by-value）依存の順序付けと再帰検出を行う。
"""

from __future__ import annotations

from collections.abc import Iterable

import networkx as nx
from typing_extensions import assert_never

from bindtool.core.base.ir import (
    EnumRef,
    FallibleRef,
    MethodDef,
    NullableRef,
    OpaqueRef,
    PrimitiveRef,
    SliceRef,
    StructDef,
    StructRef,
    TypeId,
    TypeRef,
    WriteableRef,
)


def referenced_ids(ref: TypeRef | None, by_value_only: bool = False) -> set[TypeId]:
    """TypeRefが参照するTypeId

    Args:
        ref: 型参照
        by_value_only: 完全な型定義が必要な参照（Struct値, Enum, 名前付きプリミティブ）のみ
    """
    if ref is None:
        return set()
    if isinstance(ref, PrimitiveRef):
        return {ref.alias} if ref.alias is not None else set()
    elif isinstance(ref, OpaqueRef):
        return set() if by_value_only else {ref.type_id}
    elif isinstance(ref, StructRef):
        return {ref.type_id}
    elif isinstance(ref, EnumRef):
        return {ref.type_id}
    elif isinstance(ref, (SliceRef, WriteableRef)):
        return set()
    elif isinstance(ref, NullableRef):
        return referenced_ids(ref.inner, by_value_only)
    elif isinstance(ref, FallibleRef):
        return referenced_ids(ref.ok, by_value_only) | referenced_ids(ref.err, by_value_only)
    else:
        assert_never(ref)


def method_refs(method: MethodDef) -> list[TypeRef]:
    """メソッドのパラメータ・戻り値の型参照"""
    refs = [p.type for p in method.params]
    if method.returns is not None:
        refs.append(method.returns)
    return refs


def build_struct_graph(structs: Iterable[StructDef]) -> nx.DiGraph:
    """Struct→フィールド型の値埋め込み依存グラフを構築

    Returns:
        NetworkX DiGraph（エッジはstruct→値として埋め込まれる型）
    """
    graph = nx.DiGraph()
    for struct in structs:
        graph.add_node(struct.id)
        for field_def in struct.fields:
            for dep in referenced_ids(field_def.type, by_value_only=True):
                graph.add_edge(struct.id, dep)
    return graph


def recursive_structs(graph: nx.DiGraph) -> set[TypeId]:
    """値埋め込みで自身を含むStruct（無限サイズ）"""
    recursive: set[TypeId] = set()
    for component in nx.strongly_connected_components(graph):
        if len(component) > 1:
            recursive.update(component)
        else:
            (node,) = component
            if graph.has_edge(node, node):
                recursive.add(node)
    return recursive


def layout_order(graph: nx.DiGraph, type_ids: Iterable[TypeId]) -> list[TypeId]:
    """依存先が先に来る順序（同順位はTypeId順）

    Raises:
        nx.NetworkXUnfeasible: 循環が存在する場合
    """
    wanted = set(type_ids)
    subgraph = graph.subgraph(node for node in graph.nodes if node in wanted)
    return list(nx.lexicographical_topological_sort(subgraph.reverse(copy=True)))
