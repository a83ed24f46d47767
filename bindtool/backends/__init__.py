"""バックエンド一覧

- c: ネイティブ側が実装するC ABIヘッダー
- py: Python ctypesバインディング（+ Cヘッダー）
"""

from bindtool.backends.base import Backend
from bindtool.backends.c_header import CBackend
from bindtool.backends.py_ctypes import PyCtypesBackend

BACKENDS: dict[str, type[Backend]] = {
    CBackend.id: CBackend,
    PyCtypesBackend.id: PyCtypesBackend,
}


def known_backends() -> frozenset[str]:
    return frozenset(BACKENDS)


def create_backend(backend_id: str) -> Backend:
    """バックエンドIDからバックエンドを生成

    Raises:
        ValueError: 未知のバックエンドID
    """
    try:
        return BACKENDS[backend_id]()
    except KeyError:
        known = ", ".join(sorted(BACKENDS))
        raise ValueError(f"Unknown backend '{backend_id}' (known: {known})") from None
