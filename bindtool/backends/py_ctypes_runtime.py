"""Pythonバックエンド: ``_abi.py``（ctypesランタイム）の生成

生成パッケージ内の低レベル層。以下を含む:

- Opaqueハンドル基底クラス（ネイティブポインタ + 所有タグ、weakref.finalizeによる一度きりの破棄）
- BridgeStrView / BridgeSlice / BridgeWrite のctypesミラーとWriter
- Structのctypesミラー（値埋め込みの依存順）と戻り値用構造体
- 全エクスポートシンボルのプロトタイプ表と ``bind()`` / ``load()`` / ``lib()``
"""

from __future__ import annotations

from typing_extensions import assert_never

from bindtool.backends.base import GENERATED_NOTICE, EmitContext, TypeUnit
from bindtool.core.base.ir import StructDef
from bindtool.core.engine.symbols import ResultStruct, Signature
from bindtool.core.engine.type_mapper import CType

CTYPES_PRIMITIVES: dict[str, str] = {
    "bool": "ctypes.c_bool",
    "char": "ctypes.c_uint32",
    "u8": "ctypes.c_uint8",
    "i8": "ctypes.c_int8",
    "u16": "ctypes.c_uint16",
    "i16": "ctypes.c_int16",
    "u32": "ctypes.c_uint32",
    "i32": "ctypes.c_int32",
    "u64": "ctypes.c_uint64",
    "i64": "ctypes.c_int64",
    "usize": "ctypes.c_size_t",
    "isize": "ctypes.c_ssize_t",
    "f32": "ctypes.c_float",
    "f64": "ctypes.c_double",
}

RUNTIME_PY_NAMES = frozenset(
    {"BindingError", "Opaque", "Writer", "bind", "load", "lib", "slice_arg", "read_slice", "ctypes", "os", "weakref"}
)


def ctypes_expr(ctype: CType) -> str:
    """C型に対応するctypes式（``_abi``モジュール内で評価される）"""
    if ctype.pointer:
        if ctype.kind == "opaque":
            return "ctypes.c_void_p"
        if ctype.kind == "text":
            return "ctypes.c_char_p"
        return f"ctypes.POINTER({ctypes_expr(CType(ctype.name, ctype.kind, primitive=ctype.primitive))})"

    kind = ctype.kind
    if kind == "scalar":
        return CTYPES_PRIMITIVES[ctype.primitive or "i32"]
    elif kind == "text":
        return "ctypes.c_char"
    elif kind == "enum":
        return "ctypes.c_int32"
    elif kind in ("struct", "runtime", "result"):
        return ctype.name
    elif kind == "opaque":
        return "ctypes.c_void_p"
    else:
        assert_never(kind)


def _render_struct_mirror(unit: TypeUnit) -> list[str]:
    typedef = unit.plan.typedef
    lines = [f"class {typedef.name}(ctypes.Structure):", "    _fields_ = ["]
    for field_plan in unit.plan.fields:
        for slot in field_plan.mapped.native.slots:
            lines.append(f'        ("{field_plan.field.name}{slot.suffix}", {ctypes_expr(slot.ctype)}),')
    lines.append("    ]")
    return lines


def _render_result_mirror(result: ResultStruct) -> list[str]:
    members = [(name, ctype) for name, ctype in (("ok", result.ok), ("err", result.err)) if ctype is not None]
    lines = [f"class {result.name}(ctypes.Structure):"]
    if not members:
        lines.append('    _fields_ = [("is_ok", ctypes.c_bool)]')
        return lines
    lines.append("    class _Payload(ctypes.Union):")
    lines.append("        _fields_ = [")
    lines.extend(f'            ("{name}", {ctypes_expr(ctype)}),' for name, ctype in members)
    lines.append("        ]")
    lines.append("")
    lines.append('    _anonymous_ = ("payload",)')
    lines.append('    _fields_ = [("payload", _Payload), ("is_ok", ctypes.c_bool)]')
    return lines


def _render_prototype(signature: Signature) -> str:
    argtypes = ", ".join(ctypes_expr(p.ctype) for p in signature.params)
    restype = ctypes_expr(signature.returns) if signature.returns is not None else "None"
    return f'    "{signature.symbol}": ([{argtypes}], {restype}),'


_RUNTIME = '''\
_lib = None


class BindingError(Exception):
    """A fallible native call returned its error outcome.

    Attributes:
        payload: the converted error payload (None for a unit error)
    """

    def __init__(self, payload=None):
        super().__init__(payload)
        self.payload = payload


class Opaque:
    """Base class of handle wrappers: one native pointer plus an ownership tag.

    Owned handles release their native object exactly once, when the wrapper is
    garbage collected or leaves a ``with`` block. Borrowed handles keep the
    objects they borrow from alive and never release anything.
    """

    __slots__ = ("_ptr", "_owned", "_keepalive", "_finalizer", "__weakref__")
    _destructor = None

    def __init__(self, *args, **kwargs):
        raise TypeError(f"{type(self).__name__} handles are only created by native calls")

    @classmethod
    def _adopt(cls, ptr):
        if not ptr:
            raise ValueError(f"native call returned a null {cls.__name__}")
        self = object.__new__(cls)
        self._ptr = ptr
        self._owned = True
        self._keepalive = ()
        self._finalizer = weakref.finalize(self, getattr(lib(), cls._destructor), ptr)
        return self

    @classmethod
    def _borrow(cls, ptr, keepalive=()):
        if not ptr:
            raise ValueError(f"native call returned a null {cls.__name__}")
        self = object.__new__(cls)
        self._ptr = ptr
        self._owned = False
        self._keepalive = tuple(keepalive)
        self._finalizer = None
        return self

    def _handle(self):
        if self._ptr is None:
            raise ValueError(f"{type(self).__name__} has been released")
        return self._ptr

    def _consume(self):
        ptr = self._handle()
        if not self._owned:
            raise ValueError(f"cannot transfer ownership of a borrowed {type(self).__name__}")
        self._finalizer.detach()
        self._ptr = None
        return ptr

    def _release(self):
        if self._finalizer is not None:
            self._finalizer()
        self._ptr = None
        self._keepalive = ()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self._release()

    def __repr__(self):
        tag = "owned" if self._owned else "borrowed"
        state = "released" if self._ptr is None else hex(self._ptr)
        return f"<{type(self).__name__} {tag} {state}>"


class BridgeStrView(ctypes.Structure):
    _fields_ = [("data", ctypes.c_char_p), ("len", ctypes.c_size_t)]


class BridgeSlice(ctypes.Structure):
    _fields_ = [("data", ctypes.c_void_p), ("len", ctypes.c_size_t)]


class BridgeWrite(ctypes.Structure):
    pass


_FLUSH = ctypes.CFUNCTYPE(None, ctypes.POINTER(BridgeWrite))
_GROW = ctypes.CFUNCTYPE(ctypes.c_bool, ctypes.POINTER(BridgeWrite), ctypes.c_size_t)

BridgeWrite._fields_ = [
    ("context", ctypes.c_void_p),
    ("buf", ctypes.POINTER(ctypes.c_char)),
    ("len", ctypes.c_size_t),
    ("cap", ctypes.c_size_t),
    ("flush", _FLUSH),
    ("grow", _GROW),
]


class Writer:
    """Host-owned growable UTF-8 buffer, passed to native code as a BridgeWrite sink."""

    def __init__(self, capacity=64):
        self._buffer = ctypes.create_string_buffer(capacity)
        self._grow_cb = _GROW(self._grow)
        self._flush_cb = _FLUSH(self._flush)
        self._write = BridgeWrite(
            None,
            ctypes.cast(self._buffer, ctypes.POINTER(ctypes.c_char)),
            0,
            capacity,
            self._flush_cb,
            self._grow_cb,
        )
        self.flushed = False

    def _grow(self, write, needed):
        capacity = max(needed, 2 * self._write.cap)
        buffer = ctypes.create_string_buffer(capacity)
        ctypes.memmove(buffer, self._buffer, self._write.len)
        self._buffer = buffer
        self._write.buf = ctypes.cast(buffer, ctypes.POINTER(ctypes.c_char))
        self._write.cap = capacity
        return True

    def _flush(self, write):
        self.flushed = True

    def pointer(self):
        return ctypes.pointer(self._write)

    def getvalue(self):
        return ctypes.string_at(self._buffer, self._write.len).decode("utf-8")


_ELEMENT_TYPES = {
    "bool": ctypes.c_bool,
    "char": ctypes.c_uint32,
    "u8": ctypes.c_uint8,
    "i8": ctypes.c_int8,
    "u16": ctypes.c_uint16,
    "i16": ctypes.c_int16,
    "u32": ctypes.c_uint32,
    "i32": ctypes.c_int32,
    "u64": ctypes.c_uint64,
    "i64": ctypes.c_int64,
    "usize": ctypes.c_size_t,
    "isize": ctypes.c_ssize_t,
    "f32": ctypes.c_float,
    "f64": ctypes.c_double,
}


def slice_arg(values, encoding, element=None):
    """Encodes a host value as a (data, len) argument pair.

    The third item owns the encoded buffers and must stay referenced until the call returns.
    None encodes as (NULL, 0).
    """
    if values is None:
        return None, 0, None
    if encoding == "utf8":
        data = values.encode("utf-8")
        return data, len(data), data
    if encoding == "utf16":
        data = values.encode("utf-16-le")
        array = (ctypes.c_uint16 * (len(data) // 2)).from_buffer_copy(data)
        return array, len(array), array
    if encoding == "strs":
        encoded = [value.encode("utf-8") for value in values]
        array = (BridgeStrView * len(encoded))(*[BridgeStrView(item, len(item)) for item in encoded])
        return array, len(array), (array, encoded)
    if element == "char":
        values = [ord(value) for value in values]
    array = (_ELEMENT_TYPES[element] * len(values))(*values)
    return array, len(array), array


def read_slice(view, encoding, element=None):
    """Copies a native BridgeSlice into a host value."""
    if encoding == "utf8":
        return ctypes.string_at(view.data, view.len).decode("utf-8") if view.len else ""
    if encoding == "utf16":
        return ctypes.string_at(view.data, 2 * view.len).decode("utf-16-le") if view.len else ""
    if element == "u8":
        return ctypes.string_at(view.data, view.len) if view.len else b""
    if not view.len:
        return []
    values = list((_ELEMENT_TYPES[element] * view.len).from_address(view.data))
    if element == "char":
        return [chr(value) for value in values]
    return values
'''

_LOADER = '''\
def bind(library):
    """Declares argtypes/restype of every exported symbol and makes `library` current."""
    global _lib
    for symbol, (argtypes, restype) in PROTOTYPES.items():
        function = getattr(library, symbol)
        function.argtypes = argtypes
        function.restype = restype
    _lib = library
    return library


def load(path=None):
    """Loads the native library from `path`, the LIBRARY_ENV variable or the system search path."""
    path = path or os.environ.get(LIBRARY_ENV) or ctypes.util.find_library(LIBRARY_NAME)
    if not path:
        raise OSError(f"cannot locate the {LIBRARY_NAME} native library; set {LIBRARY_ENV}")
    return bind(ctypes.CDLL(path))


def lib():
    """The bound native library (loaded on first use)."""
    if _lib is None:
        load()
    return _lib
'''


def render_abi_module(units: list[TypeUnit], ctx: EmitContext) -> str:
    """``_abi.py`` を生成（unitsは依存順）"""
    library = ctx.config.library_name
    lines = [
        '"""Low-level ctypes ABI of the ' + library + " native library.",
        "",
        GENERATED_NOTICE,
        '"""',
        "",
        "import ctypes",
        "import ctypes.util",
        "import os",
        "import weakref",
        "",
        f'LIBRARY_NAME = "{library}"',
        f'LIBRARY_ENV = "{library.upper()}_LIBRARY"',
        "",
    ]
    lines.append(_RUNTIME)

    for unit in units:
        if isinstance(unit.plan.typedef, StructDef):
            lines.append("")
            lines.extend(_render_struct_mirror(unit))
            lines.append("")

    for unit in units:
        for method_plan in unit.plan.methods:
            if method_plan.signature.result is not None:
                lines.append("")
                lines.extend(_render_result_mirror(method_plan.signature.result))
                lines.append("")

    lines.append("")
    lines.append("PROTOTYPES = {")
    for unit in units:
        for signature in unit.plan.signatures:
            lines.append(_render_prototype(signature))
    lines.append("}")
    lines.append("")
    lines.append("")
    lines.append(_LOADER)
    return "\n".join(lines)
