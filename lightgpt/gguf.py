"""Reading tensor definitions and sample weights from GGUF model files."""

from __future__ import annotations

import math
import os
import struct
import sys
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import BinaryIO, Iterable, Iterator, Sequence

# Value type codes used in the metadata section.
_TYPE_UINT32 = 4
_TYPE_INT32 = 5
_TYPE_STRING = 6
_TYPE_FLOAT32 = 7
_TYPE_ARRAY = 8

# Bytes skipped for value types without a known layout.
_UNKNOWN_SKIP = 8
_ANALYZE_UNKNOWN_SKIP = 64

# Rough start of the tensor data region.
_DATA_BASE_OFFSET = 512
_MAX_SAMPLE_VALUES = 10
_ANALYZE_MAX_DIMS = 4

SAMPLE_TENSORS = (
    "token_embd.weight",
    "blk.0.attn_q.weight",
    "blk.0.attn_k.weight",
    "output.weight",
)
KEY_PATTERNS = ("token_embd", "attn", "ffn", "output")


class GGUFError(Exception):
    """Raised when a model file cannot be opened or is truncated."""


@dataclass(frozen=True)
class TensorInfo:
    """One tensor definition from the tensor-info section."""

    name: str
    type: int
    dimensions: tuple[int, ...] = field(default_factory=tuple)
    offset: int = 0

    def param_count(self) -> int:
        """Number of elements in the tensor."""
        return math.prod(self.dimensions)

    @property
    def size_bytes(self) -> int:
        """Approximate size: four bytes per element for type 0, two otherwise."""
        return self.param_count() * (4 if self.type == 0 else 2)


class _Reader:
    """Little-endian field reader over a binary stream."""

    def __init__(self, stream: BinaryIO) -> None:
        self._stream = stream

    def _unpack(self, fmt: str):
        size = struct.calcsize(fmt)
        data = self._stream.read(size)
        if len(data) != size:
            raise GGUFError("unexpected end of file")
        return struct.unpack(fmt, data)[0]

    def u32(self) -> int:
        return self._unpack("<I")

    def i32(self) -> int:
        return self._unpack("<i")

    def u64(self) -> int:
        return self._unpack("<Q")

    def f32(self) -> float:
        return self._unpack("<f")

    def string(self) -> str:
        length = self.u64()
        data = self._stream.read(length)
        if len(data) != length:
            raise GGUFError("unexpected end of file")
        return data.decode("utf-8", errors="replace")

    def skip(self, count: int) -> None:
        self._stream.seek(count, os.SEEK_CUR)

    def header(self) -> tuple[int, int, int]:
        """Read magic, version and counts; return (version, tensors, kv pairs)."""
        magic = self._stream.read(4)
        if len(magic) != 4:
            raise GGUFError("unexpected end of file")
        return self.u32(), self.u64(), self.u64()

    def skip_value(self, value_type: int) -> None:
        if value_type == _TYPE_UINT32:
            self.u32()
        elif value_type == _TYPE_INT32:
            self.i32()
        elif value_type == _TYPE_STRING:
            self.string()
        elif value_type == _TYPE_FLOAT32:
            self.f32()
        elif value_type == _TYPE_ARRAY:
            item_type = self.u32()
            for _ in range(self.u64()):
                self.skip_value(item_type)
        else:
            self.skip(_UNKNOWN_SKIP)

    def skip_value_roughly(self, value_type: int) -> None:
        if value_type == _TYPE_STRING:
            self.string()
        elif value_type == _TYPE_UINT32:
            self.u32()
        elif value_type == _TYPE_FLOAT32:
            self.f32()
        else:
            self.skip(_ANALYZE_UNKNOWN_SKIP)


@contextmanager
def _open(path: str | os.PathLike) -> Iterator[BinaryIO]:
    try:
        stream = open(path, "rb")
    except OSError as exc:
        raise GGUFError(f"cannot open: {path}") from exc
    with stream:
        yield stream


def load_tensor_infos(path: str | os.PathLike) -> list[TensorInfo]:
    """Skip the metadata section and return every tensor definition."""
    with _open(path) as stream:
        reader = _Reader(stream)
        _version, tensor_count, kv_count = reader.header()
        for _ in range(kv_count):
            reader.string()
            reader.skip_value(reader.u32())
        tensors = []
        for _ in range(tensor_count):
            name = reader.string()
            dims = tuple(reader.u64() for _ in range(reader.u32()))
            tensor_type = reader.u32()
            offset = reader.u64()
            tensors.append(TensorInfo(name, tensor_type, dims, offset))
        return tensors


def analyze_tensor_infos(path: str | os.PathLike, limit: int = 10) -> list[TensorInfo]:
    """Quick scan returning at most ``limit`` tensor definitions.

    Metadata values other than strings, uint32 and float32 are skipped as
    a fixed 64-byte block, and at most four dimensions are read per tensor.
    Scanning stops quietly at the first truncated tensor definition.
    """
    with _open(path) as stream:
        reader = _Reader(stream)
        _version, tensor_count, kv_count = reader.header()
        for _ in range(kv_count):
            reader.string()
            reader.skip_value_roughly(reader.u32())
        tensors = []
        for _ in range(min(tensor_count, limit)):
            try:
                name = reader.string()
                n_dims = reader.u32()
                dims = tuple(reader.u64() for _ in range(min(n_dims, _ANALYZE_MAX_DIMS)))
                tensor_type = reader.u32()
                offset = reader.u64()
            except GGUFError:
                break
            tensors.append(TensorInfo(name, tensor_type, dims, offset))
        return tensors


def load_specific_weights(
    path: str | os.PathLike,
    tensors: Iterable[TensorInfo],
    names: Iterable[str],
) -> dict[str, list[float]]:
    """Read the first few float32 values of each named tensor.

    Names that match no tensor are left out of the result. Values past
    the end of the file read as zero.
    """
    by_name: dict[str, TensorInfo] = {}
    for tensor in tensors:
        by_name.setdefault(tensor.name, tensor)

    weights: dict[str, list[float]] = {}
    with _open(path) as stream:
        for name in names:
            tensor = by_name.get(name)
            if tensor is None:
                continue
            count = min(tensor.size_bytes // 4, _MAX_SAMPLE_VALUES)
            stream.seek(_DATA_BASE_OFFSET + tensor.offset)
            data = stream.read(count * 4).ljust(count * 4, b"\0")
            weights[name] = list(struct.unpack(f"<{count}f", data))
    return weights


def count_matching(tensors: Iterable[TensorInfo], pattern: str) -> int:
    """Count tensors whose name contains ``pattern``."""
    return sum(1 for tensor in tensors if pattern in tensor.name)


def _format_dims(dims: Sequence[int], sep: str) -> str:
    return "[" + sep.join(str(d) for d in dims) + "]"


def main(argv: Sequence[str] | None = None) -> int:
    """Load tensor definitions and sample weights from a model file."""
    args = list(sys.argv[1:] if argv is None else argv)
    print("Step 2: Weight Loading Test")
    print("===========================\n")
    if not args:
        print("Usage: lightgpt-gguf <model_path>")
        return 1
    path = args[0]

    try:
        tensors = load_tensor_infos(path)
    except GGUFError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    print(f"Found {len(tensors)} tensors in GGUF")
    for index, tensor in enumerate(tensors[:5]):
        print(f"   Tensor {index}: {tensor.name} "
              f"{_format_dims(tensor.dimensions, ', ')} type={tensor.type}")
    print(f"Parsed {len(tensors)} tensor definitions")

    known = {tensor.name for tensor in tensors}
    weights = load_specific_weights(path, tensors, SAMPLE_TENSORS)
    print("Loading specific tensor weights...")
    for name in SAMPLE_TENSORS:
        if name in weights and name in known:
            values = weights[name]
            print(f"   Loaded {name} ({len(values)} values)")
            print("      First values: " + " ".join(f"{v:g}" for v in values[:5]))
        else:
            print(f"   Tensor not found: {name}")

    print("\nTesting Weight Loader")
    print("=====================")
    print("Test 1 - Tensor inventory:")
    print(f"   Total tensors: {len(tensors)}")
    print("\nTest 2 - Key tensor search:")
    for pattern in KEY_PATTERNS:
        print(f"   Found {count_matching(tensors, pattern)} tensors matching '{pattern}'")
    print("\nTest 3 - Tensor shapes:")
    for tensor in tensors[:3]:
        print(f"   {tensor.name}: {_format_dims(tensor.dimensions, ' x ')}")
    print("\nTest 4 - Weight validation:")
    for name, values in weights.items():
        print(f"   {name}: {len(values)} values loaded")
    return 0


if __name__ == "__main__":
    sys.exit(main())