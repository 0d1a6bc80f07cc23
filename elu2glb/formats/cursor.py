"""
Bounds-checked little-endian reader shared by the ELU and ANI decoders.

Both legacy containers are flat, sequential streams with no offset tables,
so decoding is a single forward walk over the buffer.
"""

import struct
from typing import List, Tuple

from ..errors import EndOfData

# =============================================================================
# Primitive formats
# =============================================================================

_I32 = struct.Struct('<i')
_U32 = struct.Struct('<I')
_F32 = struct.Struct('<f')
_VEC3 = struct.Struct('<3f')
_VEC4 = struct.Struct('<4f')
_MAT4 = struct.Struct('<16f')

# Fixed-length names are stored in the Windows single-byte code page
STRING_ENCODING = 'latin-1'


def decode_fixed_string(raw: bytes) -> str:
    """Decode a fixed-length name field, cut at the first NUL and trimmed"""
    end = raw.find(b'\x00')
    if end >= 0:
        raw = raw[:end]
    return raw.decode(STRING_ENCODING).strip()


class BinaryCursor:
    """Reads primitives from an immutable byte buffer with a movable position"""

    def __init__(self, data: bytes, offset: int = 0):
        self._view = memoryview(data)
        self._size = len(self._view)
        self._offset = offset

    @property
    def offset(self) -> int:
        return self._offset

    @property
    def size(self) -> int:
        return self._size

    @property
    def remaining(self) -> int:
        return self._size - self._offset

    def _require(self, size: int) -> None:
        if size < 0 or self._offset + size > self._size:
            raise EndOfData(self._offset, size, max(0, self.remaining))

    def _unpack(self, fmt: struct.Struct) -> tuple:
        self._require(fmt.size)
        values = fmt.unpack_from(self._view, self._offset)
        self._offset += fmt.size
        return values

    # --- scalars ---

    def read_i32(self) -> int:
        return self._unpack(_I32)[0]

    def read_u32(self) -> int:
        return self._unpack(_U32)[0]

    def read_f32(self) -> float:
        return self._unpack(_F32)[0]

    # --- vectors ---

    def read_vec3(self) -> Tuple[float, float, float]:
        return self._unpack(_VEC3)

    def read_vec4(self) -> Tuple[float, float, float, float]:
        return self._unpack(_VEC4)

    def read_matrix(self) -> Tuple[float, ...]:
        """Read 16 floats in storage order"""
        return self._unpack(_MAT4)

    # --- raw data ---

    def read_bytes(self, size: int) -> bytes:
        self._require(size)
        data = self._view[self._offset:self._offset + size].tobytes()
        self._offset += size
        return data

    def skip(self, size: int) -> None:
        self._require(size)
        self._offset += size

    def read_string(self, length: int) -> str:
        """Read a fixed-length field, cut at the first NUL and trimmed"""
        return decode_fixed_string(self.read_bytes(length))

    def read_struct(self, fmt: struct.Struct) -> tuple:
        return self._unpack(fmt)

    def read_records(self, fmt: struct.Struct, count: int) -> List[tuple]:
        """Bulk-read `count` fixed-size records.

        The whole span is checked before anything is unpacked, so a corrupt
        count fails immediately instead of after a long partial walk.
        """
        if count <= 0:
            return []
        total = fmt.size * count
        self._require(total)
        start = self._offset
        records = list(fmt.iter_unpack(self._view[start:start + total]))
        self._offset += total
        return records
