"""
GLB (Binary glTF 2.0) Container Definitions

Layout:
- Header (12 bytes): magic 'glTF', version 2, total length
- JSON chunk: length, 'JSON', UTF-8 document padded with spaces
- BIN chunk: length, 'BIN\\0', binary blob padded with zeros

Every chunk length and the total length include padding, so the file size
is always a multiple of four.
"""

import json
import struct
from typing import Dict, List, Optional, Tuple

import numpy as np

from ..errors import FormatMismatch, UnsupportedSchema
from .cursor import BinaryCursor

# =============================================================================
# Constants
# =============================================================================

GLB_MAGIC = 0x46546C67  # 'glTF'
GLB_VERSION = 2
GLB_CHUNK_JSON = 0x4E4F534A  # 'JSON'
GLB_CHUNK_BIN = 0x004E4942  # 'BIN\0'

GLB_HEADER_FORMAT = struct.Struct('<I I I')
GLB_CHUNK_HEADER_FORMAT = struct.Struct('<I I')

# Accessor component types
COMPONENT_BYTE = 5120
COMPONENT_UNSIGNED_BYTE = 5121
COMPONENT_SHORT = 5122
COMPONENT_UNSIGNED_SHORT = 5123
COMPONENT_UNSIGNED_INT = 5125
COMPONENT_FLOAT = 5126

COMPONENT_DTYPES = {
    COMPONENT_BYTE: np.dtype('<i1'),
    COMPONENT_UNSIGNED_BYTE: np.dtype('<u1'),
    COMPONENT_SHORT: np.dtype('<i2'),
    COMPONENT_UNSIGNED_SHORT: np.dtype('<u2'),
    COMPONENT_UNSIGNED_INT: np.dtype('<u4'),
    COMPONENT_FLOAT: np.dtype('<f4'),
}

TYPE_COMPONENTS = {
    'SCALAR': 1,
    'VEC2': 2,
    'VEC3': 3,
    'VEC4': 4,
    'MAT4': 16,
}

# Buffer view targets
TARGET_ARRAY_BUFFER = 34962
TARGET_ELEMENT_ARRAY_BUFFER = 34963


def component_type_for(dtype: np.dtype) -> int:
    """Map a numpy dtype to its glTF component type"""
    dtype = np.dtype(dtype).newbyteorder('<')
    for component_type, candidate in COMPONENT_DTYPES.items():
        if candidate == dtype:
            return component_type
    raise UnsupportedSchema(f"No glTF component type for dtype {dtype}")


def padded_length(length: int) -> int:
    return (length + 3) & ~3


# =============================================================================
# Binary blob builder
# =============================================================================

class GlbBuffer:
    """Single growing binary blob with its buffer views and accessors.

    Every append is first aligned to four bytes with zero padding and then
    recorded as a buffer view.
    """

    def __init__(self):
        self._parts: List[bytes] = []
        self._length = 0
        self.buffer_views: List[Dict] = []
        self.accessors: List[Dict] = []

    @property
    def byte_length(self) -> int:
        return self._length

    def _align4(self) -> None:
        pad = padded_length(self._length) - self._length
        if pad:
            self._parts.append(b'\x00' * pad)
            self._length += pad

    def add_buffer_view(self, data: bytes, target: Optional[int] = None) -> int:
        self._align4()
        view = {
            'buffer': 0,
            'byteOffset': self._length,
            'byteLength': len(data),
        }
        if target is not None:
            view['target'] = target
        self._parts.append(bytes(data))
        self._length += len(data)
        self.buffer_views.append(view)
        return len(self.buffer_views) - 1

    def add_accessor_for_view(self, view_index: int, component_type: int, count: int,
                              accessor_type: str, byte_offset: int = 0,
                              bounds: Optional[Tuple[List[float], List[float]]] = None) -> int:
        """Describe a typed range of an existing buffer view"""
        accessor = {
            'bufferView': view_index,
            'componentType': component_type,
            'count': count,
            'type': accessor_type,
        }
        if byte_offset:
            accessor['byteOffset'] = byte_offset
        if bounds is not None:
            accessor['min'], accessor['max'] = bounds
        self.accessors.append(accessor)
        return len(self.accessors) - 1

    def add_accessor(self, array: np.ndarray, accessor_type: str,
                     target: Optional[int] = None, with_bounds: bool = False) -> int:
        """Append an array as a new buffer view plus one accessor covering it"""
        components = TYPE_COMPONENTS[accessor_type]
        data = np.ascontiguousarray(array)
        data = data.astype(data.dtype.newbyteorder('<'), copy=False)
        flat = data.reshape(-1, components)

        view_index = self.add_buffer_view(flat.tobytes(), target)
        bounds = compute_bounds(flat) if with_bounds else None
        return self.add_accessor_for_view(
            view_index, component_type_for(flat.dtype), len(flat), accessor_type,
            bounds=bounds,
        )

    def tobytes(self) -> bytes:
        return b''.join(self._parts)


def compute_bounds(flat: np.ndarray) -> Tuple[List[float], List[float]]:
    """Per-component min/max of an (N, C) array"""
    if len(flat) == 0:
        components = flat.shape[1] if flat.ndim > 1 else 1
        return [0.0] * components, [0.0] * components
    return flat.min(axis=0).tolist(), flat.max(axis=0).tolist()


# =============================================================================
# Container framing
# =============================================================================

def pack_glb(document: Dict, blob: bytes) -> bytes:
    """Frame a glTF document and its binary blob as a GLB buffer"""
    json_chunk = json.dumps(document, separators=(',', ':')).encode('utf-8')
    json_chunk += b' ' * (padded_length(len(json_chunk)) - len(json_chunk))

    bin_chunk = bytes(blob)
    bin_chunk += b'\x00' * (padded_length(len(bin_chunk)) - len(bin_chunk))

    total_length = (
        GLB_HEADER_FORMAT.size
        + GLB_CHUNK_HEADER_FORMAT.size + len(json_chunk)
        + GLB_CHUNK_HEADER_FORMAT.size + len(bin_chunk)
    )

    return b''.join((
        GLB_HEADER_FORMAT.pack(GLB_MAGIC, GLB_VERSION, total_length),
        GLB_CHUNK_HEADER_FORMAT.pack(len(json_chunk), GLB_CHUNK_JSON),
        json_chunk,
        GLB_CHUNK_HEADER_FORMAT.pack(len(bin_chunk), GLB_CHUNK_BIN),
        bin_chunk,
    ))


def read_glb(data: bytes) -> Tuple[Dict, bytes]:
    """Split a GLB buffer into its JSON document and binary blob"""
    cursor = BinaryCursor(data)
    magic, version, total_length = cursor.read_struct(GLB_HEADER_FORMAT)
    if magic != GLB_MAGIC:
        raise FormatMismatch('GLB', magic, GLB_MAGIC)
    if version != GLB_VERSION:
        raise UnsupportedSchema(f"Unsupported GLB version {version}")
    if total_length != len(data):
        raise UnsupportedSchema(
            f"GLB length field {total_length} does not match buffer size {len(data)}"
        )

    document = None
    blob = b''
    while cursor.remaining:
        chunk_length, chunk_type = cursor.read_struct(GLB_CHUNK_HEADER_FORMAT)
        payload = cursor.read_bytes(chunk_length)
        if chunk_type == GLB_CHUNK_JSON:
            document = json.loads(payload.decode('utf-8'))
        elif chunk_type == GLB_CHUNK_BIN:
            blob = payload

    if document is None:
        raise UnsupportedSchema("GLB has no JSON chunk")
    return document, blob


def read_accessor(document: Dict, blob: bytes, index: int) -> np.ndarray:
    """Decode accessor data as an (count, components) array"""
    accessor = document['accessors'][index]
    view = document['bufferViews'][accessor['bufferView']]
    dtype = COMPONENT_DTYPES[accessor['componentType']]
    components = TYPE_COMPONENTS[accessor['type']]
    count = accessor['count']

    start = view.get('byteOffset', 0) + accessor.get('byteOffset', 0)
    values = np.frombuffer(blob, dtype=dtype, count=count * components, offset=start)
    return values.reshape(count, components)

