"""
Binary fixture builders for the test suite.

Packs ELU and ANI records field by field with struct, following the
exporter layouts, so tests can build small files for any version.
"""

import struct
from typing import List, Optional, Sequence, Tuple

from elu2glb.formats.ani_format import EXPORTER_ANI_VER1
from elu2glb.formats.elu_format import (
    EXPORTER_MESH_VER2, EXPORTER_MESH_VER3, EXPORTER_MESH_VER4,
    EXPORTER_MESH_VER6, EXPORTER_MESH_VER7, EXPORTER_SIG,
)

IDENTITY = (
    1.0, 0.0, 0.0, 0.0,
    0.0, 1.0, 0.0, 0.0,
    0.0, 0.0, 1.0, 0.0,
    0.0, 0.0, 0.0, 1.0,
)

DEFAULT_UVS = ((0.0, 0.0, 0.0), (1.0, 0.0, 0.0), (0.0, 1.0, 0.0))


def translation(x: float, y: float, z: float) -> Tuple[float, ...]:
    """Row-major translation matrix as the exporter stores it"""
    return (
        1.0, 0.0, 0.0, 0.0,
        0.0, 1.0, 0.0, 0.0,
        0.0, 0.0, 1.0, 0.0,
        x, y, z, 1.0,
    )


def pack_name(text: str, length: int = 40) -> bytes:
    return struct.pack(f'<{length}s', text.encode('latin-1'))


# =============================================================================
# ELU
# =============================================================================

def elu_header(version: int, material_count: int, node_count: int,
               signature: int = EXPORTER_SIG) -> bytes:
    return struct.pack('<I I i i', signature, version, material_count, node_count)


def elu_material(version: int, mtrl_id: int = 0, sub_mtrl_id: int = -1,
                 power: float = 0.0, sub_mtrl_num: int = 0,
                 diffuse: str = '', opacity: str = '',
                 two_sided: int = 0, additive: int = 0, alpha_test: int = 0) -> bytes:
    name_length = 256 if version >= EXPORTER_MESH_VER7 else 40
    data = struct.pack(
        '<i i 4f 4f 4f f i', mtrl_id, sub_mtrl_id,
        0.5, 0.5, 0.5, 1.0,
        1.0, 1.0, 1.0, 1.0,
        0.0, 0.0, 0.0, 1.0,
        power, sub_mtrl_num,
    )
    data += pack_name(diffuse, name_length) + pack_name(opacity, name_length)
    if version > EXPORTER_MESH_VER3:
        data += struct.pack('<i', two_sided)
    if version > EXPORTER_MESH_VER4:
        data += struct.pack('<i', additive)
    if version > EXPORTER_MESH_VER7:
        data += struct.pack('<i', alpha_test)
    return data


def elu_physique(bones: Sequence[Tuple[str, float, int]], num: Optional[int] = None) -> bytes:
    """One influence record from up to four (bone name, weight, bone id) entries"""
    bones = list(bones) + [('', 0.0, -1)] * (4 - len(bones))
    names = b''.join(pack_name(name) for name, _, _ in bones)
    weights = struct.pack('<4f', *(weight for _, weight, _ in bones))
    ids = struct.pack('<4i', *(bone_id for _, _, bone_id in bones))
    declared = len([b for b in bones if b[0] or b[2] >= 0]) if num is None else num
    return names + weights + ids + struct.pack('<i', declared) + struct.pack('<12f', *([0.0] * 12))


def elu_node(version: int, name: str, parent: str = '',
             mat_base: Sequence[float] = IDENTITY,
             points: Sequence[Tuple[float, float, float]] = (),
             faces: Sequence[Tuple[int, int, int]] = (),
             face_mtrl_ids: Optional[Sequence[int]] = None,
             uvs: Sequence[Tuple[float, float, float]] = DEFAULT_UVS,
             point_normals: Optional[Sequence[Tuple[float, float, float]]] = None,
             point_color_count: int = 0,
             mtrl_id: int = 0,
             physique: Sequence[bytes] = ()) -> bytes:
    data = pack_name(name) + pack_name(parent) + struct.pack('<16f', *mat_base)

    if version >= EXPORTER_MESH_VER2:
        data += struct.pack('<3f', 1.0, 1.0, 1.0)
    if version >= EXPORTER_MESH_VER4:
        data += struct.pack('<3f f 3f f 16f', *([0.0] * 8 + list(IDENTITY)))

    data += struct.pack('<i', len(points))
    for point in points:
        data += struct.pack('<3f', *point)

    data += struct.pack('<i', len(faces))
    flat_uvs = [c for uv in uvs for c in uv]
    for i, face in enumerate(faces):
        face_mtrl = face_mtrl_ids[i] if face_mtrl_ids else 0
        data += struct.pack('<3i 9f i', *face, *flat_uvs, face_mtrl)
        if version > EXPORTER_MESH_VER2:
            data += struct.pack('<i', 0)
    if version >= EXPORTER_MESH_VER6:
        normals = point_normals or ((0.0, 0.0, 1.0),) * 3
        for _ in faces:
            data += struct.pack('<3f', 0.0, 0.0, 1.0)
            for normal in normals:
                data += struct.pack('<3f', *normal)
        data += struct.pack('<i', point_color_count)
        data += b'\x00' * (point_color_count * 12)

    data += struct.pack('<i i', mtrl_id, len(physique))
    data += b''.join(physique)
    return data


def build_elu(version: int, materials: Sequence[bytes] = (), nodes: Sequence[bytes] = ()) -> bytes:
    return elu_header(version, len(materials), len(nodes)) + b''.join(materials) + b''.join(nodes)


# =============================================================================
# ANI
# =============================================================================

def ani_header(version: int, ani_type: int, node_count: int, max_frame: int = 0,
               signature: int = EXPORTER_SIG) -> bytes:
    return struct.pack('<I I i i i', signature, version, max_frame, node_count, ani_type)


def _visibility(version: int, keys: Sequence[Tuple[float, int]]) -> bytes:
    if version <= EXPORTER_ANI_VER1:
        return b''
    return struct.pack('<I', len(keys)) + b''.join(struct.pack('<f i', *k) for k in keys)


def ani_bone_track(version: int, name: str,
                   position_keys: Sequence[Tuple[float, float, float, int]] = (),
                   rotation_keys: Sequence[Tuple[float, float, float, float, int]] = (),
                   visibility_keys: Sequence[Tuple[float, int]] = (),
                   mat_base: Sequence[float] = IDENTITY) -> bytes:
    data = pack_name(name) + struct.pack('<16f', *mat_base)
    data += struct.pack('<i', len(position_keys))
    data += b''.join(struct.pack('<3f i', *k) for k in position_keys)
    data += struct.pack('<i', len(rotation_keys))
    data += b''.join(struct.pack('<4f i', *k) for k in rotation_keys)
    return data + _visibility(version, visibility_keys)


def ani_tm_track(version: int, name: str, key_count: int,
                 visibility_keys: Sequence[Tuple[float, int]] = ()) -> bytes:
    data = pack_name(name) + struct.pack('<i', key_count)
    data += struct.pack('<16f i', *IDENTITY, 0) * key_count
    return data + _visibility(version, visibility_keys)


def ani_vertex_track(version: int, name: str, frame_count: int, vertex_count: int,
                     visibility_keys: Sequence[Tuple[float, int]] = ()) -> bytes:
    data = pack_name(name) + struct.pack('<i i', frame_count, vertex_count)
    data += struct.pack(f'<{frame_count}i', *range(frame_count))
    data += b'\x00' * (frame_count * vertex_count * 12)
    return data + _visibility(version, visibility_keys)


def build_ani(version: int, ani_type: int, tracks: List[bytes], max_frame: int = 0) -> bytes:
    return ani_header(version, ani_type, len(tracks), max_frame) + b''.join(tracks)
