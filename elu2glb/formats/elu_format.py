"""
ELU (Legacy Mesh) Binary Format Definitions

This module mirrors the records written by the legacy max exporter:
- Material table (colors, texture names, render flags)
- Mesh nodes (transform, points, faces, point colors, physique)

ELU files start with the exporter signature 0x0107F060 followed by a mesh
version. Layouts never change wholesale between versions: fields are only
appended, so every optional field is gated by its own version predicate.
"""

import logging
import struct
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from ..errors import FormatMismatch
from .cursor import BinaryCursor, decode_fixed_string

_log = logging.getLogger(__name__)

# =============================================================================
# Constants
# =============================================================================

# Shared by ELU and ANI containers
EXPORTER_SIG = 0x0107F060

# Mesh versions (EXPORTER_MESH_VER5 was never shipped)
EXPORTER_MESH_VER2 = 0x00005001
EXPORTER_MESH_VER3 = 0x00005002
EXPORTER_MESH_VER4 = 0x00005003
EXPORTER_MESH_VER6 = 0x00005005
EXPORTER_MESH_VER7 = 0x00005006
EXPORTER_MESH_VER8 = 0x00005007

ELU_KNOWN_VERSIONS = (
    EXPORTER_MESH_VER2, EXPORTER_MESH_VER3, EXPORTER_MESH_VER4,
    EXPORTER_MESH_VER6, EXPORTER_MESH_VER7, EXPORTER_MESH_VER8,
)

# Fixed string widths
ELU_NAME_LENGTH = 40
ELU_PATH_LENGTH = 256

# Influences per physique record
ELU_PHYSIQUE_KEYS = 4

# Material render flags
RM_FLAG_USEOPACITY = 0x01
RM_FLAG_USEALPHATEST = 0x02
RM_FLAG_ADDITIVE = 0x04
RM_FLAG_TWOSIDED = 0x08


# =============================================================================
# Version gates
# =============================================================================

def texture_name_length(version: int) -> int:
    """Texture names grew from 40 to 256 bytes in VER7"""
    return ELU_PATH_LENGTH if version >= EXPORTER_MESH_VER7 else ELU_NAME_LENGTH


def has_two_sided_flag(version: int) -> bool:
    return version > EXPORTER_MESH_VER3


def has_additive_flag(version: int) -> bool:
    return version > EXPORTER_MESH_VER4


def has_alpha_test_value(version: int) -> bool:
    return version > EXPORTER_MESH_VER7


def has_ap_scale(version: int) -> bool:
    return version >= EXPORTER_MESH_VER2


def has_axis_block(version: int) -> bool:
    return version >= EXPORTER_MESH_VER4


def has_smoothing_group(version: int) -> bool:
    return version > EXPORTER_MESH_VER2


def has_face_normals(version: int) -> bool:
    return version >= EXPORTER_MESH_VER6


def has_point_colors(version: int) -> bool:
    return version >= EXPORTER_MESH_VER6


# =============================================================================
# Struct format strings
# =============================================================================

# Header (16 bytes)
# struct ex_hd_t {
#     DWORD sig;        // 4 bytes - EXPORTER_SIG
#     DWORD ver;        // 4 bytes - Mesh version
#     int   mtrl_num;   // 4 bytes - Material count
#     int   mesh_num;   // 4 bytes - Node count
# };
ELU_HEADER_FORMAT = struct.Struct('<I I i i')

# Material color block (64 bytes), texture names follow
#     int   mtrl_id, sub_mtrl_id;
#     float ambient[4], diffuse[4], specular[4];
#     float power;
#     int   sub_mtrl_num;
ELU_MATERIAL_BASE_FORMAT = struct.Struct('<i i 4f 4f 4f f i')

# Axis block (96 bytes, VER4+): axis_rot + angle, axis_scale + angle, mat_etc
ELU_AXIS_BLOCK_FORMAT = struct.Struct('<3f f 3f f 16f')

# Face (VER2): point_index[3], uv[3][3], mtrl_id
ELU_FACE_V2_FORMAT = struct.Struct('<3i 9f i')
# Face (above VER2): adds sg_id
ELU_FACE_FORMAT = struct.Struct('<3i 9f i i')
# Face normal pass (VER6+): normal, point_normal[3]
ELU_FACE_NORMAL_FORMAT = struct.Struct('<12f')

ELU_POINT_FORMAT = struct.Struct('<3f')

# Physique record (244 bytes)
# struct ex_physique_t {
#     char  parent_name[4][40];
#     float weight[4];
#     int   parent_id[4];
#     int   num;
#     float offset[4][3];
# };
ELU_PHYSIQUE_FORMAT = struct.Struct('<40s 40s 40s 40s 4f 4i i 12f')


def normalize_slash(path: str) -> str:
    return path.replace('\\', '/')


# =============================================================================
# Data Classes
# =============================================================================

@dataclass
class EluHeader:
    """ELU file header"""
    signature: int
    version: int
    material_count: int
    node_count: int

    @classmethod
    def read(cls, cursor: BinaryCursor) -> 'EluHeader':
        """Read and validate header"""
        signature, version, material_count, node_count = cursor.read_struct(ELU_HEADER_FORMAT)
        if signature != EXPORTER_SIG:
            raise FormatMismatch('ELU', signature, EXPORTER_SIG)
        if version not in ELU_KNOWN_VERSIONS:
            _log.warning("Unknown ELU version 0x%x, decoding with nearest gates", version)
        return cls(
            signature=signature,
            version=version,
            material_count=max(0, material_count),
            node_count=max(0, node_count),
        )


@dataclass
class EluMaterial:
    """Material table entry"""
    index: int
    mtrl_id: int
    sub_mtrl_id: int
    ambient: Tuple[float, float, float, float]
    diffuse: Tuple[float, float, float, float]
    specular: Tuple[float, float, float, float]
    power_raw: float
    sub_mtrl_num: int
    diffuse_name: str
    opacity_name: str
    two_sided: bool = False
    additive: bool = False
    alpha_test_value: int = 0

    @property
    def power(self) -> float:
        """Specular power as the engine scales it"""
        return self.power_raw * 100.0

    @property
    def alpha_test(self) -> bool:
        return self.alpha_test_value != 0

    @property
    def flags(self) -> int:
        flags = 0
        if self.opacity_name:
            flags |= RM_FLAG_USEOPACITY
        if self.alpha_test:
            flags |= RM_FLAG_USEALPHATEST
        if self.additive:
            flags |= RM_FLAG_ADDITIVE
        if self.two_sided:
            flags |= RM_FLAG_TWOSIDED
        return flags

    @property
    def alpha_mode(self) -> str:
        flags = self.flags
        if flags & RM_FLAG_ADDITIVE:
            return 'BLEND'
        if flags & RM_FLAG_USEALPHATEST:
            return 'MASK'
        if flags & RM_FLAG_USEOPACITY:
            return 'BLEND'
        return 'OPAQUE'

    @classmethod
    def read(cls, cursor: BinaryCursor, version: int, index: int) -> 'EluMaterial':
        """Read one material record"""
        unpacked = cursor.read_struct(ELU_MATERIAL_BASE_FORMAT)

        name_length = texture_name_length(version)
        diffuse_name = normalize_slash(cursor.read_string(name_length))
        opacity_name = normalize_slash(cursor.read_string(name_length))

        two_sided = False
        additive = False
        alpha_test_value = 0
        if has_two_sided_flag(version):
            two_sided = cursor.read_i32() != 0
        if has_additive_flag(version):
            additive = cursor.read_i32() != 0
        if has_alpha_test_value(version):
            alpha_test_value = cursor.read_i32()

        return cls(
            index=index,
            mtrl_id=unpacked[0],
            sub_mtrl_id=unpacked[1],
            ambient=tuple(unpacked[2:6]),
            diffuse=tuple(unpacked[6:10]),
            specular=tuple(unpacked[10:14]),
            power_raw=unpacked[14],
            sub_mtrl_num=unpacked[15],
            diffuse_name=diffuse_name,
            opacity_name=opacity_name,
            two_sided=two_sided,
            additive=additive,
            alpha_test_value=alpha_test_value,
        )


@dataclass
class EluFace:
    """Triangle with per-corner UVs"""
    point_index: Tuple[int, int, int]
    uvs: Tuple[Tuple[float, float, float], ...]
    mtrl_id: int
    sg_id: int = 0
    face_normal: Optional[Tuple[float, float, float]] = None
    point_normals: Optional[Tuple[Tuple[float, float, float], ...]] = None

    @classmethod
    def read_faces(cls, cursor: BinaryCursor, version: int, count: int) -> List['EluFace']:
        """Read all faces of a node, including the trailing normal pass"""
        if count <= 0:
            return []

        faces = []
        if has_smoothing_group(version):
            for unpacked in cursor.read_records(ELU_FACE_FORMAT, count):
                faces.append(cls(
                    point_index=tuple(unpacked[0:3]),
                    uvs=(tuple(unpacked[3:6]), tuple(unpacked[6:9]), tuple(unpacked[9:12])),
                    mtrl_id=unpacked[12],
                    sg_id=unpacked[13],
                ))
        else:
            for unpacked in cursor.read_records(ELU_FACE_V2_FORMAT, count):
                faces.append(cls(
                    point_index=tuple(unpacked[0:3]),
                    uvs=(tuple(unpacked[3:6]), tuple(unpacked[6:9]), tuple(unpacked[9:12])),
                    mtrl_id=unpacked[12],
                ))

        # Normals are stored as a second pass after all faces, not inline
        if has_face_normals(version):
            normal_records = cursor.read_records(ELU_FACE_NORMAL_FORMAT, count)
            for face, unpacked in zip(faces, normal_records):
                face.face_normal = tuple(unpacked[0:3])
                face.point_normals = (
                    tuple(unpacked[3:6]), tuple(unpacked[6:9]), tuple(unpacked[9:12])
                )

        return faces


@dataclass
class EluPhysique:
    """Skin influences of a single point"""
    bone_names: Tuple[str, ...]
    weights: Tuple[float, ...]
    bone_ids: Tuple[int, ...]
    num: int
    offsets: Tuple[Tuple[float, float, float], ...]

    @classmethod
    def read_records(cls, cursor: BinaryCursor, count: int) -> List['EluPhysique']:
        records = []
        for unpacked in cursor.read_records(ELU_PHYSIQUE_FORMAT, count):
            records.append(cls(
                bone_names=tuple(decode_fixed_string(raw) for raw in unpacked[0:4]),
                weights=tuple(unpacked[4:8]),
                bone_ids=tuple(unpacked[8:12]),
                num=unpacked[12],
                offsets=tuple(tuple(unpacked[13 + i * 3:16 + i * 3]) for i in range(4)),
            ))
        return records


@dataclass
class EluNode:
    """Mesh node (also acts as a bone)"""
    index: int
    name: str
    parent: str
    mat_base: Tuple[float, ...]
    ap_scale: Tuple[float, float, float] = (1.0, 1.0, 1.0)
    axis_block: Optional[Tuple[float, ...]] = None
    points: List[Tuple[float, float, float]] = field(default_factory=list)
    faces: List[EluFace] = field(default_factory=list)
    point_color_count: int = 0
    mtrl_id: int = 0
    physique: List[EluPhysique] = field(default_factory=list)

    @property
    def physique_count(self) -> int:
        return len(self.physique)

    @classmethod
    def read(cls, cursor: BinaryCursor, version: int, index: int) -> 'EluNode':
        """Read one mesh node"""
        name = cursor.read_string(ELU_NAME_LENGTH)
        parent = cursor.read_string(ELU_NAME_LENGTH)
        mat_base = cursor.read_matrix()

        ap_scale = (1.0, 1.0, 1.0)
        if has_ap_scale(version):
            ap_scale = cursor.read_vec3()

        axis_block = None
        if has_axis_block(version):
            axis_block = cursor.read_struct(ELU_AXIS_BLOCK_FORMAT)

        point_count = cursor.read_i32()
        points = cursor.read_records(ELU_POINT_FORMAT, point_count)

        face_count = cursor.read_i32()
        faces = EluFace.read_faces(cursor, version, face_count)

        # Point colors are not used by the renderer, only skipped
        point_color_count = 0
        if has_point_colors(version):
            point_color_count = cursor.read_i32()
            if point_color_count > 0:
                cursor.skip(point_color_count * ELU_POINT_FORMAT.size)

        mtrl_id = cursor.read_i32()
        physique_count = cursor.read_i32()
        physique = EluPhysique.read_records(cursor, physique_count)

        return cls(
            index=index,
            name=name,
            parent=parent,
            mat_base=mat_base,
            ap_scale=ap_scale,
            axis_block=axis_block,
            points=points,
            faces=faces,
            point_color_count=max(0, point_color_count),
            mtrl_id=mtrl_id,
            physique=physique,
        )


@dataclass
class EluModel:
    """Complete ELU model data"""
    header: EluHeader
    materials: List[EluMaterial]
    nodes: List[EluNode]

    @property
    def version(self) -> int:
        return self.header.version

    @property
    def has_skin(self) -> bool:
        return any(node.physique for node in self.nodes)

    @classmethod
    def read(cls, filepath: str) -> 'EluModel':
        """Read complete ELU model from file"""
        with open(filepath, 'rb') as f:
            file_data = f.read()

        return cls.read_from_bytes(file_data)

    @classmethod
    def read_from_bytes(cls, data: bytes) -> 'EluModel':
        """Read complete ELU model from bytes"""
        cursor = BinaryCursor(data)
        header = EluHeader.read(cursor)
        version = header.version

        materials = [
            EluMaterial.read(cursor, version, i) for i in range(header.material_count)
        ]
        nodes = [
            EluNode.read(cursor, version, i) for i in range(header.node_count)
        ]

        if cursor.remaining:
            _log.debug("ELU decode left %d trailing bytes", cursor.remaining)
        _log.debug(
            "Decoded ELU v0x%x: %d materials, %d nodes",
            version, len(materials), len(nodes),
        )
        return cls(header=header, materials=materials, nodes=nodes)
