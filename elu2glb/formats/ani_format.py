"""
ANI (Legacy Animation) Binary Format Definitions

ANI files share the exporter signature with ELU meshes and carry one of three
mutually exclusive layouts selected by the animation type:
- 1: vertex animation (per-frame vertex arrays)
- 2: bone animation (per-node position and rotation keys)
- 3: matrix-track animation (per-frame 4x4 matrices)

Only bone animation is converted. Vertex and matrix-track streams are walked
so the cursor stays aligned, and only their counts are kept.
"""

import logging
import math
import struct
from dataclasses import dataclass, field
from typing import List, Tuple, Union

from ..errors import FormatMismatch, UnsupportedSchema
from .cursor import BinaryCursor
from .elu_format import EXPORTER_SIG, ELU_NAME_LENGTH

_log = logging.getLogger(__name__)

# =============================================================================
# Constants
# =============================================================================

EXPORTER_ANI_VER1 = 0x00000012
EXPORTER_ANI_VER3 = 0x00001002

ANI_TYPE_VERTEX = 1
ANI_TYPE_BONE = 2
ANI_TYPE_TM = 3

ANI_TYPE_NAMES = {
    ANI_TYPE_VERTEX: 'VERTEX',
    ANI_TYPE_BONE: 'BONE',
    ANI_TYPE_TM: 'TM',
}


# =============================================================================
# Version gates
# =============================================================================

def has_visibility_keys(version: int) -> bool:
    return version > EXPORTER_ANI_VER1


def uses_angle_axis_rotation(version: int) -> bool:
    """Rotation keys are angle-axis up to VER3, native quaternions after"""
    return version <= EXPORTER_ANI_VER3


# =============================================================================
# Struct format strings
# =============================================================================

# Header (20 bytes)
# struct ex_ani_t {
#     DWORD sig;        // 4 bytes - EXPORTER_SIG
#     DWORD ver;        // 4 bytes - Animation version
#     int   maxframe;   // 4 bytes
#     int   model_num;  // 4 bytes - Node count
#     int   ani_type;   // 4 bytes - 1 vertex, 2 bone, 3 tm
# };
ANI_HEADER_FORMAT = struct.Struct('<I I i i i')

# Position key: x, y, z, frame
ANI_POS_KEY_FORMAT = struct.Struct('<3f i')
# Rotation key: x, y, z, w, frame (w is the angle for angle-axis keys)
ANI_ROT_KEY_FORMAT = struct.Struct('<4f i')
# Visibility key: value, frame
ANI_VIS_KEY_FORMAT = struct.Struct('<f i')
# TM key: 16 floats + frame
ANI_TM_KEY_SIZE = 16 * 4 + 4
# Vertex animation vertex: x, y, z
ANI_VERTEX_SIZE = 3 * 4


def angle_axis_to_quaternion(axis_x: float, axis_y: float, axis_z: float,
                             angle: float) -> Tuple[float, float, float, float]:
    """Convert a legacy angle-axis key to an (x, y, z, w) quaternion"""
    half = angle * 0.5
    s = math.sin(half)
    return (axis_x * s, axis_y * s, axis_z * s, math.cos(half))


# =============================================================================
# Data Classes
# =============================================================================

@dataclass
class AniHeader:
    """ANI file header"""
    signature: int
    version: int
    max_frame: int
    node_count: int
    ani_type: int

    @property
    def type_name(self) -> str:
        return ANI_TYPE_NAMES.get(self.ani_type, f'UNKNOWN({self.ani_type})')

    @classmethod
    def read(cls, cursor: BinaryCursor) -> 'AniHeader':
        """Read and validate header"""
        signature, version, max_frame, node_count, ani_type = cursor.read_struct(ANI_HEADER_FORMAT)
        if signature != EXPORTER_SIG:
            raise FormatMismatch('ANI', signature, EXPORTER_SIG)
        if ani_type not in ANI_TYPE_NAMES:
            raise UnsupportedSchema(f"Unknown ANI animation type {ani_type}")
        return cls(
            signature=signature,
            version=version,
            max_frame=max_frame,
            node_count=max(0, node_count),
            ani_type=ani_type,
        )


@dataclass
class AniPositionKey:
    frame: int
    value: Tuple[float, float, float]


@dataclass
class AniRotationKey:
    frame: int
    value: Tuple[float, float, float, float]  # quaternion (x, y, z, w)


@dataclass
class AniVisibilityKey:
    frame: int
    value: float


def _read_visibility(cursor: BinaryCursor, version: int) -> List[AniVisibilityKey]:
    if not has_visibility_keys(version):
        return []
    count = cursor.read_u32()
    return [
        AniVisibilityKey(frame=frame, value=value)
        for value, frame in cursor.read_records(ANI_VIS_KEY_FORMAT, count)
    ]


@dataclass
class AniBoneTrack:
    """Keyframes of one node in a bone animation"""
    name: str
    mat_base: Tuple[float, ...]
    position_keys: List[AniPositionKey] = field(default_factory=list)
    rotation_keys: List[AniRotationKey] = field(default_factory=list)
    visibility_keys: List[AniVisibilityKey] = field(default_factory=list)

    @classmethod
    def read(cls, cursor: BinaryCursor, version: int) -> 'AniBoneTrack':
        name = cursor.read_string(ELU_NAME_LENGTH)
        mat_base = cursor.read_matrix()

        position_keys = [
            AniPositionKey(frame=unpacked[3], value=tuple(unpacked[0:3]))
            for unpacked in cursor.read_records(ANI_POS_KEY_FORMAT, cursor.read_i32())
        ]

        angle_axis = uses_angle_axis_rotation(version)
        rotation_keys = []
        for x, y, z, w, frame in cursor.read_records(ANI_ROT_KEY_FORMAT, cursor.read_i32()):
            if angle_axis:
                value = angle_axis_to_quaternion(x, y, z, w)
            else:
                value = (x, y, z, w)
            rotation_keys.append(AniRotationKey(frame=frame, value=value))

        visibility_keys = _read_visibility(cursor, version)

        return cls(
            name=name,
            mat_base=mat_base,
            position_keys=position_keys,
            rotation_keys=rotation_keys,
            visibility_keys=visibility_keys,
        )


@dataclass
class AniTmTrack:
    """Matrix-track node, walked for stream integrity only"""
    name: str
    key_count: int
    visibility_keys: List[AniVisibilityKey] = field(default_factory=list)

    @classmethod
    def read(cls, cursor: BinaryCursor, version: int) -> 'AniTmTrack':
        name = cursor.read_string(ELU_NAME_LENGTH)
        key_count = max(0, cursor.read_i32())
        cursor.skip(key_count * ANI_TM_KEY_SIZE)
        return cls(
            name=name,
            key_count=key_count,
            visibility_keys=_read_visibility(cursor, version),
        )


@dataclass
class AniVertexTrack:
    """Vertex-animation node, walked for stream integrity only"""
    name: str
    frame_count: int
    vertex_count: int
    visibility_keys: List[AniVisibilityKey] = field(default_factory=list)

    @classmethod
    def read(cls, cursor: BinaryCursor, version: int) -> 'AniVertexTrack':
        name = cursor.read_string(ELU_NAME_LENGTH)
        frame_count = max(0, cursor.read_i32())
        vertex_count = max(0, cursor.read_i32())
        # Frame times, then one vertex array per frame
        cursor.skip(frame_count * 4)
        cursor.skip(frame_count * vertex_count * ANI_VERTEX_SIZE)
        return cls(
            name=name,
            frame_count=frame_count,
            vertex_count=vertex_count,
            visibility_keys=_read_visibility(cursor, version),
        )


AniTrack = Union[AniBoneTrack, AniTmTrack, AniVertexTrack]

_TRACK_READERS = {
    ANI_TYPE_VERTEX: AniVertexTrack,
    ANI_TYPE_BONE: AniBoneTrack,
    ANI_TYPE_TM: AniTmTrack,
}


@dataclass
class AniAnimation:
    """Complete ANI animation data"""
    header: AniHeader
    tracks: List[AniTrack]

    @property
    def version(self) -> int:
        return self.header.version

    @property
    def ani_type(self) -> int:
        return self.header.ani_type

    @property
    def is_bone_animation(self) -> bool:
        return self.header.ani_type == ANI_TYPE_BONE

    @classmethod
    def read(cls, filepath: str) -> 'AniAnimation':
        """Read complete ANI animation from file"""
        with open(filepath, 'rb') as f:
            file_data = f.read()

        return cls.read_from_bytes(file_data)

    @classmethod
    def read_from_bytes(cls, data: bytes) -> 'AniAnimation':
        """Read complete ANI animation from bytes"""
        cursor = BinaryCursor(data)
        header = AniHeader.read(cursor)

        reader = _TRACK_READERS[header.ani_type]
        tracks = [reader.read(cursor, header.version) for _ in range(header.node_count)]

        _log.debug(
            "Decoded ANI v0x%x type=%s: %d nodes",
            header.version, header.type_name, len(tracks),
        )
        return cls(header=header, tracks=tracks)
