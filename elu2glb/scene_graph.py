"""In-memory scene graph built from one ELU model plus its animation clips.

Everything here is plain data. The ELU importer fills the node, mesh,
material and skin parts; the ANI importer appends animation clips using
the name maps; the GLB exporter serializes the finished graph.

Geometry is held as numpy arrays so the exporter can write buffers directly:
    positions: (N, 3) float32
    normals:   (N, 3) float32
    uvs:       (N, 2) float32, V already flipped
    joints:    (N, 4) uint16, only when the model is skinned
    weights:   (N, 4) float32, only when the model is skinned
    indices:   (M,)   uint32, triangle list ordered by submesh
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import numpy as np


@dataclass
class SceneMaterial:
    """Output material derived from one ELU material record."""
    name: str
    mtrl_id: int
    sub_mtrl_id: int
    alpha_mode: str
    double_sided: bool
    roughness: float
    alpha_cutoff: Optional[float] = None  # only for MASK
    texture: Optional[int] = None         # index into SceneGraph.texture_uris
    extras: Dict = field(default_factory=dict)


@dataclass
class Submesh:
    """Contiguous triangle-list range of a node mesh sharing one material."""
    material: Optional[int]
    index_start: int
    index_count: int

    @property
    def triangle_count(self) -> int:
        return self.index_count // 3


@dataclass
class SceneMesh:
    """Vertex and index buffers of one node."""
    name: str
    positions: np.ndarray
    normals: np.ndarray
    uvs: np.ndarray
    indices: np.ndarray
    submeshes: List[Submesh]
    joints: Optional[np.ndarray] = None
    weights: Optional[np.ndarray] = None

    @property
    def vertex_count(self) -> int:
        return len(self.positions)

    @property
    def index_count(self) -> int:
        return len(self.indices)


@dataclass
class SceneNode:
    """A node of the hierarchy. Every node is also a joint of the skin."""
    index: int
    name: str
    parent_name: str
    matrix: Tuple[float, ...]            # column-major, as written to glTF
    parent: Optional[int] = None         # None for scene roots
    children: List[int] = field(default_factory=list)
    mesh: Optional[SceneMesh] = None


@dataclass
class AnimationChannel:
    """Keyframes for one target path of one node."""
    node: int
    path: str                            # 'translation' or 'rotation'
    times: np.ndarray                    # (K,) float32 seconds
    values: np.ndarray                   # (K, 3) or (K, 4) float32


@dataclass
class AnimationClip:
    name: str
    original_name: str
    motion_type: int
    source: str
    channels: List[AnimationChannel] = field(default_factory=list)
    # Track names dropped because an earlier track already animates the node
    duplicate_tracks: List[str] = field(default_factory=list)


@dataclass
class SceneGraph:
    """Complete conversion result before serialization."""
    nodes: List[SceneNode] = field(default_factory=list)
    roots: List[int] = field(default_factory=list)
    materials: List[SceneMaterial] = field(default_factory=list)
    texture_uris: List[str] = field(default_factory=list)
    skinned: bool = False
    inverse_bind_matrices: List[Tuple[float, ...]] = field(default_factory=list)
    animations: List[AnimationClip] = field(default_factory=list)

    # Lookup tables, built once by the importer
    node_index_by_name: Dict[str, int] = field(default_factory=dict)
    node_index_by_lower_name: Dict[str, int] = field(default_factory=dict)
    texture_index_by_uri: Dict[str, int] = field(default_factory=dict)

    # Reportable conditions
    duplicate_names: List[Tuple[str, int]] = field(default_factory=list)  # (name, node index)
    degenerate_nodes: List[int] = field(default_factory=list)

    def find_node(self, name: str) -> Optional[int]:
        """Exact-name lookup, first node with the name wins."""
        return self.node_index_by_name.get(name)

    def add_texture_uri(self, uri: str) -> Optional[int]:
        """Return the texture index for a URI, adding it on first use."""
        if not uri:
            return None
        index = self.texture_index_by_uri.get(uri)
        if index is None:
            index = len(self.texture_uris)
            self.texture_uris.append(uri)
            self.texture_index_by_uri[uri] = index
        return index

    def animation_names(self) -> List[str]:
        return [clip.name for clip in self.animations]

    @property
    def meshes(self) -> List[SceneMesh]:
        return [node.mesh for node in self.nodes if node.mesh is not None]

    def summary(self) -> Dict[str, int]:
        meshes = self.meshes
        return {
            'materialCount': len(self.materials),
            'meshNodeCount': len(self.nodes),
            'primitiveCount': sum(len(mesh.submeshes) for mesh in meshes),
            'vertexCount': sum(mesh.vertex_count for mesh in meshes),
            'indexCount': sum(mesh.index_count for mesh in meshes),
            'animationCount': len(self.animations),
        }
