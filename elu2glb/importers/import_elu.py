"""
ELU Scene Builder

Turns a decoded ELU model into a SceneGraph:
- Node hierarchy linked by parent name
- Per-node vertex/index buffers grouped into submeshes by material
- Skin joints/weights and per-joint inverse bind matrices
- Output materials with textures from an injected resolver

Coordinate Notes:
- ELU matrices are stored row-major; node matrices are transposed once
  and written as glTF column-major matrices
- UV V axis is flipped: v' = 1 - v
"""

import logging
from typing import Callable, Dict, List, Optional, Set, Tuple

import numpy as np

from ..errors import DegenerateTransform
from ..formats.elu_format import EluMaterial, EluModel, EluNode, ELU_PHYSIQUE_KEYS
from ..scene_graph import SceneGraph, SceneMaterial, SceneMesh, SceneNode, Submesh
from ..utils.math3d import (
    IDENTITY_MATRIX, clamp, flat_normal, invert_matrix, transpose_matrix, wrap_index,
)

_log = logging.getLogger(__name__)

TextureResolver = Callable[[str], Optional[str]]

ORIGIN = (0.0, 0.0, 0.0)


def _no_textures(name: str) -> Optional[str]:
    return None


def roughness_from_power(power: float) -> float:
    """Map legacy specular power (0..120+) to glTF roughness"""
    normalized = clamp(power / 120.0, 0.0, 1.0)
    return clamp(1.0 - normalized, 0.04, 1.0)


def alpha_cutoff_from_value(alpha_test_value: int) -> float:
    # Zero means "engine default", which is 128
    return clamp((alpha_test_value or 128) / 255.0, 0.01, 1.0)


class MaterialLookup:
    """Material id / sub-material id resolution tables for one model.

    Built once per model. Indices refer to positions in the material table,
    which are also the output material indices.
    """

    def __init__(self, materials: List[EluMaterial]):
        self.count = len(materials)
        self.last_by_id: Dict[int, int] = {}
        self.base_by_id: Dict[int, int] = {}
        self.by_id_sub: Dict[Tuple[int, int], int] = {}
        self.sub_count_by_id: Dict[int, int] = {}
        self.has_sub: Set[int] = set()

        for index, material in enumerate(materials):
            mtrl_id = material.mtrl_id
            sub_id = material.sub_mtrl_id
            self.last_by_id[mtrl_id] = index
            self.by_id_sub[(mtrl_id, sub_id)] = index
            # First entry is the base unless an unqualified (-1) entry shows up
            if mtrl_id not in self.base_by_id or sub_id == -1:
                self.base_by_id[mtrl_id] = index
            if sub_id >= 0:
                self.has_sub.add(mtrl_id)
            if sub_id == -1 and material.sub_mtrl_num > 0:
                self.sub_count_by_id[mtrl_id] = material.sub_mtrl_num

    def resolve(self, node_mtrl_id: int, face_selector: int) -> Optional[int]:
        """Output material index for a face, None when the model has no materials"""
        if not self.count:
            return None

        if node_mtrl_id in self.has_sub:
            selector = face_selector
            sub_count = self.sub_count_by_id.get(node_mtrl_id, 0)
            if sub_count > 0:
                selector = wrap_index(selector, sub_count)
            keyed = self.by_id_sub.get((node_mtrl_id, selector))
            if keyed is not None:
                return keyed

        base = self.base_by_id.get(node_mtrl_id)
        if base is not None:
            return base
        return self.last_by_id.get(node_mtrl_id, 0)


class EluImporter:
    """Builds a SceneGraph from an ELU model"""

    def __init__(self, model: EluModel,
                 texture_resolver: Optional[TextureResolver] = None):
        """
        Initialize importer.

        Args:
            model: Decoded ELU model
            texture_resolver: Maps a legacy texture name to an output URI,
                or None when the texture cannot be found
        """
        self.model = model
        self.texture_resolver = texture_resolver or _no_textures
        self.graph = SceneGraph()
        self.materials = MaterialLookup(model.materials)

    def execute(self) -> SceneGraph:
        """
        Execute import.

        Returns:
            The populated SceneGraph (without animations)
        """
        model = self.model
        graph = self.graph

        self._create_nodes()
        self._link_hierarchy()
        self._create_materials()

        graph.skinned = model.has_skin
        if graph.skinned:
            self._create_inverse_bind_matrices()

        for elu_node, scene_node in zip(model.nodes, graph.nodes):
            scene_node.mesh = self._create_mesh(elu_node, scene_node.index)

        summary = graph.summary()
        _log.info(
            "Built scene: %d nodes, %d materials, %d primitives, %d vertices%s",
            summary['meshNodeCount'], summary['materialCount'],
            summary['primitiveCount'], summary['vertexCount'],
            ", skinned" if graph.skinned else "",
        )
        return graph

    # =========================================================================
    # Hierarchy
    # =========================================================================

    def _create_nodes(self):
        graph = self.graph
        for index, elu_node in enumerate(self.model.nodes):
            graph.nodes.append(SceneNode(
                index=index,
                name=elu_node.name,
                parent_name=elu_node.parent,
                matrix=transpose_matrix(elu_node.mat_base),
            ))

            if elu_node.name in graph.node_index_by_name:
                graph.duplicate_names.append((elu_node.name, index))
                _log.warning(
                    "Duplicate node name '%s' at index %d (first seen at %d); "
                    "lookups resolve to the first",
                    elu_node.name, index, graph.node_index_by_name[elu_node.name],
                )
                continue
            graph.node_index_by_name[elu_node.name] = index
            graph.node_index_by_lower_name.setdefault(elu_node.name.lower(), index)

    def _link_hierarchy(self):
        graph = self.graph
        for node in graph.nodes:
            parent = graph.find_node(node.parent_name) if node.parent_name else None
            if parent is not None and self._is_ancestor_or_self(node.index, parent):
                _log.warning(
                    "Node '%s' would create a parent cycle through '%s'; treating as root",
                    node.name, node.parent_name,
                )
                parent = None

            if parent is None:
                graph.roots.append(node.index)
                continue
            node.parent = parent
            graph.nodes[parent].children.append(node.index)

    def _is_ancestor_or_self(self, index: int, candidate: int) -> bool:
        """True if walking up from candidate reaches index"""
        nodes = self.graph.nodes
        current: Optional[int] = candidate
        while current is not None:
            if current == index:
                return True
            current = nodes[current].parent
        return False

    def _create_inverse_bind_matrices(self):
        graph = self.graph
        for node in graph.nodes:
            try:
                inverse = invert_matrix(node.matrix)
            except DegenerateTransform as e:
                _log.warning("Node '%s': %s, using identity inverse bind", node.name, e)
                graph.degenerate_nodes.append(node.index)
                inverse = IDENTITY_MATRIX
            graph.inverse_bind_matrices.append(inverse)

    # =========================================================================
    # Materials
    # =========================================================================

    def _create_materials(self):
        graph = self.graph
        for material in self.model.materials:
            alpha_mode = material.alpha_mode
            extras = {
                'legacyMtrlId': material.mtrl_id,
                'legacySubMtrlId': material.sub_mtrl_id,
                'legacyFlags': material.flags,
                'sourceDiffuseMap': material.diffuse_name,
                'sourceOpacityMap': material.opacity_name,
                'legacyPower': material.power,
            }

            texture = None
            if material.diffuse_name:
                texture = graph.add_texture_uri(self.texture_resolver(material.diffuse_name))
                if texture is None:
                    _log.debug("Texture not resolved: %s", material.diffuse_name)
            if material.opacity_name:
                opacity_uri = self.texture_resolver(material.opacity_name)
                if opacity_uri:
                    extras['opacityTexture'] = opacity_uri

            graph.materials.append(SceneMaterial(
                name=f"mtrl_{material.mtrl_id}",
                mtrl_id=material.mtrl_id,
                sub_mtrl_id=material.sub_mtrl_id,
                alpha_mode=alpha_mode,
                double_sided=material.two_sided,
                roughness=roughness_from_power(material.power),
                alpha_cutoff=(
                    alpha_cutoff_from_value(material.alpha_test_value)
                    if alpha_mode == 'MASK' else None
                ),
                texture=texture,
                extras=extras,
            ))

    # =========================================================================
    # Geometry
    # =========================================================================

    def _resolve_bone(self, name: str, bone_id: int) -> Optional[int]:
        """Exact name, then case-insensitive name, then numeric id"""
        graph = self.graph
        if name:
            index = graph.node_index_by_name.get(name)
            if index is None:
                index = graph.node_index_by_lower_name.get(name.lower())
            if index is not None:
                return index
        if 0 <= bone_id < len(graph.nodes):
            return bone_id
        return None

    def _vertex_skin(self, elu_node: EluNode, point_index: int,
                     fallback: int) -> Tuple[Tuple[int, ...], Tuple[float, ...]]:
        default = ((fallback, 0, 0, 0), (1.0, 0.0, 0.0, 0.0))
        if not 0 <= point_index < len(elu_node.physique):
            return default

        physique = elu_node.physique[point_index]
        influences = []
        for k in range(min(ELU_PHYSIQUE_KEYS, max(0, physique.num))):
            bone = self._resolve_bone(physique.bone_names[k], physique.bone_ids[k])
            weight = physique.weights[k]
            if bone is None or weight <= 0:
                continue
            influences.append((bone, weight))

        if not influences:
            return default

        while len(influences) < ELU_PHYSIQUE_KEYS:
            influences.append((fallback, 0.0))
        total = sum(weight for _, weight in influences)
        divisor = total if total > 1e-8 else 1.0
        return (
            tuple(bone for bone, _ in influences),
            tuple(weight / divisor for _, weight in influences),
        )

    def _create_mesh(self, elu_node: EluNode, node_index: int) -> Optional[SceneMesh]:
        points = elu_node.points
        if not points or not elu_node.faces:
            return None

        skinned = self.graph.skinned

        def point(i: int):
            return points[i] if 0 <= i < len(points) else ORIGIN

        # material index -> list of corner records, in order of first appearance
        groups: Dict[Optional[int], List[tuple]] = {}

        for face in elu_node.faces:
            p0, p1, p2 = (point(i) for i in face.point_index)
            base_normal = None if face.point_normals else flat_normal(p0, p1, p2)
            material = self.materials.resolve(elu_node.mtrl_id, face.mtrl_id)
            corners = groups.setdefault(material, [])

            for c in range(3):
                point_index = face.point_index[c]
                normal = face.point_normals[c] if face.point_normals else base_normal
                u, v = face.uvs[c][0], face.uvs[c][1]
                if skinned:
                    joints, weights = self._vertex_skin(elu_node, point_index, node_index)
                else:
                    joints = weights = None
                corners.append((point(point_index), normal, (u, 1.0 - v), joints, weights))

        submeshes = []
        ordered = []
        for material, corners in groups.items():
            submeshes.append(Submesh(
                material=material,
                index_start=len(ordered),
                index_count=len(corners),
            ))
            ordered.extend(corners)

        vertex_count = len(ordered)
        mesh = SceneMesh(
            name=f"{elu_node.name}_mesh",
            positions=np.array([c[0] for c in ordered], dtype=np.float32).reshape(-1, 3),
            normals=np.array([c[1] for c in ordered], dtype=np.float32).reshape(-1, 3),
            uvs=np.array([c[2] for c in ordered], dtype=np.float32).reshape(-1, 2),
            indices=np.arange(vertex_count, dtype=np.uint32),
            submeshes=submeshes,
        )
        if skinned:
            mesh.joints = np.array([c[3] for c in ordered], dtype=np.uint16).reshape(-1, 4)
            mesh.weights = np.array([c[4] for c in ordered], dtype=np.float32).reshape(-1, 4)
        return mesh


def import_elu(data: bytes, texture_resolver: Optional[TextureResolver] = None) -> SceneGraph:
    """Decode ELU bytes and build the scene graph"""
    model = EluModel.read_from_bytes(data)
    return EluImporter(model, texture_resolver).execute()
