"""
GLB Exporter

Serializes a finished SceneGraph into a binary glTF 2.0 container.

Layout decisions:
- One buffer; every array is its own 4-byte aligned buffer view
- Each node mesh has one set of vertex attributes shared by all of its
  primitives; primitives are index ranges of one index buffer view
- Indices are unsigned short when every index fits, else unsigned int
- Skin and JOINTS_0/WEIGHTS_0 only exist when the model carries skin data
- Empty top-level arrays are left out of the document
"""

import logging
from typing import Dict, Tuple

import numpy as np

from ..formats.glb_format import (
    GlbBuffer, TARGET_ARRAY_BUFFER, TARGET_ELEMENT_ARRAY_BUFFER,
    component_type_for, pack_glb,
)
from ..scene_graph import AnimationClip, SceneGraph, SceneMaterial, SceneMesh

_log = logging.getLogger(__name__)

DEFAULT_GENERATOR = 'elu2glb'

PRIMITIVE_TRIANGLES = 4

# LINEAR magnification, LINEAR_MIPMAP_LINEAR minification, REPEAT wrapping
DEFAULT_SAMPLER = {
    'magFilter': 9729,
    'minFilter': 9987,
    'wrapS': 10497,
    'wrapT': 10497,
}


class GLBExporter:
    """Writes a SceneGraph as GLB bytes"""

    def __init__(self, graph: SceneGraph, generator: str = DEFAULT_GENERATOR):
        """
        Initialize exporter.

        Args:
            graph: Completed scene graph (nodes, materials, skin, animations)
            generator: Value of asset.generator
        """
        self.graph = graph
        self.generator = generator
        self.buffer = GlbBuffer()

    def execute(self) -> bytes:
        """
        Execute export.

        Returns:
            Complete GLB file contents
        """
        document, blob = self.build_document()
        data = pack_glb(document, blob)
        _log.debug(
            "Packed GLB: %d bytes (%d buffer views, %d accessors)",
            len(data), len(self.buffer.buffer_views), len(self.buffer.accessors),
        )
        return data

    def build_document(self) -> Tuple[Dict, bytes]:
        """Build the glTF JSON document and its binary blob"""
        graph = self.graph
        skin_index = 0 if graph.skinned and graph.nodes else None

        nodes = []
        meshes = []
        for scene_node in graph.nodes:
            node = {
                'name': scene_node.name,
                'matrix': [float(v) for v in scene_node.matrix],
            }
            if scene_node.children:
                node['children'] = list(scene_node.children)
            if scene_node.mesh is not None:
                node['mesh'] = len(meshes)
                meshes.append(self._write_mesh(scene_node.mesh))
                if skin_index is not None:
                    node['skin'] = skin_index
            nodes.append(node)

        skins = []
        if skin_index is not None:
            skins.append(self._write_skin())

        animations = [self._write_animation(clip) for clip in graph.animations]

        materials = [self._write_material(m) for m in graph.materials]
        textures = [{'sampler': 0, 'source': i} for i in range(len(graph.texture_uris))]
        images = [{'uri': uri} for uri in graph.texture_uris]
        samplers = [dict(DEFAULT_SAMPLER)] if textures else []

        scene = {}
        if graph.roots:
            scene['nodes'] = list(graph.roots)

        blob = self.buffer.tobytes()
        buffers = [{'byteLength': len(blob)}] if blob else []

        document = {
            'asset': {'version': '2.0', 'generator': self.generator},
            'scene': 0,
            'scenes': [scene],
        }
        for key, value in (
            ('nodes', nodes),
            ('meshes', meshes),
            ('materials', materials),
            ('textures', textures),
            ('images', images),
            ('samplers', samplers),
            ('skins', skins),
            ('animations', animations),
            ('accessors', self.buffer.accessors),
            ('bufferViews', self.buffer.buffer_views),
            ('buffers', buffers),
        ):
            if value:
                document[key] = value

        return document, blob

    # =========================================================================
    # Writers
    # =========================================================================

    def _write_mesh(self, mesh: SceneMesh) -> Dict:
        buf = self.buffer

        attributes = {
            'POSITION': buf.add_accessor(mesh.positions, 'VEC3', TARGET_ARRAY_BUFFER,
                                         with_bounds=True),
            'NORMAL': buf.add_accessor(mesh.normals, 'VEC3', TARGET_ARRAY_BUFFER),
            'TEXCOORD_0': buf.add_accessor(mesh.uvs, 'VEC2', TARGET_ARRAY_BUFFER),
        }
        if self.graph.skinned and mesh.joints is not None and mesh.weights is not None:
            attributes['JOINTS_0'] = buf.add_accessor(mesh.joints, 'VEC4', TARGET_ARRAY_BUFFER)
            attributes['WEIGHTS_0'] = buf.add_accessor(mesh.weights, 'VEC4', TARGET_ARRAY_BUFFER)

        indices = mesh.indices
        if len(indices) == 0 or int(indices.max()) <= 0xFFFF:
            indices = indices.astype(np.uint16)
        else:
            indices = indices.astype(np.uint32)
        component_type = component_type_for(indices.dtype)
        view = buf.add_buffer_view(indices.astype(indices.dtype.newbyteorder('<')).tobytes(),
                                   TARGET_ELEMENT_ARRAY_BUFFER)

        primitives = []
        for submesh in mesh.submeshes:
            primitive = {
                'mode': PRIMITIVE_TRIANGLES,
                'attributes': dict(attributes),
                'indices': buf.add_accessor_for_view(
                    view, component_type, submesh.index_count, 'SCALAR',
                    byte_offset=submesh.index_start * indices.dtype.itemsize,
                ),
            }
            if submesh.material is not None:
                primitive['material'] = submesh.material
            primitives.append(primitive)

        return {'name': mesh.name, 'primitives': primitives}

    def _write_skin(self) -> Dict:
        graph = self.graph
        matrices = np.array(graph.inverse_bind_matrices, dtype=np.float32).reshape(-1, 16)
        return {
            'joints': list(range(len(graph.nodes))),
            'inverseBindMatrices': self.buffer.add_accessor(matrices, 'MAT4'),
            'skeleton': 0,
        }

    def _write_animation(self, clip: AnimationClip) -> Dict:
        samplers = []
        channels = []
        for channel in clip.channels:
            value_type = 'VEC3' if channel.path == 'translation' else 'VEC4'
            samplers.append({
                'input': self.buffer.add_accessor(channel.times, 'SCALAR', with_bounds=True),
                'output': self.buffer.add_accessor(channel.values, value_type),
                'interpolation': 'LINEAR',
            })
            channels.append({
                'sampler': len(samplers) - 1,
                'target': {'node': channel.node, 'path': channel.path},
            })
        return {
            'name': clip.name,
            'samplers': samplers,
            'channels': channels,
            'extras': {
                'originalName': clip.original_name,
                'motionType': clip.motion_type,
                'sourceFile': clip.source,
            },
        }

    def _write_material(self, material: SceneMaterial) -> Dict:
        pbr = {
            'baseColorFactor': [1.0, 1.0, 1.0, 1.0],
            'metallicFactor': 0.0,
            'roughnessFactor': material.roughness,
        }
        if material.texture is not None:
            pbr['baseColorTexture'] = {'index': material.texture}

        result = {
            'name': material.name,
            'pbrMetallicRoughness': pbr,
            'alphaMode': material.alpha_mode,
            'doubleSided': material.double_sided,
            'extras': dict(material.extras),
        }
        if material.alpha_cutoff is not None:
            result['alphaCutoff'] = material.alpha_cutoff
        return result


def export_glb(graph: SceneGraph, generator: str = DEFAULT_GENERATOR) -> bytes:
    """Serialize a scene graph to GLB bytes"""
    return GLBExporter(graph, generator).execute()
