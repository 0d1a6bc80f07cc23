import struct
import unittest

import numpy as np

from elu2glb.convert import ConversionOptions, convert
from elu2glb.errors import FormatMismatch, UnsupportedSchema
from elu2glb.exporters.export_glb import GLBExporter
from elu2glb.formats.ani_format import ANI_TYPE_BONE, EXPORTER_ANI_VER3
from elu2glb.formats.elu_format import EXPORTER_MESH_VER8
from elu2glb.formats.glb_format import (
    COMPONENT_UNSIGNED_INT, COMPONENT_UNSIGNED_SHORT, GLB_CHUNK_BIN, GLB_CHUNK_JSON,
    GLB_MAGIC, GlbBuffer, pack_glb, read_accessor, read_glb,
)
from elu2glb.importers.import_ani import ClipRef
from elu2glb.scene_graph import SceneGraph, SceneMesh, SceneNode, Submesh

from fixture_builders import (
    ani_bone_track, build_ani, build_elu, elu_material, elu_node, elu_physique,
)

V = EXPORTER_MESH_VER8
ANI_VERSION = EXPORTER_ANI_VER3 + 1
TRIANGLE = [(0.0, 0.0, 0.0), (1.0, 0.0, 0.0), (0.0, 1.0, 0.0)]
CHEST_TRIANGLE = [(0.0, 1.0, 0.0), (1.0, 1.0, 0.0), (0.0, 2.0, 0.0)]


def pelvis_chest_elu(skinned=False):
    physique = [elu_physique([('pelvis', 1.0, 0)])] * 3 if skinned else []
    return build_elu(V, [elu_material(V, mtrl_id=0)], [
        elu_node(V, 'pelvis', points=TRIANGLE, faces=[(0, 1, 2)], physique=physique),
        elu_node(V, 'chest', 'pelvis', points=CHEST_TRIANGLE, faces=[(0, 1, 2)]),
    ])


def pelvis_clip():
    return build_ani(ANI_VERSION, ANI_TYPE_BONE, [
        ani_bone_track(ANI_VERSION, 'pelvis',
                       position_keys=[(0.0, 0.0, 0.0, 0), (0.0, 0.0, 5.0, 30)]),
    ])


class TestGlbContainer(unittest.TestCase):

    def test_framing_and_padding(self):
        document = {'asset': {'version': '2.0'}}
        data = pack_glb(document, b'\x01\x02\x03\x04\x05')
        magic, version, length = struct.unpack_from('<I I I', data, 0)
        self.assertEqual((magic, version), (GLB_MAGIC, 2))
        self.assertEqual(length, len(data))
        self.assertEqual(len(data) % 4, 0)

        json_length, json_type = struct.unpack_from('<I I', data, 12)
        self.assertEqual(json_type, GLB_CHUNK_JSON)
        self.assertEqual(json_length % 4, 0)
        json_chunk = data[20:20 + json_length]
        self.assertEqual(json_chunk.rstrip(b' '), b'{"asset":{"version":"2.0"}}')

        bin_length, bin_type = struct.unpack_from('<I I', data, 20 + json_length)
        self.assertEqual(bin_type, GLB_CHUNK_BIN)
        self.assertEqual(bin_length, 8)
        self.assertEqual(data[-3:], b'\x00\x00\x00')

        parsed, blob = read_glb(data)
        self.assertEqual(parsed, document)
        self.assertEqual(blob[:5], b'\x01\x02\x03\x04\x05')

    def test_buffer_views_aligned(self):
        buf = GlbBuffer()
        buf.add_buffer_view(b'\x01\x02\x03')
        second = buf.add_buffer_view(b'\x04')
        self.assertEqual(buf.buffer_views[second]['byteOffset'], 4)
        self.assertEqual(buf.tobytes(), b'\x01\x02\x03\x00\x04')

    def test_bad_magic_and_length(self):
        with self.assertRaises(FormatMismatch):
            read_glb(b'\x00' * 12)
        data = pack_glb({'asset': {'version': '2.0'}}, b'')
        with self.assertRaises(UnsupportedSchema):
            read_glb(data + b'\x00\x00\x00\x00')


class TestPelvisChestScenario(unittest.TestCase):

    def setUp(self):
        result = convert(pelvis_chest_elu(), [ClipRef('walk', 0, 'walk.ani', pelvis_clip())])
        self.result = result
        self.document, self.blob = read_glb(result.glb)

    def test_hierarchy(self):
        nodes = self.document['nodes']
        self.assertEqual([n['name'] for n in nodes], ['pelvis', 'chest'])
        self.assertEqual(nodes[0]['children'], [1])
        self.assertNotIn('children', nodes[1])
        self.assertEqual(self.document['scenes'][self.document['scene']]['nodes'], [0])

    def test_single_translation_channel(self):
        animations = self.document['animations']
        self.assertEqual(len(animations), 1)
        channels = animations[0]['channels']
        self.assertEqual(len(channels), 1)
        self.assertEqual(channels[0]['target'], {'node': 0, 'path': 'translation'})
        sampler = animations[0]['samplers'][channels[0]['sampler']]
        self.assertEqual(sampler['interpolation'], 'LINEAR')
        self.assertEqual(animations[0]['extras'],
                         {'originalName': 'walk', 'motionType': 0, 'sourceFile': 'walk.ani'})

    def test_no_skin_without_physique(self):
        self.assertNotIn('skins', self.document)
        for mesh in self.document['meshes']:
            for primitive in mesh['primitives']:
                self.assertNotIn('JOINTS_0', primitive['attributes'])
                self.assertNotIn('WEIGHTS_0', primitive['attributes'])
        for node in self.document['nodes']:
            self.assertNotIn('skin', node)

    def test_round_trip_geometry(self):
        graph = self.result.graph
        primitive = self.document['meshes'][1]['primitives'][0]
        positions = read_accessor(self.document, self.blob, primitive['attributes']['POSITION'])
        np.testing.assert_allclose(positions, graph.nodes[1].mesh.positions)
        indices = read_accessor(self.document, self.blob, primitive['indices'])
        np.testing.assert_array_equal(indices.reshape(-1), graph.nodes[1].mesh.indices)
        accessor = self.document['accessors'][primitive['attributes']['POSITION']]
        self.assertEqual(accessor['min'], [0.0, 1.0, 0.0])
        self.assertEqual(accessor['max'], [1.0, 2.0, 0.0])
        self.assertEqual(self.document['accessors'][primitive['indices']]['componentType'],
                         COMPONENT_UNSIGNED_SHORT)
        self.assertEqual(primitive['material'], 0)
        self.assertEqual(primitive['mode'], 4)

    def test_round_trip_keyframes(self):
        animation = self.document['animations'][0]
        sampler = animation['samplers'][0]
        times = read_accessor(self.document, self.blob, sampler['input'])
        values = read_accessor(self.document, self.blob, sampler['output'])
        np.testing.assert_allclose(times.reshape(-1), [0.0, 1.0])
        np.testing.assert_allclose(values, [[0.0, 0.0, 0.0], [0.0, 0.0, 5.0]])
        accessor = self.document['accessors'][sampler['input']]
        self.assertEqual((accessor['min'], accessor['max']), ([0.0], [1.0]))

    def test_document_basics(self):
        document = self.document
        self.assertEqual(document['asset']['version'], '2.0')
        self.assertLessEqual(len(self.blob) - document['buffers'][0]['byteLength'], 3)
        for view in document['bufferViews']:
            self.assertEqual(view['byteOffset'] % 4, 0)
        # No textures resolved: no textures, images or samplers
        for key in ('textures', 'images', 'samplers'):
            self.assertNotIn(key, document)
        material = document['materials'][0]
        self.assertEqual(material['pbrMetallicRoughness']['baseColorFactor'], [1.0, 1.0, 1.0, 1.0])
        self.assertEqual(material['extras']['legacyMtrlId'], 0)

    def test_summary(self):
        self.assertEqual(self.result.summary, {
            'materialCount': 1,
            'meshNodeCount': 2,
            'primitiveCount': 2,
            'vertexCount': 6,
            'indexCount': 6,
            'animationCount': 1,
        })


class TestSkinnedExport(unittest.TestCase):

    def test_skin_and_attributes(self):
        result = convert(pelvis_chest_elu(skinned=True))
        document, blob = read_glb(result.glb)

        skin = document['skins'][0]
        self.assertEqual(skin['joints'], [0, 1])
        self.assertEqual(skin['skeleton'], 0)
        matrices = read_accessor(document, blob, skin['inverseBindMatrices'])
        self.assertEqual(matrices.shape, (2, 16))

        for node in document['nodes']:
            self.assertEqual(node['skin'], 0)
            attributes = document['meshes'][node['mesh']]['primitives'][0]['attributes']
            joints = read_accessor(document, blob, attributes['JOINTS_0'])
            weights = read_accessor(document, blob, attributes['WEIGHTS_0'])
            np.testing.assert_allclose(weights.sum(axis=1), 1.0, rtol=1e-6)
            self.assertEqual(joints.shape, (3, 4))
        # Chest has no physique and binds to itself
        chest = document['nodes'][1]
        attributes = document['meshes'][chest['mesh']]['primitives'][0]['attributes']
        np.testing.assert_array_equal(read_accessor(document, blob, attributes['JOINTS_0'])[:, 0], 1)


class TestSubmeshRanges(unittest.TestCase):

    def test_one_material_gives_one_primitive(self):
        materials = [elu_material(V, mtrl_id=0), elu_material(V, mtrl_id=1)]
        data = build_elu(V, materials, [
            elu_node(V, 'n', points=TRIANGLE, faces=[(0, 1, 2)] * 3, face_mtrl_ids=[0, 0, 0]),
        ])
        document, blob = read_glb(convert(data).glb)
        primitives = document['meshes'][0]['primitives']
        self.assertEqual(len(primitives), 1)

    def test_large_mesh_uses_32bit_indices(self):
        graph = SceneGraph()
        count = 70000 * 3
        mesh = SceneMesh(
            name='big_mesh',
            positions=np.zeros((count, 3), dtype=np.float32),
            normals=np.zeros((count, 3), dtype=np.float32),
            uvs=np.zeros((count, 2), dtype=np.float32),
            indices=np.arange(count, dtype=np.uint32),
            submeshes=[Submesh(None, 0, count - 3), Submesh(None, count - 3, 3)],
        )
        graph.nodes.append(SceneNode(0, 'big', '', (1.0,) * 16, mesh=mesh))
        graph.roots.append(0)
        document, blob = GLBExporter(graph).build_document()

        primitives = document['meshes'][0]['primitives']
        second = document['accessors'][primitives[1]['indices']]
        self.assertEqual(second['componentType'], COMPONENT_UNSIGNED_INT)
        self.assertEqual(second['byteOffset'], (count - 3) * 4)
        self.assertEqual(primitives[0]['attributes'], primitives[1]['attributes'])
        self.assertNotIn('material', primitives[0])
        indices = read_accessor(document, blob, primitives[1]['indices'])
        np.testing.assert_array_equal(indices.reshape(-1), [count - 3, count - 2, count - 1])


class TestOptions(unittest.TestCase):

    def test_generator_and_fps(self):
        result = convert(pelvis_chest_elu(), [ClipRef('walk', 0, '', pelvis_clip())],
                         ConversionOptions(fps=15.0, generator='test-gen'))
        document, blob = read_glb(result.glb)
        self.assertEqual(document['asset']['generator'], 'test-gen')
        sampler = document['animations'][0]['samplers'][0]
        np.testing.assert_allclose(read_accessor(document, blob, sampler['input']).reshape(-1),
                                   [0.0, 2.0])

    def test_invalid_fps(self):
        with self.assertRaises(ValueError):
            ConversionOptions(fps=-1.0)


if __name__ == '__main__':
    unittest.main()
