import struct
import unittest

from elu2glb.errors import EndOfData, FormatMismatch
from elu2glb.formats.cursor import BinaryCursor, decode_fixed_string
from elu2glb.formats.elu_format import (
    EluMaterial, EluModel, EluNode,
    EXPORTER_MESH_VER2, EXPORTER_MESH_VER3, EXPORTER_MESH_VER4,
    EXPORTER_MESH_VER6, EXPORTER_MESH_VER7, EXPORTER_MESH_VER8,
    RM_FLAG_ADDITIVE, RM_FLAG_TWOSIDED, RM_FLAG_USEALPHATEST, RM_FLAG_USEOPACITY,
)

from fixture_builders import (
    build_elu, elu_material, elu_node, elu_physique, translation,
)

# Older than any shipped version, still decodable with every gate closed
EXPORTER_MESH_VER1 = 0x5000

TRIANGLE = [(0.0, 0.0, 0.0), (1.0, 0.0, 0.0), (0.0, 1.0, 0.0)]


class TestBinaryCursor(unittest.TestCase):

    def test_reads_little_endian_primitives(self):
        data = struct.pack('<i I f', -2, 0xDEADBEEF, 1.5)
        cursor = BinaryCursor(data)
        self.assertEqual(cursor.read_i32(), -2)
        self.assertEqual(cursor.read_u32(), 0xDEADBEEF)
        self.assertEqual(cursor.read_f32(), 1.5)
        self.assertEqual(cursor.remaining, 0)

    def test_string_cut_at_nul_and_trimmed(self):
        cursor = BinaryCursor(b' Bip01 \x00garbage' + b'\x00' * 25)
        self.assertEqual(cursor.read_string(40), 'Bip01')
        self.assertEqual(cursor.offset, 40)

    def test_read_past_end_raises(self):
        cursor = BinaryCursor(b'\x01\x02\x03')
        with self.assertRaises(EndOfData) as ctx:
            cursor.read_i32()
        self.assertEqual(ctx.exception.offset, 0)
        self.assertEqual(ctx.exception.size, 4)
        # A failed read does not move the cursor
        self.assertEqual(cursor.offset, 0)

    def test_negative_size_rejected(self):
        cursor = BinaryCursor(b'\x00' * 8)
        with self.assertRaises(EndOfData):
            cursor.skip(-1)

    def test_records_checked_before_unpacking(self):
        cursor = BinaryCursor(struct.pack('<3f', 1, 2, 3) * 2)
        with self.assertRaises(EndOfData):
            cursor.read_records(struct.Struct('<3f'), 3)
        self.assertEqual(cursor.offset, 0)
        self.assertEqual(cursor.read_records(struct.Struct('<3f'), 0), [])


class TestMaterialVersionGates(unittest.TestCase):
    """Each threshold decodes exactly the documented field set"""

    def _read(self, version, **kwargs):
        data = elu_material(version, **kwargs)
        cursor = BinaryCursor(data)
        material = EluMaterial.read(cursor, version, 0)
        self.assertEqual(cursor.offset, len(data))
        return material, len(data)

    def test_record_sizes(self):
        expected = {
            EXPORTER_MESH_VER3: 64 + 2 * 40,
            EXPORTER_MESH_VER4: 64 + 2 * 40 + 4,
            EXPORTER_MESH_VER6: 64 + 2 * 40 + 8,
            EXPORTER_MESH_VER7: 64 + 2 * 256 + 8,
            EXPORTER_MESH_VER8: 64 + 2 * 256 + 12,
        }
        for version, size in expected.items():
            with self.subTest(version=hex(version)):
                _, length = self._read(version)
                self.assertEqual(length, size)

    def test_two_sided_flag_above_ver3(self):
        material, _ = self._read(EXPORTER_MESH_VER3, two_sided=1)
        self.assertFalse(material.two_sided)
        material, _ = self._read(EXPORTER_MESH_VER4, two_sided=1)
        self.assertTrue(material.two_sided)
        self.assertEqual(material.flags, RM_FLAG_TWOSIDED)

    def test_additive_flag_above_ver4(self):
        material, _ = self._read(EXPORTER_MESH_VER4, additive=1)
        self.assertFalse(material.additive)
        material, _ = self._read(EXPORTER_MESH_VER6, additive=1)
        self.assertTrue(material.additive)
        self.assertEqual(material.alpha_mode, 'BLEND')

    def test_alpha_test_above_ver7(self):
        material, _ = self._read(EXPORTER_MESH_VER7, alpha_test=100)
        self.assertEqual(material.alpha_test_value, 0)
        material, _ = self._read(EXPORTER_MESH_VER8, alpha_test=100)
        self.assertEqual(material.alpha_test_value, 100)
        self.assertEqual(material.alpha_mode, 'MASK')

    def test_long_texture_names_from_ver7(self):
        long_name = 'model/weapon/' + 'k' * 60 + '.dds'
        material, _ = self._read(EXPORTER_MESH_VER7, diffuse=long_name)
        self.assertEqual(material.diffuse_name, long_name)

    def test_texture_names_use_forward_slashes(self):
        material, _ = self._read(EXPORTER_MESH_VER6, diffuse='model\\knife.tga')
        self.assertEqual(material.diffuse_name, 'model/knife.tga')

    def test_alpha_mode_priority(self):
        material, _ = self._read(EXPORTER_MESH_VER8, opacity='a.tga', alpha_test=1)
        self.assertEqual(material.flags, RM_FLAG_USEOPACITY | RM_FLAG_USEALPHATEST)
        self.assertEqual(material.alpha_mode, 'MASK')
        material, _ = self._read(EXPORTER_MESH_VER8, opacity='a.tga', additive=1)
        self.assertTrue(material.flags & RM_FLAG_ADDITIVE)
        self.assertEqual(material.alpha_mode, 'BLEND')
        material, _ = self._read(EXPORTER_MESH_VER8, opacity='a.tga')
        self.assertEqual(material.alpha_mode, 'BLEND')
        material, _ = self._read(EXPORTER_MESH_VER8)
        self.assertEqual(material.alpha_mode, 'OPAQUE')

    def test_power_scaled_by_100(self):
        material, _ = self._read(EXPORTER_MESH_VER6, power=0.25)
        self.assertAlmostEqual(material.power, 25.0)


class TestNodeVersionGates(unittest.TestCase):

    def _read(self, version, **kwargs):
        data = elu_node(version, 'node', **kwargs)
        cursor = BinaryCursor(data)
        node = EluNode.read(cursor, version, 0)
        self.assertEqual(cursor.offset, len(data))
        return node, len(data)

    def test_empty_node_sizes(self):
        expected = {
            EXPORTER_MESH_VER1: 80 + 64 + 4 + 4 + 4 + 4,
            EXPORTER_MESH_VER2: 80 + 64 + 12 + 4 + 4 + 4 + 4,
            EXPORTER_MESH_VER3: 80 + 64 + 12 + 4 + 4 + 4 + 4,
            EXPORTER_MESH_VER4: 80 + 64 + 12 + 96 + 4 + 4 + 4 + 4,
            EXPORTER_MESH_VER6: 80 + 64 + 12 + 96 + 4 + 4 + 4 + 4 + 4,
        }
        for version, size in expected.items():
            with self.subTest(version=hex(version)):
                _, length = self._read(version)
                self.assertEqual(length, size)

    def test_aux_blocks(self):
        node, _ = self._read(EXPORTER_MESH_VER1)
        self.assertIsNone(node.axis_block)
        node, _ = self._read(EXPORTER_MESH_VER3)
        self.assertIsNone(node.axis_block)
        node, _ = self._read(EXPORTER_MESH_VER4)
        self.assertEqual(len(node.axis_block), 24)

    def test_face_record_sizes(self):
        faces = [(0, 1, 2)]
        empty = {v: self._read(v)[1] for v in (EXPORTER_MESH_VER2, EXPORTER_MESH_VER3, EXPORTER_MESH_VER6)}
        expected = {
            EXPORTER_MESH_VER2: 12 + 36 + 4,
            EXPORTER_MESH_VER3: 12 + 36 + 4 + 4,
            EXPORTER_MESH_VER6: 12 + 36 + 4 + 4 + 48,
        }
        for version, face_size in expected.items():
            with self.subTest(version=hex(version)):
                node, length = self._read(version, points=TRIANGLE, faces=faces)
                self.assertEqual(length - empty[version] - 3 * 12, face_size)
                self.assertEqual(len(node.faces), 1)

    def test_explicit_normals_from_ver6(self):
        node, _ = self._read(EXPORTER_MESH_VER4, points=TRIANGLE, faces=[(0, 1, 2)])
        self.assertIsNone(node.faces[0].point_normals)
        node, _ = self._read(EXPORTER_MESH_VER6, points=TRIANGLE, faces=[(0, 1, 2)],
                             point_normals=[(1.0, 0.0, 0.0)] * 3)
        self.assertEqual(node.faces[0].point_normals[2], (1.0, 0.0, 0.0))
        self.assertEqual(node.faces[0].face_normal, (0.0, 0.0, 1.0))

    def test_point_colors_skipped(self):
        node, _ = self._read(EXPORTER_MESH_VER6, point_color_count=5, mtrl_id=7)
        self.assertEqual(node.point_color_count, 5)
        self.assertEqual(node.mtrl_id, 7)

    def test_face_fields(self):
        node, _ = self._read(EXPORTER_MESH_VER3, points=TRIANGLE, faces=[(2, 1, 0)],
                             face_mtrl_ids=[4], uvs=[(0.25, 0.75, 0.0)] * 3)
        face = node.faces[0]
        self.assertEqual(face.point_index, (2, 1, 0))
        self.assertEqual(face.mtrl_id, 4)
        self.assertEqual(face.uvs[0], (0.25, 0.75, 0.0))

    def test_physique_records(self):
        physique = [elu_physique([('Bip01', 0.75, 0), ('Bip01 Spine', 0.25, 1)])]
        node, _ = self._read(EXPORTER_MESH_VER6, points=TRIANGLE[:1], physique=physique)
        record = node.physique[0]
        self.assertEqual(record.bone_names[:2], ('Bip01', 'Bip01 Spine'))
        self.assertEqual(record.weights[:2], (0.75, 0.25))
        self.assertEqual(record.bone_ids[:2], (0, 1))
        self.assertEqual(record.num, 2)
        self.assertEqual(node.physique_count, 1)

    def test_physique_names_decode_like_strings(self):
        raw_name = b' Bip01 \x00junk'.ljust(40, b'\x00')
        physique = [raw_name + elu_physique([('', 1.0, 0)])[40:]]
        node, _ = self._read(EXPORTER_MESH_VER6, points=TRIANGLE[:1], physique=physique)
        self.assertEqual(node.physique[0].bone_names[0], 'Bip01')
        self.assertEqual(decode_fixed_string(raw_name), BinaryCursor(raw_name).read_string(40))


class TestEluModel(unittest.TestCase):

    def test_reads_materials_and_nodes(self):
        version = EXPORTER_MESH_VER8
        data = build_elu(
            version,
            materials=[elu_material(version, mtrl_id=0), elu_material(version, mtrl_id=1)],
            nodes=[
                elu_node(version, 'root', mat_base=translation(1, 2, 3)),
                elu_node(version, 'child', 'root', points=TRIANGLE, faces=[(0, 1, 2)]),
            ],
        )
        model = EluModel.read_from_bytes(data)
        self.assertEqual(model.version, version)
        self.assertEqual([m.mtrl_id for m in model.materials], [0, 1])
        self.assertEqual([n.name for n in model.nodes], ['root', 'child'])
        self.assertEqual(model.nodes[1].parent, 'root')
        self.assertEqual(model.nodes[0].mat_base[12:15], (1.0, 2.0, 3.0))
        self.assertFalse(model.has_skin)

    def test_signature_mismatch(self):
        data = struct.pack('<I I i i', 0x12345678, EXPORTER_MESH_VER8, 0, 0)
        with self.assertRaises(FormatMismatch) as ctx:
            EluModel.read_from_bytes(data)
        self.assertEqual(ctx.exception.signature, 0x12345678)

    def test_truncated_file(self):
        version = EXPORTER_MESH_VER6
        data = build_elu(version, nodes=[elu_node(version, 'n', points=TRIANGLE, faces=[(0, 1, 2)])])
        with self.assertRaises(EndOfData):
            EluModel.read_from_bytes(data[:-3])

    def test_negative_counts_are_empty(self):
        data = struct.pack('<I I i i', 0x0107F060, EXPORTER_MESH_VER8, -4, -1)
        model = EluModel.read_from_bytes(data)
        self.assertEqual(model.materials, [])
        self.assertEqual(model.nodes, [])


if __name__ == '__main__':
    unittest.main()
