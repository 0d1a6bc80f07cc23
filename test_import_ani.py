import unittest

import numpy as np

from elu2glb.formats.ani_format import (
    ANI_TYPE_BONE, ANI_TYPE_TM, EXPORTER_ANI_VER3,
)
from elu2glb.formats.elu_format import EXPORTER_MESH_VER8
from elu2glb.importers.import_ani import (
    AniImporter, ClipRef, unique_clip_name,
    CLIP_ADDED, CLIP_ERROR, CLIP_MISSING, CLIP_SKIPPED,
    REASON_NO_CHANNELS, REASON_NOT_BONE,
)
from elu2glb.importers.import_elu import import_elu

from fixture_builders import (
    ani_bone_track, ani_tm_track, build_ani, build_elu, elu_node,
)

ANI_VERSION = EXPORTER_ANI_VER3 + 1


def two_bone_graph():
    v = EXPORTER_MESH_VER8
    return import_elu(build_elu(v, nodes=[elu_node(v, 'pelvis'), elu_node(v, 'chest', 'pelvis')]))


def bone_clip(*tracks):
    return build_ani(ANI_VERSION, ANI_TYPE_BONE, list(tracks))


class TestUniqueNames(unittest.TestCase):

    def test_collision_sequence(self):
        taken = set()
        for expected in ('run', 'run#m1', 'run#m1_2', 'run#m1_3'):
            name = unique_clip_name('run', 1, taken)
            self.assertEqual(name, expected)
            taken.add(name)

    def test_motion_type_distinguishes(self):
        self.assertEqual(unique_clip_name('run', 2, {'run', 'run#m1'}), 'run#m2')


class TestAssembler(unittest.TestCase):

    def test_channels_and_times(self):
        graph = two_bone_graph()
        data = bone_clip(
            ani_bone_track(ANI_VERSION, 'chest',
                           position_keys=[(0.0, 0.0, 0.0, 0), (1.0, 0.0, 0.0, 15)],
                           rotation_keys=[(0.0, 0.0, 0.0, 1.0, 0), (0.0, 0.0, 0.0, 1.0, 30),
                                          (0.0, 0.0, 0.0, 1.0, 60)]),
            ani_bone_track(ANI_VERSION, 'tail', position_keys=[(0.0, 0.0, 0.0, 0)]),
        )
        results = AniImporter(graph, fps=30.0).execute([ClipRef('idle', 0, 'idle.ani', data)])

        self.assertEqual(results[0].status, CLIP_ADDED)
        self.assertEqual(results[0].output_name, 'idle')
        clip = graph.animations[0]
        self.assertEqual([(c.node, c.path) for c in clip.channels],
                         [(1, 'translation'), (1, 'rotation')])
        np.testing.assert_allclose(clip.channels[0].times, [0.0, 0.5])
        np.testing.assert_allclose(clip.channels[1].times, [0.0, 1.0, 2.0])
        self.assertEqual(clip.channels[1].values.shape, (3, 4))
        self.assertEqual(clip.source, 'idle.ani')

    def test_fps_scales_times(self):
        graph = two_bone_graph()
        data = bone_clip(ani_bone_track(ANI_VERSION, 'pelvis', position_keys=[(0.0, 0.0, 0.0, 48)]))
        AniImporter(graph, fps=24.0).add_clip(ClipRef('walk', 0, '', data))
        np.testing.assert_allclose(graph.animations[0].channels[0].times, [2.0])

    def test_fps_must_be_positive(self):
        with self.assertRaises(ValueError):
            AniImporter(two_bone_graph(), fps=0.0)

    def test_statuses(self):
        graph = two_bone_graph()
        clips = [
            ClipRef('gone', 1, 'gone.ani', None),
            ClipRef('broken', 1, 'broken.ani', b'\x00\x01'),
            ClipRef('matrix', 1, 'tm.ani', build_ani(ANI_VERSION, ANI_TYPE_TM, [
                ani_tm_track(ANI_VERSION, 'pelvis', 2),
            ])),
            ClipRef('stranger', 1, 'stranger.ani', bone_clip(
                ani_bone_track(ANI_VERSION, 'nobody', position_keys=[(0.0, 0.0, 0.0, 0)]),
            )),
            ClipRef('still', 1, 'still.ani', bone_clip(ani_bone_track(ANI_VERSION, 'pelvis'))),
        ]
        with self.assertLogs('elu2glb.importers.import_ani', level='INFO'):
            results = AniImporter(graph).execute(clips)

        self.assertEqual([r.status for r in results],
                         [CLIP_MISSING, CLIP_ERROR, CLIP_SKIPPED, CLIP_SKIPPED, CLIP_SKIPPED])
        self.assertIn('end of data', results[1].error.lower())
        self.assertEqual(results[2].reason, REASON_NOT_BONE)
        self.assertEqual(results[2].ani_type, ANI_TYPE_TM)
        self.assertEqual(results[3].reason, REASON_NO_CHANNELS)
        self.assertEqual(results[4].reason, REASON_NO_CHANNELS)
        self.assertEqual(graph.animations, [])

    def test_duplicate_clip_names(self):
        graph = two_bone_graph()
        data = bone_clip(ani_bone_track(ANI_VERSION, 'pelvis', position_keys=[(0.0, 0.0, 0.0, 0)]))
        results = AniImporter(graph).execute([
            ClipRef('attack', 3, 'a.ani', data),
            ClipRef('attack', 3, 'b.ani', data),
            ClipRef('attack', 3, 'c.ani', data),
        ])
        self.assertEqual([r.output_name for r in results], ['attack', 'attack#m3', 'attack#m3_2'])
        self.assertEqual([a.original_name for a in graph.animations], ['attack'] * 3)

    def test_repeated_track_keeps_first(self):
        graph = two_bone_graph()
        data = bone_clip(
            ani_bone_track(ANI_VERSION, 'pelvis', position_keys=[(1.0, 0.0, 0.0, 0)]),
            ani_bone_track(ANI_VERSION, 'pelvis', position_keys=[(2.0, 0.0, 0.0, 0)]),
        )
        with self.assertLogs('elu2glb.importers.import_ani', level='WARNING'):
            result = AniImporter(graph).add_clip(ClipRef('walk', 0, 'walk.ani', data))

        clip = graph.animations[0]
        targets = [(c.node, c.path) for c in clip.channels]
        self.assertEqual(targets, [(0, 'translation')])
        np.testing.assert_allclose(clip.channels[0].values, [[1.0, 0.0, 0.0]])
        self.assertEqual(clip.duplicate_tracks, ['pelvis'])
        self.assertEqual(result.to_dict()['duplicateTracks'], ['pelvis'])

    def test_result_dict(self):
        graph = two_bone_graph()
        result = AniImporter(graph).add_clip(ClipRef('gone', 2, 'x/gone.ani', None))
        self.assertEqual(result.to_dict(), {
            'clipName': 'gone',
            'motionType': 2,
            'sourceAni': 'x/gone.ani',
            'status': 'missing',
        })


if __name__ == '__main__':
    unittest.main()
