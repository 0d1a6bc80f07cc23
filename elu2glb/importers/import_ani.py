"""
ANI Animation Assembler

Decodes animation clips and appends them to an existing SceneGraph:
- Bone tracks are matched to nodes by exact name
- Position keys become translation channels, rotation keys become
  rotation channels, each with its own time stream (time = frame / fps)
- Vertex and matrix-track clips are decoded but reported as skipped

Every clip reference yields exactly one ClipResult, so a batch report can
list what happened to each requested clip.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import numpy as np

from ..errors import ConversionError
from ..formats.ani_format import AniAnimation, AniBoneTrack
from ..scene_graph import AnimationChannel, AnimationClip, SceneGraph

_log = logging.getLogger(__name__)

DEFAULT_FPS = 30.0

# Clip statuses
CLIP_ADDED = 'added'
CLIP_SKIPPED = 'skipped'
CLIP_MISSING = 'missing'
CLIP_ERROR = 'error'

# Skip reasons
REASON_NOT_BONE = 'ANI_NOT_BONE'
REASON_NO_CHANNELS = 'NO_CHANNELS'


@dataclass
class ClipRef:
    """One requested animation clip. data is None when the source was not found."""
    name: str
    motion_type: int = 0
    source: str = ''
    data: Optional[bytes] = None


@dataclass
class ClipResult:
    name: str
    motion_type: int
    source: str
    status: str
    reason: str = ''
    output_name: str = ''
    ani_type: Optional[int] = None
    error: str = ''
    duplicate_tracks: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        result = {
            'clipName': self.name,
            'motionType': self.motion_type,
            'sourceAni': self.source,
            'status': self.status,
        }
        if self.ani_type is not None:
            result['aniType'] = self.ani_type
        if self.status in (CLIP_ADDED, CLIP_SKIPPED):
            result['reason'] = self.reason
            result['outputName'] = self.output_name
        if self.duplicate_tracks:
            result['duplicateTracks'] = list(self.duplicate_tracks)
        if self.error:
            result['error'] = self.error
        return result


def unique_clip_name(name: str, motion_type: int, taken) -> str:
    """Name not yet in taken: name, then name#m<motion>, then name#m<motion>_<n>"""
    if name not in taken:
        return name
    candidate = f"{name}#m{motion_type}"
    if candidate not in taken:
        return candidate
    n = 2
    while f"{candidate}_{n}" in taken:
        n += 1
    return f"{candidate}_{n}"


class AniImporter:
    """Appends decoded ANI clips to a SceneGraph"""

    def __init__(self, graph: SceneGraph, fps: float = DEFAULT_FPS):
        """
        Initialize assembler.

        Args:
            graph: Scene graph built by the ELU importer
            fps: Frames per second used to turn frame numbers into seconds
        """
        if fps <= 0:
            raise ValueError(f"fps must be positive, got {fps}")
        self.graph = graph
        self.fps = fps
        self._taken = set(graph.animation_names())

    def execute(self, clips: List[ClipRef]) -> List[ClipResult]:
        """Add every clip in order, returning one result per reference"""
        return [self.add_clip(clip) for clip in clips]

    def add_clip(self, clip: ClipRef) -> ClipResult:
        if clip.data is None:
            _log.warning("Animation '%s' missing: %s", clip.name, clip.source or '<no source>')
            return ClipResult(clip.name, clip.motion_type, clip.source, CLIP_MISSING)

        try:
            animation = AniAnimation.read_from_bytes(clip.data)
        except ConversionError as e:
            _log.warning("Animation '%s' failed to decode: %s", clip.name, e)
            return ClipResult(clip.name, clip.motion_type, clip.source, CLIP_ERROR, error=str(e))

        result = ClipResult(
            clip.name, clip.motion_type, clip.source, CLIP_SKIPPED,
            ani_type=animation.ani_type,
        )

        if not animation.is_bone_animation:
            result.reason = REASON_NOT_BONE
            _log.info("Animation '%s' is %s, skipped", clip.name, animation.header.type_name)
            return result

        channels, duplicates = self._create_channels(animation)
        result.duplicate_tracks = duplicates
        if not channels:
            result.reason = REASON_NO_CHANNELS
            _log.info("Animation '%s' has no tracks matching the model, skipped", clip.name)
            return result

        output_name = unique_clip_name(clip.name, clip.motion_type, self._taken)
        self._taken.add(output_name)
        self.graph.animations.append(AnimationClip(
            name=output_name,
            original_name=clip.name,
            motion_type=clip.motion_type,
            source=clip.source,
            channels=channels,
            duplicate_tracks=duplicates,
        ))

        result.status = CLIP_ADDED
        result.output_name = output_name
        _log.debug("Added animation '%s' with %d channels", output_name, len(channels))
        return result

    def _create_channels(self, animation: AniAnimation) -> Tuple[List[AnimationChannel], List[str]]:
        """Channels for matched tracks; only the first keyed track per node is used"""
        channels = []
        duplicates = []
        animated = set()
        for track in animation.tracks:
            node = self.graph.find_node(track.name)
            if node is None:
                continue
            if node in animated:
                _log.warning("Duplicate track '%s' for node %d ignored", track.name, node)
                duplicates.append(track.name)
                continue
            track_channels = self._track_channels(track, node)
            if track_channels:
                animated.add(node)
                channels.extend(track_channels)
        return channels, duplicates

    def _track_channels(self, track: AniBoneTrack, node: int) -> List[AnimationChannel]:
        channels = []
        if track.position_keys:
            channels.append(AnimationChannel(
                node=node,
                path='translation',
                times=self._times(key.frame for key in track.position_keys),
                values=np.array([key.value for key in track.position_keys],
                                dtype=np.float32).reshape(-1, 3),
            ))
        if track.rotation_keys:
            channels.append(AnimationChannel(
                node=node,
                path='rotation',
                times=self._times(key.frame for key in track.rotation_keys),
                values=np.array([key.value for key in track.rotation_keys],
                                dtype=np.float32).reshape(-1, 4),
            ))
        return channels

    def _times(self, frames) -> np.ndarray:
        return (np.fromiter(frames, dtype=np.float64) / self.fps).astype(np.float32)
