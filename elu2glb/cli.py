"""
Command line interface

    elu2glb convert MESH.elu [-a CLIP.ani[=NAME[:MOTION]]]... -o OUT.glb
    elu2glb batch JOBS.json --output-root DIR [--allow-missing]
    elu2glb info FILE
"""

import argparse
import logging
import os
import sys
from typing import List, Optional

from . import __version__
from .convert import (
    STATUS_ERROR, STATUS_MISSING_SOURCE, STATUS_OK,
    ClipSource, ConversionOptions, ConversionTarget,
    convert_batch, convert_target_files, load_jobs,
)
from .errors import ConversionError
from .exporters.export_glb import DEFAULT_GENERATOR
from .formats.ani_format import AniAnimation
from .formats.cursor import BinaryCursor
from .formats.elu_format import ELU_KNOWN_VERSIONS, EluModel
from .formats.glb_format import GLB_MAGIC, read_glb
from .importers.import_ani import DEFAULT_FPS


def parse_clip_arg(text: str) -> ClipSource:
    """Parse PATH[=NAME[:MOTION]]; NAME defaults to the file stem, MOTION to 0"""
    path, _, label = text.partition('=')
    if not path:
        raise argparse.ArgumentTypeError(f"missing clip path in '{text}'")

    name, _, motion = label.partition(':')
    name = name or os.path.splitext(os.path.basename(path))[0]
    try:
        motion_type = int(motion) if motion else 0
    except ValueError:
        raise argparse.ArgumentTypeError(f"motion type must be an integer in '{text}'")
    return ClipSource(name=name, path=path, motion_type=motion_type)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='elu2glb',
        description="Convert legacy ELU meshes and ANI animations to GLB",
    )
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    parser.add_argument('-v', '--verbose', action='store_true', help="Debug logging")

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument('--fps', type=float, default=DEFAULT_FPS,
                        help=f"Frames per second for key times (default {DEFAULT_FPS:g})")
    common.add_argument('--client-root', default=None,
                        help="Game client root used to find textures")

    sub = parser.add_subparsers(dest='command', required=True)

    p = sub.add_parser('convert', parents=[common], help="Convert one model")
    p.add_argument('mesh', help="Input .elu file")
    p.add_argument('-a', '--ani', dest='clips', action='append', default=[],
                   type=parse_clip_arg, metavar='CLIP.ani[=NAME[:MOTION]]',
                   help="Animation clip to include (repeatable)")
    p.add_argument('-o', '--output', required=True, help="Output .glb file")
    p.add_argument('--meta', action='store_true',
                   help="Also write source_meta.json next to the output")

    p = sub.add_parser('batch', parents=[common], help="Convert models from a JSON job list")
    p.add_argument('jobs', help="JSON job list")
    p.add_argument('--output-root', required=True, help="Output directory")
    p.add_argument('--allow-missing', action='store_true',
                   help="Exit 0 even when sources are missing or targets fail")

    p = sub.add_parser('info', help="Print header facts of an ELU, ANI or GLB file")
    p.add_argument('file')

    return parser


def _options(args) -> ConversionOptions:
    return ConversionOptions(fps=args.fps, generator=f'{DEFAULT_GENERATOR} {__version__}')


def cmd_convert(args) -> int:
    target = ConversionTarget(
        model_id=os.path.splitext(os.path.basename(args.mesh))[0],
        elu_path=args.mesh,
        output_path=args.output,
        clips=args.clips,
    )
    result = convert_target_files(target, _options(args), args.client_root,
                                  write_sidecar=args.meta)
    for clip in result.clip_results:
        detail = clip.reason or clip.error
        print(f"  clip {clip.name}: {clip.status}" + (f" ({detail})" if detail else ""))
    if result.status != STATUS_OK:
        print(f"{args.mesh}: {result.status} {result.error}".rstrip(), file=sys.stderr)
        return 1
    summary = result.summary
    print(f"{args.output}: {summary['meshNodeCount']} nodes, {summary['primitiveCount']} primitives, "
          f"{summary['vertexCount']} vertices, {summary['animationCount']} animations")
    return 0


def cmd_batch(args) -> int:
    try:
        targets = load_jobs(args.jobs, args.output_root)
    except (OSError, ValueError) as e:
        print(f"{args.jobs}: {e}", file=sys.stderr)
        return 1
    if not targets:
        print(f"{args.jobs}: no jobs", file=sys.stderr)
        return 1
    batch = convert_batch(targets, args.output_root, _options(args), args.client_root,
                          strict=not args.allow_missing)
    print(f"targets={len(batch.results)} ok={batch.count(STATUS_OK)} error={batch.count(STATUS_ERROR)} "
          f"missing_source={batch.count(STATUS_MISSING_SOURCE)}")
    print(f"manifest={batch.manifest_path}")
    return 1 if batch.failed else 0


def describe_file(path: str) -> List[str]:
    """Human readable header facts for an ELU, ANI or GLB file"""
    with open(path, 'rb') as f:
        data = f.read()

    cursor = BinaryCursor(data)
    magic = cursor.read_u32()
    version = cursor.read_u32()
    ext = os.path.splitext(path)[1].lower()

    if magic == GLB_MAGIC:
        document, blob = read_glb(data)
        lines = [f"GLB {len(data)} bytes, generator {document.get('asset', {}).get('generator', '?')}"]
        for key in ('nodes', 'meshes', 'materials', 'textures', 'skins', 'animations', 'accessors'):
            lines.append(f"  {key}: {len(document.get(key, []))}")
        for animation in document.get('animations', []):
            lines.append(f"  animation {animation['name']}: {len(animation['channels'])} channels")
        return lines

    if ext == '.ani' or (ext != '.elu' and version not in ELU_KNOWN_VERSIONS):
        animation = AniAnimation.read_from_bytes(data)
        header = animation.header
        return [
            f"ANI v0x{header.version:x} type {header.type_name}",
            f"  max frame: {header.max_frame}",
            f"  nodes: {header.node_count}",
        ]

    model = EluModel.read_from_bytes(data)
    lines = [
        f"ELU v0x{model.version:x}",
        f"  materials: {len(model.materials)}",
        f"  nodes: {len(model.nodes)}{' (skinned)' if model.has_skin else ''}",
    ]
    for node in model.nodes:
        lines.append(
            f"  node {node.name!r} parent {node.parent!r}: "
            f"{len(node.points)} points, {len(node.faces)} faces, {node.physique_count} physique"
        )
    return lines


def cmd_info(args) -> int:
    try:
        lines = describe_file(args.file)
    except (ConversionError, OSError) as e:
        print(f"{args.file}: {e}", file=sys.stderr)
        return 1
    print("\n".join(lines))
    return 0


COMMANDS = {
    'convert': cmd_convert,
    'batch': cmd_batch,
    'info': cmd_info,
}


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(levelname)s %(name)s: %(message)s',
    )
    if getattr(args, 'fps', DEFAULT_FPS) <= 0:
        print("--fps must be positive", file=sys.stderr)
        return 2
    return COMMANDS[args.command](args)
