"""
Conversion driver

Three levels, each wrapping the previous one:
- convert(): bytes in, GLB bytes out, no filesystem access
- convert_target_files(): one model on disk, with sidecar metadata; every
  failure is caught here and reported as the target's status
- convert_batch(): a list of targets plus a manifest and a markdown report

Output files are written through a temporary file and os.replace, so a
crash never leaves a half-written .glb or .json behind.
"""

import datetime
import hashlib
import json
import logging
import os
import re
import tempfile
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from .errors import ConversionError
from .exporters.export_glb import DEFAULT_GENERATOR, GLBExporter
from .formats.elu_format import EluModel, normalize_slash
from .importers.import_ani import DEFAULT_FPS, AniImporter, ClipRef, ClipResult
from .importers.import_elu import EluImporter, TextureResolver
from .scene_graph import SceneGraph
from .utils.texture_resolver import make_filesystem_resolver

_log = logging.getLogger(__name__)

# Target statuses
STATUS_OK = 'ok'
STATUS_MISSING_SOURCE = 'missing_source'
STATUS_ERROR = 'error'

OUTPUT_GLB_NAME = 'model.glb'
OUTPUT_META_NAME = 'source_meta.json'
MANIFEST_NAME = 'manifest.json'
REPORT_NAME = 'conversion_report.md'
MANIFEST_VERSION = 'elu2glb_manifest_v1'


@dataclass
class ConversionOptions:
    """Settings shared by every target of a run"""
    fps: float = DEFAULT_FPS
    texture_resolver: Optional[TextureResolver] = None
    generator: str = DEFAULT_GENERATOR

    def __post_init__(self):
        if not self.fps > 0:
            raise ValueError(f"fps must be positive, got {self.fps}")


@dataclass
class ConversionResult:
    glb: bytes
    graph: SceneGraph
    clip_results: List[ClipResult]
    elu_version: int

    @property
    def summary(self) -> Dict[str, int]:
        return self.graph.summary()


def convert(elu_data: bytes, clips: Sequence[ClipRef] = (),
            options: Optional[ConversionOptions] = None) -> ConversionResult:
    """
    Convert one ELU model and its clips to GLB.

    Args:
        elu_data: Raw .elu contents
        clips: Clip references; a reference whose data is None is reported missing
        options: Conversion settings

    Returns:
        ConversionResult with the GLB bytes and per-clip results

    Raises:
        ConversionError: The ELU model could not be decoded
    """
    options = options or ConversionOptions()

    model = EluModel.read_from_bytes(elu_data)
    graph = EluImporter(model, options.texture_resolver).execute()
    clip_results = AniImporter(graph, options.fps).execute(list(clips))
    glb = GLBExporter(graph, options.generator).execute()

    return ConversionResult(
        glb=glb,
        graph=graph,
        clip_results=clip_results,
        elu_version=model.version,
    )


# =============================================================================
# File output
# =============================================================================

def atomic_write(path: str, data: bytes) -> None:
    """Write data to path via a temporary sibling file and os.replace"""
    directory = os.path.dirname(os.path.abspath(path))
    os.makedirs(directory, exist_ok=True)
    fd, temp_path = tempfile.mkstemp(prefix='.tmp-', dir=directory)
    try:
        with os.fdopen(fd, 'wb') as f:
            f.write(data)
        os.replace(temp_path, path)
    except BaseException:
        if os.path.exists(temp_path):
            os.remove(temp_path)
        raise


def write_json(path: str, document) -> None:
    atomic_write(path, (json.dumps(document, indent=2) + '\n').encode('utf-8'))


def safe_path_segment(value: str) -> str:
    """Lowercase, filesystem-friendly form of a model id segment"""
    text = re.sub(r'[^a-z0-9_.-]+', '_', str(value or '').strip().lower())
    text = re.sub(r'_+', '_', text).strip('_')
    if text in ('', '.', '..'):
        return 'unknown'
    return text


def model_output_dir(output_root: str, model_id: str) -> str:
    """Directory for a model id; '/' in the id creates subdirectories"""
    segments = [safe_path_segment(s) for s in normalize_slash(model_id).split('/') if s.strip()]
    return os.path.join(output_root, *(segments or ['unknown']))


# =============================================================================
# Targets
# =============================================================================

@dataclass
class ClipSource:
    """A clip stored in a file"""
    name: str
    path: str
    motion_type: int = 0

    @property
    def exists(self) -> bool:
        return bool(self.path) and os.path.isfile(self.path)

    def to_dict(self) -> dict:
        return {
            'clipName': self.name,
            'motionType': self.motion_type,
            'sourceAni': normalize_slash(self.path),
            'exists': self.exists,
        }


@dataclass
class ConversionTarget:
    """One model to convert"""
    model_id: str
    elu_path: str
    output_path: str
    clips: List[ClipSource] = field(default_factory=list)
    model_type: str = ''


@dataclass
class TargetResult:
    model_id: str
    status: str
    source_elu: str
    model_type: str = ''
    output_glb: str = ''
    output_meta: str = ''
    summary: Dict[str, int] = field(default_factory=dict)
    clip_results: List[ClipResult] = field(default_factory=list)
    clip_count: int = 0
    missing: List[Dict[str, str]] = field(default_factory=list)
    glb_sha256: str = ''
    error: str = ''

    def to_dict(self) -> dict:
        result = {
            'modelId': self.model_id,
            'modelType': self.model_type,
            'status': self.status,
            'sourceElu': normalize_slash(self.source_elu),
            'clipCount': self.clip_count,
            'missingAniCount': sum(1 for m in self.missing if m['type'] == 'source_ani'),
        }
        if self.status == STATUS_OK:
            result.update({
                'outputGlb': normalize_slash(self.output_glb),
                'outputMeta': normalize_slash(self.output_meta),
                'summary': self.summary,
                'animationCount': self.summary.get('animationCount', 0),
                'glbSha256': self.glb_sha256,
            })
        if self.error:
            result['error'] = self.error
        return result


def load_clip_refs(clips: Sequence[ClipSource]) -> List[ClipRef]:
    """Read clip files; unreadable or absent files become references without data"""
    refs = []
    for clip in clips:
        data = None
        if clip.exists:
            with open(clip.path, 'rb') as f:
                data = f.read()
        refs.append(ClipRef(
            name=clip.name,
            motion_type=clip.motion_type,
            source=normalize_slash(clip.path),
            data=data,
        ))
    return refs


def convert_target_files(target: ConversionTarget,
                         options: Optional[ConversionOptions] = None,
                         client_root: Optional[str] = None,
                         write_sidecar: bool = True) -> TargetResult:
    """
    Convert one target on disk.

    Decode and write failures are caught and reported through the returned
    status instead of propagating, so a batch can carry on.

    Args:
        target: Model and clip files plus the output path
        options: Conversion settings; when it has no texture resolver and
            client_root is given, a filesystem resolver is used
        client_root: Game client root for texture lookup
        write_sidecar: Also write source_meta.json next to the .glb
    """
    options = options or ConversionOptions()
    missing = [
        {'modelId': target.model_id, 'type': 'source_ani', 'file': normalize_slash(clip.path)}
        for clip in target.clips if not clip.exists
    ]
    result = TargetResult(
        model_id=target.model_id,
        model_type=target.model_type,
        status=STATUS_ERROR,
        source_elu=target.elu_path,
        clip_count=len(target.clips),
        missing=missing,
    )

    if not os.path.isfile(target.elu_path):
        _log.warning("[%s] Source mesh not found: %s", target.model_id, target.elu_path)
        result.status = STATUS_MISSING_SOURCE
        result.missing.insert(0, {
            'modelId': target.model_id, 'type': 'source_elu',
            'file': normalize_slash(target.elu_path),
        })
        return result

    output_dir = os.path.dirname(os.path.abspath(target.output_path))
    if options.texture_resolver is None and client_root:
        options = ConversionOptions(
            fps=options.fps,
            texture_resolver=make_filesystem_resolver(
                os.path.dirname(os.path.abspath(target.elu_path)), client_root, output_dir,
            ),
            generator=options.generator,
        )

    try:
        with open(target.elu_path, 'rb') as f:
            elu_data = f.read()
        conversion = convert(elu_data, load_clip_refs(target.clips), options)
        atomic_write(target.output_path, conversion.glb)
        glb_sha256 = hashlib.sha256(conversion.glb).hexdigest()

        output_meta = ''
        if write_sidecar:
            output_meta = os.path.join(output_dir, OUTPUT_META_NAME)
            write_json(output_meta, {
                'modelId': target.model_id,
                'modelType': target.model_type,
                'sourceElu': normalize_slash(target.elu_path),
                'eluVersion': conversion.elu_version,
                'clipRefs': [clip.to_dict() for clip in target.clips],
                'animationResults': [r.to_dict() for r in conversion.clip_results],
                'summary': conversion.summary,
                'hashes': {'glbSha256': glb_sha256},
            })
    except (ConversionError, OSError) as e:
        _log.error("[%s] Conversion failed: %s", target.model_id, e)
        result.error = str(e)
        return result

    result.status = STATUS_OK
    result.output_glb = target.output_path
    result.output_meta = output_meta
    result.summary = conversion.summary
    result.clip_results = conversion.clip_results
    result.glb_sha256 = glb_sha256

    _log.info(
        "[%s] Wrote %s (%d vertices, %d animations)",
        target.model_id, target.output_path,
        result.summary['vertexCount'], result.summary['animationCount'],
    )
    return result


# =============================================================================
# Batch
# =============================================================================

def load_jobs(jobs_path: str, output_root: str) -> List[ConversionTarget]:
    """
    Read a JSON job list.

    The file holds either a list of jobs or {"jobs": [...]}. Each job:
        {"model_id": "weapon/knife", "elu": "model/knife.elu", "model_type": "weapon",
         "clips": [{"name": "idle", "motion_type": 0, "ani": "model/knife_idle.ani"}]}
    Relative paths are taken from the job file's directory.
    """
    with open(jobs_path, 'r', encoding='utf-8') as f:
        document = json.load(f)

    jobs = document.get('jobs', []) if isinstance(document, dict) else document
    if not isinstance(jobs, list):
        raise ValueError(f"{jobs_path}: expected a list of jobs")

    base_dir = os.path.dirname(os.path.abspath(jobs_path))

    def resolve(path: str) -> str:
        path = normalize_slash(path or '')
        return path if not path or os.path.isabs(path) else os.path.join(base_dir, path)

    targets = []
    for job in jobs:
        model_id = str(job.get('model_id') or job.get('elu') or 'unknown')
        clips = [
            ClipSource(
                name=str(clip.get('name') or 'clip'),
                path=resolve(clip.get('ani', '')),
                motion_type=int(clip.get('motion_type', 0)),
            )
            for clip in job.get('clips', [])
        ]
        targets.append(ConversionTarget(
            model_id=model_id,
            elu_path=resolve(job.get('elu', '')),
            output_path=os.path.join(model_output_dir(output_root, model_id), OUTPUT_GLB_NAME),
            clips=clips,
            model_type=str(job.get('model_type', '')),
        ))
    return targets


@dataclass
class BatchResult:
    results: List[TargetResult]
    manifest_path: str
    report_path: str
    strict: bool

    @property
    def missing(self) -> List[Dict[str, str]]:
        return [m for r in self.results for m in r.missing]

    def count(self, status: str) -> int:
        return sum(1 for r in self.results if r.status == status)

    @property
    def failed(self) -> bool:
        """True when strict mode should fail the run"""
        return self.strict and bool(
            self.missing or self.count(STATUS_ERROR) or self.count(STATUS_MISSING_SOURCE)
        )


def convert_batch(targets: Sequence[ConversionTarget], output_root: str,
                  options: Optional[ConversionOptions] = None,
                  client_root: Optional[str] = None,
                  strict: bool = True) -> BatchResult:
    """Convert every target, then write manifest.json and a markdown report"""
    results = [convert_target_files(t, options, client_root) for t in targets]

    batch = BatchResult(
        results=results,
        manifest_path=os.path.join(output_root, MANIFEST_NAME),
        report_path=os.path.join(output_root, REPORT_NAME),
        strict=strict,
    )
    manifest = {
        'version': MANIFEST_VERSION,
        'generatedAt': datetime.datetime.now(datetime.timezone.utc).isoformat(),
        'strict': strict,
        'inputs': {
            'clientRoot': normalize_slash(client_root or ''),
            'outputRoot': normalize_slash(output_root),
        },
        'stats': {
            'targetCount': len(results),
            'okCount': batch.count(STATUS_OK),
            'errorCount': batch.count(STATUS_ERROR),
            'missingSourceCount': batch.count(STATUS_MISSING_SOURCE),
            'missingDependencyCount': len(batch.missing),
        },
        'missing': batch.missing,
        'entries': [r.to_dict() for r in results],
    }
    write_json(batch.manifest_path, manifest)
    atomic_write(batch.report_path, render_report(manifest).encode('utf-8'))

    _log.info(
        "targets=%d ok=%d error=%d missing_source=%d",
        len(results), batch.count(STATUS_OK), batch.count(STATUS_ERROR),
        batch.count(STATUS_MISSING_SOURCE),
    )
    return batch


def render_report(manifest: dict) -> str:
    stats = manifest['stats']
    lines = [
        "# elu2glb conversion report",
        "",
        f"Generated: {manifest['generatedAt']}",
        "",
        "## Summary",
        "",
        f"- targets: **{stats['targetCount']}**",
        f"- ok: **{stats['okCount']}**",
        f"- error: **{stats['errorCount']}**",
        f"- missing_source: **{stats['missingSourceCount']}**",
        f"- missing dependencies: **{stats['missingDependencyCount']}**",
        "",
        "## Entries",
        "",
        "| model_id | type | status | vertices | indices | animations | glb |",
        "|---|---|---|---:|---:|---:|---|",
    ]
    for entry in manifest['entries']:
        summary = entry.get('summary', {})
        lines.append(
            f"| {entry['modelId']} | {entry['modelType']} | {entry['status']} "
            f"| {summary.get('vertexCount', 0)} | {summary.get('indexCount', 0)} "
            f"| {summary.get('animationCount', 0)} | {entry.get('outputGlb') or '-'} |"
        )

    lines += ["", "## Missing Dependencies", ""]
    if not manifest['missing']:
        lines.append("- none")
    for m in manifest['missing']:
        lines.append(f"- {m['modelId']} :: {m['type']} :: {m['file']}")
    return "\n".join(lines) + "\n"
