"""
ELU/ANI to GLB Converter

Convert legacy max-exporter meshes (.elu) and animations (.ani) into
binary glTF 2.0 (.glb) for use in modern engines and tools.

File Formats:
- ELU: Node hierarchy with meshes, materials and physique (skin) weights
- ANI: Bone keyframes (position + rotation), vertex or matrix tracks
- GLB: Binary glTF 2.0 container written by this package
"""

__version__ = '1.0.0'

from .convert import ConversionOptions, ConversionResult, convert
from .errors import (
    ConversionError, DegenerateTransform, EndOfData, FormatMismatch, UnsupportedSchema,
)
from .importers.import_ani import ClipRef, ClipResult

__all__ = [
    '__version__',
    'convert',
    'ConversionOptions',
    'ConversionResult',
    'ClipRef',
    'ClipResult',
    'ConversionError',
    'DegenerateTransform',
    'EndOfData',
    'FormatMismatch',
    'UnsupportedSchema',
]
