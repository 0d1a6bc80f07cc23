"""
Texture path resolution against a game client directory tree.

Legacy materials name textures loosely: sometimes relative to the model
file, sometimes relative to the client root, often with a source image
extension (.tga, .bmp) while the shipped file is a .dds next to it, and
sometimes with no extension at all.

make_filesystem_resolver() returns a resolver callable suitable for
EluImporter: legacy name in, output-relative URI out (or None).
"""

import os
from typing import Callable, List, Optional

from ..formats.elu_format import normalize_slash

# Extensions tried when the texture name has none, in priority order
TEXTURE_EXTENSIONS = ['.dds', '.png', '.bmp', '.tga', '.jpg', '.jpeg']

# Source image extensions that usually ship as a converted .dds
DDS_SOURCE_EXTENSIONS = ('.tga', '.bmp', '.jpg', '.jpeg', '.png')

# Names starting with these are relative to the client root only
CLIENT_ROOT_PREFIXES = ('model/', 'system/', 'ui/')


def texture_candidates(texture_name: str, model_dir: str, client_root: str) -> List[str]:
    """All absolute paths worth trying for a texture name, best first, no duplicates"""
    raw = normalize_slash(texture_name or '').strip()
    if not raw:
        return []

    lower = raw.lower()
    ext = os.path.splitext(lower)[1]
    root_only = lower.startswith(CLIENT_ROOT_PREFIXES)
    bases = [client_root] if root_only else [model_dir, client_root]

    candidates = [os.path.join(base, raw) for base in bases]

    if ext in DDS_SOURCE_EXTENSIONS:
        stem = raw[:-len(ext)]
        if root_only:
            candidates.append(os.path.join(client_root, raw + '.dds'))
            candidates.append(os.path.join(client_root, stem + '.dds'))
        else:
            candidates.append(os.path.join(model_dir, raw + '.dds'))
            candidates.append(os.path.join(model_dir, stem + '.dds'))
            candidates.append(os.path.join(client_root, raw + '.dds'))
    elif not ext:
        for extension in TEXTURE_EXTENSIONS:
            for base in bases:
                candidates.append(os.path.join(base, raw + extension))

    unique = []
    seen = set()
    for candidate in candidates:
        candidate = os.path.abspath(candidate)
        key = normalize_slash(candidate)
        if key in seen:
            continue
        seen.add(key)
        unique.append(candidate)
    return unique


def find_texture(texture_name: str, model_dir: str, client_root: str) -> Optional[str]:
    """First existing candidate path, or None"""
    for candidate in texture_candidates(texture_name, model_dir, client_root):
        if os.path.isfile(candidate):
            return candidate
    return None


def make_filesystem_resolver(model_dir: str, client_root: str,
                             output_dir: str) -> Callable[[str], Optional[str]]:
    """
    Build a resolver that searches the filesystem.

    Args:
        model_dir: Directory holding the source .elu
        client_root: Game client root directory
        output_dir: Directory the .glb will be written to; returned URIs
            are relative to it

    Returns:
        Callable mapping a legacy texture name to a forward-slash URI
    """
    cache = {}

    def resolve(texture_name: str) -> Optional[str]:
        if texture_name in cache:
            return cache[texture_name]
        found = find_texture(texture_name, model_dir, client_root)
        uri = normalize_slash(os.path.relpath(found, output_dir)) if found else None
        cache[texture_name] = uri
        return uri

    return resolve
