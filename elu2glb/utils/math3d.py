"""
Small matrix and vector helpers on top of numpy.

Matrices are passed around as flat 16-float sequences. ELU stores them
row-major (Direct3D convention); glTF expects column-major, so node matrices
are transposed once on the way in.
"""

from typing import Sequence, Tuple

import numpy as np

from ..errors import DegenerateTransform

# Smallest determinant magnitude still treated as invertible
DETERMINANT_EPSILON = 1e-10

IDENTITY_MATRIX = (
    1.0, 0.0, 0.0, 0.0,
    0.0, 1.0, 0.0, 0.0,
    0.0, 0.0, 1.0, 0.0,
    0.0, 0.0, 0.0, 1.0,
)


def transpose_matrix(m: Sequence[float]) -> Tuple[float, ...]:
    return tuple(np.asarray(m, dtype=np.float64).reshape(4, 4).T.reshape(16).tolist())


def invert_matrix(m: Sequence[float]) -> Tuple[float, ...]:
    """Invert a flat 4x4 matrix.

    Raises DegenerateTransform when the determinant is below DETERMINANT_EPSILON.
    """
    mat = np.asarray(m, dtype=np.float64).reshape(4, 4)
    det = float(np.linalg.det(mat))
    if abs(det) < DETERMINANT_EPSILON:
        raise DegenerateTransform(det)
    return tuple(np.linalg.inv(mat).reshape(16).tolist())


def flat_normal(p0: Sequence[float], p1: Sequence[float],
                p2: Sequence[float]) -> Tuple[float, float, float]:
    """Unit normal of a triangle, +Y for degenerate triangles"""
    a = np.asarray(p0, dtype=np.float64)
    n = np.cross(np.asarray(p1, dtype=np.float64) - a, np.asarray(p2, dtype=np.float64) - a)
    length = float(np.linalg.norm(n))
    if length < 1e-8:
        return (0.0, 1.0, 0.0)
    return tuple((n / length).tolist())


def wrap_index(value: int, count: int) -> int:
    """Euclidean modulo, always in [0, count)"""
    return ((value % count) + count) % count


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))
