"""General matrix multiply: ``C = alpha * op(A) @ op(B) + beta * C``."""

from __future__ import annotations

import numpy as np
from numpy.typing import ArrayLike


def gemm(
    a: ArrayLike,
    b: ArrayLike,
    c: ArrayLike | None = None,
    alpha: float = 1.0,
    beta: float = 1.0,
    trans_a: bool = False,
    trans_b: bool = False,
) -> np.ndarray:
    """Return ``alpha * op(a) @ op(b) + beta * c`` as a new float32 matrix.

    ``op`` transposes its argument when the matching ``trans_*`` flag is set.
    When ``c`` is omitted it is taken as a zero matrix.
    """
    left = np.asarray(a, dtype=np.float32)
    right = np.asarray(b, dtype=np.float32)
    if left.ndim != 2 or right.ndim != 2:
        raise ValueError("gemm operands must be two-dimensional")
    if trans_a:
        left = left.T
    if trans_b:
        right = right.T
    m, k = left.shape
    k2, n = right.shape
    if k != k2:
        raise ValueError(f"inner dimensions differ: {k} and {k2}")
    if c is None:
        base = np.zeros((m, n), dtype=np.float32)
    else:
        base = np.asarray(c, dtype=np.float32)
        if base.shape != (m, n):
            raise ValueError(f"result matrix has shape {base.shape}, expected {(m, n)}")
    return (np.float32(beta) * base + np.float32(alpha) * (left @ right)).astype(
        np.float32
    )