"""Helpers shared by convolutional layers: output sizes, biases and binarisation."""

from __future__ import annotations

import numpy as np
from numpy.typing import ArrayLike


def _f32(x: ArrayLike) -> np.ndarray:
    return np.asarray(x, dtype=np.float32).ravel()


def _trunc_div(num: int, den: int) -> int:
    q = abs(num) // abs(den)
    return q if (num >= 0) == (den > 0) else -q


def _grid(values: np.ndarray, batch: int, n: int, size: int) -> np.ndarray:
    if values.size != batch * n * size:
        raise ValueError(
            f"array of {values.size} values does not hold {batch} x {n} x {size} elements"
        )
    return values.reshape(batch, n, size)


def binarize_weights(weights: ArrayLike, n: int, size: int) -> np.ndarray:
    """Replace each filter's weights by +/- the mean absolute weight of the filter."""
    values = _f32(weights)
    if values.size != n * size:
        raise ValueError(f"{values.size} weights do not form {n} filters of {size}")
    filters = values.reshape(n, size)
    means = np.abs(filters).sum(axis=1, keepdims=True, dtype=np.float32) / np.float32(size)
    return np.where(filters > 0, means, -means).astype(np.float32).ravel()


def conv_out_height(h: int, pad: int, size: int, stride_y: int) -> int:
    """Output height of a convolution."""
    return _trunc_div(h + 2 * pad - size, stride_y) + 1


def conv_out_width(w: int, pad: int, size: int, stride_x: int) -> int:
    """Output width of a convolution."""
    return _trunc_div(w + 2 * pad - size, stride_x) + 1


def add_bias(output: ArrayLike, biases: ArrayLike, batch: int, n: int, size: int) -> np.ndarray:
    """Add each filter's bias to all its output positions."""
    grid = _grid(_f32(output), batch, n, size)
    return (grid + _f32(biases)[None, :, None]).astype(np.float32).ravel()


def scale_bias(output: ArrayLike, scales: ArrayLike, batch: int, n: int, size: int) -> np.ndarray:
    """Multiply each filter's output positions by its scale."""
    grid = _grid(_f32(output), batch, n, size)
    return (grid * _f32(scales)[None, :, None]).astype(np.float32).ravel()


def backward_bias(
    bias_updates: ArrayLike, delta: ArrayLike, batch: int, n: int, size: int
) -> np.ndarray:
    """Add the summed per-filter deltas to the bias updates."""
    grid = _grid(_f32(delta), batch, n, size)
    return (_f32(bias_updates) + grid.sum(axis=(0, 2), dtype=np.float32)).astype(np.float32)