"""Array helpers: reorganisation, shortcuts, normalisation statistics and losses."""

from __future__ import annotations

from typing import Sequence

import numpy as np
from numpy.typing import ArrayLike

_NORMALIZE_EPS = 0.000001


def _f32(x: ArrayLike) -> np.ndarray:
    return np.asarray(x, dtype=np.float32).ravel()


def _check_size(values: np.ndarray, expected: int, what: str) -> None:
    if values.size != expected:
        raise ValueError(f"{what} holds {values.size} values, expected {expected}")


def reorg(
    x: ArrayLike,
    out_w: int,
    out_h: int,
    out_c: int,
    batch: int,
    stride: int,
    forward: bool,
) -> np.ndarray:
    """Move values between space and depth; forward and backward are inverses."""
    values = _f32(x)
    _check_size(values, batch * out_c * out_h * out_w, "input")
    in_c = out_c // (stride * stride) if stride > 0 else 0
    if in_c < 1:
        raise ValueError(f"{out_c} channels cannot be reorganised with stride {stride}")
    b, k, j, i = np.indices((batch, out_c, out_h, out_w))
    in_index = (i + out_w * (j + out_h * (k + out_c * b))).ravel()
    c2 = k % in_c
    offset = k // in_c
    w2 = i * stride + offset % stride
    h2 = j * stride + offset // stride
    out_index = (
        w2 + out_w * stride * (h2 + out_h * stride * (c2 + in_c * b))
    ).ravel()
    out = np.zeros(values.size, dtype=np.float32)
    if forward:
        out[out_index] = values[in_index]
    else:
        out[in_index] = values[out_index]
    return out


def flatten(x: ArrayLike, size: int, layers: int, batch: int, forward: bool) -> np.ndarray:
    """Swap the layer and spatial axes of every batch item."""
    values = _f32(x)
    _check_size(values, size * layers * batch, "input")
    if forward:
        return values.reshape(batch, layers, size).transpose(0, 2, 1).ravel().copy()
    return values.reshape(batch, size, layers).transpose(0, 2, 1).ravel().copy()


def weighted_sum(a: ArrayLike, b: ArrayLike | None, s: ArrayLike) -> np.ndarray:
    """Return ``s * a + (1 - s) * b``, taking ``b`` as zeros when it is None."""
    av = _f32(a)
    sv = _f32(s)
    bv = np.zeros_like(av) if b is None else _f32(b)
    return (sv * av + (1.0 - sv) * bv).astype(np.float32)


def weighted_delta(
    a: ArrayLike,
    b: ArrayLike,
    s: ArrayLike,
    da: ArrayLike | None,
    db: ArrayLike | None,
    ds: ArrayLike,
    dc: ArrayLike,
) -> tuple[np.ndarray | None, np.ndarray | None, np.ndarray]:
    """Back-propagate through :func:`weighted_sum`; returns updated ``(da, db, ds)``."""
    sv = _f32(s)
    dcv = _f32(dc)
    new_da = None if da is None else (_f32(da) + dcv * sv).astype(np.float32)
    new_db = None if db is None else (_f32(db) + dcv * (1.0 - sv)).astype(np.float32)
    new_ds = (_f32(ds) + dcv * (_f32(a) - _f32(b))).astype(np.float32)
    return new_da, new_db, new_ds


def shortcut(
    batch: int,
    w1: int,
    h1: int,
    c1: int,
    add: ArrayLike,
    w2: int,
    h2: int,
    c2: int,
    out: ArrayLike,
) -> np.ndarray:
    """Add ``add`` (w1 x h1 x c1) into ``out`` (w2 x h2 x c2), resampling as needed."""
    stride = w1 // w2
    sample = w2 // w1
    if stride != h1 // h2 or sample != h2 // h1:
        raise ValueError("width and height scale differently between the two inputs")
    stride = max(stride, 1)
    sample = max(sample, 1)
    addv = _f32(add)
    outv = _f32(out).copy()
    _check_size(addv, batch * c1 * h1 * w1, "added input")
    _check_size(outv, batch * c2 * h2 * w2, "output")
    minw, minh, minc = min(w1, w2), min(h1, h2), min(c1, c2)
    src = addv.reshape(batch, c1, h1, w1)
    dst = outv.reshape(batch, c2, h2, w2)
    dst[:, :minc, 0 : minh * sample : sample, 0 : minw * sample : sample] += src[
        :, :minc, 0 : minh * stride : stride, 0 : minw * stride : stride
    ]
    return outv


def backward_shortcut(
    src_outputs: int,
    outputs_of_layers: Sequence[int],
    layers_delta: Sequence[ArrayLike],
    delta_out: ArrayLike,
    delta_in: ArrayLike,
) -> tuple[np.ndarray, list[np.ndarray]]:
    """Spread ``delta_in`` to ``delta_out`` and to every added layer's delta."""
    din = _f32(delta_in)
    new_out = (_f32(delta_out) + din).astype(np.float32)
    ids = np.arange(din.size)
    src_i = ids % src_outputs
    src_b = ids // src_outputs
    new_layers = []
    for add_outputs, layer_delta in zip(outputs_of_layers, layers_delta):
        updated = _f32(layer_delta).copy()
        mask = src_i < add_outputs
        np.add.at(updated, add_outputs * src_b[mask] + src_i[mask], din[mask])
        new_layers.append(updated)
    return new_out, new_layers


def mean(x: ArrayLike, batch: int, filters: int, spatial: int) -> np.ndarray:
    """Per-filter mean over batch and spatial positions."""
    values = _f32(x)
    _check_size(values, batch * filters * spatial, "input")
    total = values.reshape(batch, filters, spatial).sum(axis=(0, 2), dtype=np.float32)
    return (total * np.float32(1.0 / (batch * spatial))).astype(np.float32)


def variance(
    x: ArrayLike, mean_values: ArrayLike, batch: int, filters: int, spatial: int
) -> np.ndarray:
    """Per-filter sample variance (divided by ``batch * spatial - 1``)."""
    values = _f32(x)
    _check_size(values, batch * filters * spatial, "input")
    centred = values.reshape(batch, filters, spatial) - _f32(mean_values)[None, :, None]
    total = (centred * centred).sum(axis=(0, 2), dtype=np.float32)
    with np.errstate(divide="ignore", invalid="ignore"):
        scale = np.float32(1.0) / np.float32(batch * spatial - 1)
        return (total * scale).astype(np.float32)


def normalize(
    x: ArrayLike,
    mean_values: ArrayLike,
    variance_values: ArrayLike,
    batch: int,
    filters: int,
    spatial: int,
) -> np.ndarray:
    """Subtract the filter mean and divide by the filter standard deviation."""
    values = _f32(x)
    _check_size(values, batch * filters * spatial, "input")
    m = _f32(mean_values)[None, :, None]
    v = _f32(variance_values)[None, :, None]
    result = (values.reshape(batch, filters, spatial) - m) / np.sqrt(v + _NORMALIZE_EPS)
    return result.astype(np.float32).ravel()


def smooth_l1(pred: ArrayLike, truth: ArrayLike) -> tuple[np.ndarray, np.ndarray]:
    """Smooth L1 loss; returns ``(delta, error)``."""
    diff = _f32(truth) - _f32(pred)
    abs_val = np.abs(diff)
    small = abs_val < 1
    error = np.where(small, diff * diff, 2.0 * abs_val - 1.0).astype(np.float32)
    delta = np.where(small, diff, np.where(diff > 0, 1.0, -1.0)).astype(np.float32)
    return delta, error


def l1(pred: ArrayLike, truth: ArrayLike) -> tuple[np.ndarray, np.ndarray]:
    """L1 loss; returns ``(delta, error)``."""
    diff = _f32(truth) - _f32(pred)
    delta = np.where(diff > 0, 1.0, -1.0).astype(np.float32)
    return delta, np.abs(diff).astype(np.float32)


def logistic_x_ent(pred: ArrayLike, truth: ArrayLike) -> tuple[np.ndarray, np.ndarray]:
    """Logistic cross-entropy loss; returns ``(delta, error)``."""
    t = _f32(truth)
    p = _f32(pred)
    with np.errstate(divide="ignore", invalid="ignore"):
        error = (-t * np.log(p) - (1.0 - t) * np.log(1.0 - p)).astype(np.float32)
    return (t - p).astype(np.float32), error


def l2(pred: ArrayLike, truth: ArrayLike) -> tuple[np.ndarray, np.ndarray]:
    """Squared-error loss; returns ``(delta, error)``."""
    diff = (_f32(truth) - _f32(pred)).astype(np.float32)
    return diff, (diff * diff).astype(np.float32)


def upsample(
    x: ArrayLike, w: int, h: int, c: int, batch: int, stride: int, scale: float
) -> np.ndarray:
    """Nearest-neighbour upsampling by ``stride``, multiplied by ``scale``."""
    values = _f32(x)
    _check_size(values, batch * c * h * w, "input")
    grid = values.reshape(batch, c, h, w)
    grid = np.repeat(np.repeat(grid, stride, axis=2), stride, axis=3)
    return (np.float32(scale) * grid).astype(np.float32).ravel()


def upsample_backward(
    x: ArrayLike,
    w: int,
    h: int,
    c: int,
    batch: int,
    stride: int,
    scale: float,
    out: ArrayLike,
) -> np.ndarray:
    """Add ``scale`` times the summed upsampled gradient ``out`` into ``x``."""
    values = _f32(x)
    _check_size(values, batch * c * h * w, "input")
    grad = _f32(out)
    _check_size(grad, batch * c * h * w * stride * stride, "upsampled gradient")
    blocks = grad.reshape(batch, c, h, stride, w, stride).sum(axis=(3, 5))
    return (values + np.float32(scale) * blocks.ravel()).astype(np.float32)


def constrain(x: ArrayLike, alpha: float) -> np.ndarray:
    """Clamp values to ``[-alpha, alpha]``; NaN becomes ``-alpha``."""
    a = np.float32(alpha)
    return np.fmin(a, np.fmax(-a, _f32(x))).astype(np.float32)


def fix_nan_and_inf(x: ArrayLike) -> np.ndarray:
    """Replace NaN and infinite values with ``1 / index``."""
    values = _f32(x).copy()
    bad = np.flatnonzero(~np.isfinite(values))
    with np.errstate(divide="ignore"):
        values[bad] = np.float32(1.0) / bad.astype(np.float32)
    return values