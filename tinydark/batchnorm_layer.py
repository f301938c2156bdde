"""Batch normalisation layer and the gradient helpers it uses."""

from __future__ import annotations

import logging

import numpy as np
from numpy.typing import ArrayLike

from tinydark.blas import mean, normalize, variance
from tinydark.conv_ops import add_bias, scale_bias
from tinydark.state import NetworkState

logger = logging.getLogger(__name__)

_DELTA_EPS = 0.00001


def _grid(values: ArrayLike, batch: int, filters: int, spatial: int) -> np.ndarray:
    array = np.asarray(values, dtype=np.float32).ravel()
    if array.size != batch * filters * spatial:
        raise ValueError(
            f"array of {array.size} values does not hold "
            f"{batch} x {filters} x {spatial} elements"
        )
    return array.reshape(batch, filters, spatial)


def _per_filter(values: ArrayLike) -> np.ndarray:
    return np.asarray(values, dtype=np.float32).ravel()[None, :, None]


def backward_scale(
    x_norm: ArrayLike,
    delta: ArrayLike,
    batch: int,
    n: int,
    size: int,
    scale_updates: ArrayLike,
) -> np.ndarray:
    """Return ``scale_updates`` plus the per-filter sum of ``delta * x_norm``."""
    product = _grid(delta, batch, n, size) * _grid(x_norm, batch, n, size)
    total = product.sum(axis=(0, 2), dtype=np.float32)
    return (np.asarray(scale_updates, dtype=np.float32) + total).astype(np.float32)


def mean_delta(
    delta: ArrayLike,
    variance_values: ArrayLike,
    batch: int,
    filters: int,
    spatial: int,
) -> np.ndarray:
    """Gradient of the loss with respect to each filter's mean."""
    total = _grid(delta, batch, filters, spatial).sum(axis=(0, 2), dtype=np.float32)
    var = np.asarray(variance_values, dtype=np.float32)
    return (total * (-1.0 / np.sqrt(var + _DELTA_EPS))).astype(np.float32)


def variance_delta(
    x: ArrayLike,
    delta: ArrayLike,
    mean_values: ArrayLike,
    variance_values: ArrayLike,
    batch: int,
    filters: int,
    spatial: int,
) -> np.ndarray:
    """Gradient of the loss with respect to each filter's variance."""
    centred = _grid(x, batch, filters, spatial) - _per_filter(mean_values)
    total = (_grid(delta, batch, filters, spatial) * centred).sum(
        axis=(0, 2), dtype=np.float32
    )
    var = np.asarray(variance_values, dtype=np.float32)
    return (total * (-0.5 * np.power(var + _DELTA_EPS, np.float32(-1.5)))).astype(
        np.float32
    )


def normalize_delta(
    x: ArrayLike,
    mean_values: ArrayLike,
    variance_values: ArrayLike,
    mean_delta_values: ArrayLike,
    variance_delta_values: ArrayLike,
    batch: int,
    filters: int,
    spatial: int,
    delta: ArrayLike,
) -> np.ndarray:
    """Back-propagate ``delta`` through the normalisation, returning the input gradient."""
    d = _grid(delta, batch, filters, spatial)
    centred = _grid(x, batch, filters, spatial) - _per_filter(mean_values)
    count = np.float32(spatial * batch)
    std = np.sqrt(_per_filter(variance_values)) + _DELTA_EPS
    result = (
        d / std
        + _per_filter(variance_delta_values) * 2.0 * centred / count
        + _per_filter(mean_delta_values) / count
    )
    return result.astype(np.float32).ravel()


class BatchnormLayer:
    """Normalises each channel over the batch, then scales and shifts it."""

    def __init__(self, batch: int, w: int, h: int, c: int, train: bool = False) -> None:
        logger.info("Batch Normalization Layer: %d x %d x %d image", w, h, c)
        self.batch = batch
        self.train = train
        self.h = self.out_h = h
        self.w = self.out_w = w
        self.c = self.out_c = c
        self.n = c
        self.inputs = w * h * c
        self.outputs = self.inputs
        self.output = np.zeros(self.outputs * batch, dtype=np.float32)
        self.delta = np.zeros(self.outputs * batch, dtype=np.float32)
        self.biases = np.zeros(c, dtype=np.float32)
        self.bias_updates = np.zeros(c, dtype=np.float32)
        self.scales = np.ones(c, dtype=np.float32)
        self.scale_updates = np.zeros(c, dtype=np.float32)
        self.mean = np.zeros(c, dtype=np.float32)
        self.variance = np.zeros(c, dtype=np.float32)
        self.rolling_mean = np.zeros(c, dtype=np.float32)
        self.rolling_variance = np.zeros(c, dtype=np.float32)
        self.mean_delta = np.zeros(c, dtype=np.float32)
        self.variance_delta = np.zeros(c, dtype=np.float32)
        self.x: np.ndarray | None = None
        self.x_norm: np.ndarray | None = None

    @property
    def _spatial(self) -> int:
        return self.out_h * self.out_w

    def resize(self, w: int, h: int) -> None:
        """Accept inputs of a new spatial size, reallocating the buffers."""
        self.out_h = self.h = h
        self.out_w = self.w = w
        self.outputs = self.inputs = h * w * self.c
        size = self.outputs * self.batch
        self.output = np.zeros(size, dtype=np.float32)
        self.delta = np.zeros(size, dtype=np.float32)
        self.x = None
        self.x_norm = None

    def forward(self, state: NetworkState) -> None:
        """Normalise the input with batch statistics (training) or rolling ones."""
        size = self.outputs * self.batch
        if state.input.size < size:
            raise ValueError(f"input holds {state.input.size} values, expected {size}")
        output = state.input[:size].copy()
        spatial = self._spatial
        if state.train:
            self.mean = mean(output, self.batch, self.out_c, spatial)
            self.variance = variance(output, self.mean, self.batch, self.out_c, spatial)
            self.rolling_mean = (
                self.rolling_mean * np.float32(0.9) + np.float32(0.1) * self.mean
            ).astype(np.float32)
            self.rolling_variance = (
                self.rolling_variance * np.float32(0.9) + np.float32(0.1) * self.variance
            ).astype(np.float32)
            self.x = output.copy()
            output = normalize(
                output, self.mean, self.variance, self.batch, self.out_c, spatial
            )
            self.x_norm = output.copy()
        else:
            output = normalize(
                output,
                self.rolling_mean,
                self.rolling_variance,
                self.batch,
                self.out_c,
                spatial,
            )
        output = scale_bias(output, self.scales, self.batch, self.out_c, spatial)
        self.output = add_bias(output, self.biases, self.batch, self.out_c, spatial)

    def backward(self, state: NetworkState) -> None:
        """Back-propagate ``delta`` and copy the input gradient into the state."""
        if self.x is None or self.x_norm is None:
            raise RuntimeError("backward needs a preceding training forward pass")
        spatial = self._spatial
        self.scale_updates = backward_scale(
            self.x_norm, self.delta, self.batch, self.out_c, spatial, self.scale_updates
        )
        delta = scale_bias(self.delta, self.scales, self.batch, self.out_c, spatial)
        self.mean_delta = mean_delta(
            delta, self.variance, self.batch, self.out_c, spatial
        )
        self.variance_delta = variance_delta(
            self.x, delta, self.mean, self.variance, self.batch, self.out_c, spatial
        )
        self.delta = normalize_delta(
            self.x,
            self.mean,
            self.variance,
            self.mean_delta,
            self.variance_delta,
            self.batch,
            self.out_c,
            spatial,
            delta,
        )
        if state.delta is not None:
            size = self.outputs * self.batch
            if state.delta.size < size:
                raise ValueError(
                    f"state delta holds {state.delta.size} values, expected {size}"
                )
            state.delta[:size] = self.delta

    def update(
        self, batch: int, learning_rate: float, momentum: float, decay: float
    ) -> None:
        """Apply the accumulated bias and scale updates, then decay them by momentum."""
        step = np.float32(learning_rate / batch)
        self.biases = (self.biases + step * self.bias_updates).astype(np.float32)
        self.bias_updates = (self.bias_updates * np.float32(momentum)).astype(np.float32)
        self.scales = (self.scales + step * self.scale_updates).astype(np.float32)
        self.scale_updates = (self.scale_updates * np.float32(momentum)).astype(
            np.float32
        )