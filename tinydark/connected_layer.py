"""Fully connected layer with optional batch normalisation."""

from __future__ import annotations

import logging
import math

import numpy as np

from tinydark.activations import Activation, activate_array, gradient_array
from tinydark.batchnorm_layer import (
    backward_scale,
    mean_delta,
    normalize_delta,
    variance_delta,
)
from tinydark.blas import mean, normalize, variance
from tinydark.conv_ops import scale_bias
from tinydark.gemm import gemm
from tinydark.state import NetworkState

logger = logging.getLogger(__name__)


class ConnectedLayer:
    """Multiplies each input vector by a weight matrix, adds biases and activates.

    ``weights`` has shape ``(outputs, inputs)``.
    """

    def __init__(
        self,
        batch: int,
        steps: int,
        inputs: int,
        outputs: int,
        activation: Activation,
        batch_normalize: bool = False,
        rng: np.random.Generator | None = None,
    ) -> None:
        total_batch = batch * steps
        self.batch = batch
        self.steps = steps
        self.inputs = inputs
        self.outputs = outputs
        self.batch_normalize = batch_normalize
        self.h = self.w = 1
        self.c = inputs
        self.out_h = self.out_w = 1
        self.out_c = outputs
        self.n = outputs
        self.size = 1
        self.stride = self.stride_x = self.stride_y = 1
        self.pad = 0
        self.activation = activation
        self.learning_rate_scale = 1.0
        self.groups = 1
        self.dilation = 1

        self.output = np.zeros(total_batch * outputs, dtype=np.float32)
        self.delta = np.zeros(total_batch * outputs, dtype=np.float32)
        self.weight_updates = np.zeros((outputs, inputs), dtype=np.float32)
        self.bias_updates = np.zeros(outputs, dtype=np.float32)

        generator = rng if rng is not None else np.random.default_rng()
        scale = math.sqrt(2.0 / inputs)
        self.weights = (
            scale * generator.uniform(-1.0, 1.0, size=(outputs, inputs))
        ).astype(np.float32)
        self.biases = np.zeros(outputs, dtype=np.float32)

        self.scales: np.ndarray | None = None
        self.scale_updates: np.ndarray | None = None
        self.mean: np.ndarray | None = None
        self.variance: np.ndarray | None = None
        self.mean_delta: np.ndarray | None = None
        self.variance_delta: np.ndarray | None = None
        self.rolling_mean: np.ndarray | None = None
        self.rolling_variance: np.ndarray | None = None
        self.x: np.ndarray | None = None
        self.x_norm: np.ndarray | None = None
        if batch_normalize:
            self.scales = np.ones(outputs, dtype=np.float32)
            self.scale_updates = np.zeros(outputs, dtype=np.float32)
            self.mean = np.zeros(outputs, dtype=np.float32)
            self.mean_delta = np.zeros(outputs, dtype=np.float32)
            self.variance = np.zeros(outputs, dtype=np.float32)
            self.variance_delta = np.zeros(outputs, dtype=np.float32)
            self.rolling_mean = np.zeros(outputs, dtype=np.float32)
            self.rolling_variance = np.zeros(outputs, dtype=np.float32)

        logger.info("connected %4d  ->  %4d", inputs, outputs)

    def _input_matrix(self, state: NetworkState) -> np.ndarray:
        n = self.batch * self.inputs
        if state.input.size < n:
            raise ValueError(f"input holds {state.input.size} values, expected {n}")
        return state.input[:n].reshape(self.batch, self.inputs)

    def forward(self, state: NetworkState) -> None:
        """Compute the layer's output for the state's input."""
        inp = self._input_matrix(state)
        output = gemm(inp, self.weights, trans_b=True).ravel()
        if self.batch_normalize:
            if state.train:
                self.mean = mean(output, self.batch, self.outputs, 1)
                self.variance = variance(output, self.mean, self.batch, self.outputs, 1)
                self.rolling_mean = (
                    self.rolling_mean * np.float32(0.95) + np.float32(0.05) * self.mean
                ).astype(np.float32)
                self.rolling_variance = (
                    self.rolling_variance * np.float32(0.95)
                    + np.float32(0.05) * self.variance
                ).astype(np.float32)
                self.x = output.copy()
                output = normalize(
                    output, self.mean, self.variance, self.batch, self.outputs, 1
                )
                self.x_norm = output.copy()
            else:
                output = normalize(
                    output,
                    self.rolling_mean,
                    self.rolling_variance,
                    self.batch,
                    self.outputs,
                    1,
                )
            output = scale_bias(output, self.scales, self.batch, self.outputs, 1)
        output = (output.reshape(self.batch, self.outputs) + self.biases).ravel()
        self.output = activate_array(output, self.activation)

    def backward(self, state: NetworkState) -> None:
        """Accumulate weight and bias updates and add the input gradient to the state."""
        n_out = self.batch * self.outputs
        delta = gradient_array(self.output[:n_out], self.activation, self.delta[:n_out])
        self.bias_updates = (
            self.bias_updates + delta.reshape(self.batch, self.outputs).sum(axis=0)
        ).astype(np.float32)
        if self.batch_normalize:
            if self.x is None or self.x_norm is None:
                raise RuntimeError("backward needs a preceding training forward pass")
            self.scale_updates = backward_scale(
                self.x_norm, delta, self.batch, self.outputs, 1, self.scale_updates
            )
            delta = scale_bias(delta, self.scales, self.batch, self.outputs, 1)
            self.mean_delta = mean_delta(
                delta, self.variance, self.batch, self.outputs, 1
            )
            self.variance_delta = variance_delta(
                self.x, delta, self.mean, self.variance, self.batch, self.outputs, 1
            )
            delta = normalize_delta(
                self.x,
                self.mean,
                self.variance,
                self.mean_delta,
                self.variance_delta,
                self.batch,
                self.outputs,
                1,
                delta,
            )
        self.delta = delta
        delta_mat = delta.reshape(self.batch, self.outputs)
        inp = self._input_matrix(state)
        self.weight_updates = gemm(delta_mat, inp, self.weight_updates, trans_a=True)

        if state.delta is not None:
            n_in = self.batch * self.inputs
            if state.delta.size < n_in:
                raise ValueError(
                    f"state delta holds {state.delta.size} values, expected {n_in}"
                )
            current = state.delta[:n_in].reshape(self.batch, self.inputs)
            state.delta[:n_in] = gemm(delta_mat, self.weights, current).ravel()

    def update(
        self, batch: int, learning_rate: float, momentum: float, decay: float
    ) -> None:
        """Apply accumulated updates with weight decay, then decay them by momentum."""
        step = np.float32(learning_rate / batch)
        mom = np.float32(momentum)
        self.biases = (self.biases + step * self.bias_updates).astype(np.float32)
        self.bias_updates = (self.bias_updates * mom).astype(np.float32)
        if self.batch_normalize:
            self.scales = (self.scales + step * self.scale_updates).astype(np.float32)
            self.scale_updates = (self.scale_updates * mom).astype(np.float32)
        self.weight_updates = (
            self.weight_updates + np.float32(-decay * batch) * self.weights
        ).astype(np.float32)
        self.weights = (self.weights + step * self.weight_updates).astype(np.float32)
        self.weight_updates = (self.weight_updates * mom).astype(np.float32)