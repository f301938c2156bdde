"""A layer that applies an activation function to its input."""

from __future__ import annotations

import logging

import numpy as np

from tinydark.activations import Activation, activate_array, gradient_array
from tinydark.state import NetworkState

logger = logging.getLogger(__name__)


class ActivationLayer:
    """Applies an element-wise activation; outputs match inputs one to one."""

    def __init__(self, batch: int, inputs: int, activation: Activation) -> None:
        self.batch = batch
        self.inputs = inputs
        self.outputs = inputs
        self.activation = activation
        self.output = np.zeros(batch * inputs, dtype=np.float32)
        self.delta = np.zeros(batch * inputs, dtype=np.float32)
        logger.info("Activation layer: %d inputs", inputs)

    def _size(self) -> int:
        return self.outputs * self.batch

    def forward(self, state: NetworkState) -> None:
        """Activate the state's input into ``output``."""
        n = self._size()
        if state.input.size < n:
            raise ValueError(f"input holds {state.input.size} values, expected {n}")
        self.output = activate_array(state.input[:n], self.activation)

    def backward(self, state: NetworkState) -> None:
        """Scale ``delta`` by the activation gradient and copy it into the state."""
        n = self._size()
        self.delta = gradient_array(self.output, self.activation, self.delta)
        if state.delta is not None:
            if state.delta.size < n:
                raise ValueError(
                    f"state delta holds {state.delta.size} values, expected {n}"
                )
            state.delta[:n] = self.delta