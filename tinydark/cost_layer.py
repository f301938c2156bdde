"""Cost layer computing squared-error or smooth-L1 losses against the truth."""

from __future__ import annotations

import enum
import logging
import warnings

import numpy as np

from tinydark.blas import l2, smooth_l1
from tinydark.state import NetworkState

logger = logging.getLogger(__name__)

SECRET_NUM = -1234.0


class CostType(enum.Enum):
    """Loss functions a cost layer can use."""

    SSE = "sse"
    MASKED = "masked"
    SMOOTH = "smooth"


def get_cost_type(name: str) -> CostType:
    """Look up a cost type by name, falling back to SSE."""
    try:
        return CostType(name)
    except ValueError:
        warnings.warn(f"Couldn't find cost type {name}, going with SSE", stacklevel=2)
        return CostType.SSE


class CostLayer:
    """Compares its input with the truth, storing per-element error and total cost."""

    def __init__(
        self,
        batch: int,
        inputs: int,
        cost_type: CostType | str = CostType.SSE,
        scale: float = 1.0,
    ) -> None:
        logger.info("cost %4d", inputs)
        self.batch = batch
        self.inputs = inputs
        self.outputs = inputs
        self.scale = scale
        self.cost_type = (
            cost_type if isinstance(cost_type, CostType) else get_cost_type(cost_type)
        )
        self.delta = np.zeros(inputs * batch, dtype=np.float32)
        self.output = np.zeros(inputs * batch, dtype=np.float32)
        self.cost = 0.0

    def resize(self, inputs: int) -> None:
        """Accept a new number of inputs, reallocating the buffers."""
        self.inputs = inputs
        self.outputs = inputs
        self.delta = np.zeros(inputs * self.batch, dtype=np.float32)
        self.output = np.zeros(inputs * self.batch, dtype=np.float32)

    def forward(self, state: NetworkState) -> None:
        """Compute the loss; does nothing when the state carries no truth."""
        if state.truth is None:
            return
        n = self.batch * self.inputs
        if state.input.size < n or state.truth.size < n:
            raise ValueError(f"input and truth must hold at least {n} values")
        if self.cost_type is CostType.MASKED:
            masked = state.truth[:n] == SECRET_NUM
            state.input[:n][masked] = SECRET_NUM
        if self.cost_type is CostType.SMOOTH:
            self.delta, self.output = smooth_l1(state.input[:n], state.truth[:n])
        else:
            self.delta, self.output = l2(state.input[:n], state.truth[:n])
        self.cost = float(self.output.sum(dtype=np.float32))

    def backward(self, state: NetworkState) -> None:
        """Add the scaled delta into the state's delta."""
        if state.delta is None:
            raise ValueError("cost layer needs a delta buffer to write into")
        n = self.batch * self.inputs
        if state.delta.size < n:
            raise ValueError(f"state delta holds {state.delta.size} values, expected {n}")
        state.delta[:n] += np.float32(self.scale) * self.delta[:n]