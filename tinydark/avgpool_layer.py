"""Global average pooling over the spatial positions of each channel."""

from __future__ import annotations

import logging

import numpy as np

from tinydark.state import NetworkState

logger = logging.getLogger(__name__)


class AvgpoolLayer:
    """Reduces every channel of a ``w x h x c`` input to its average."""

    def __init__(self, batch: int, w: int, h: int, c: int) -> None:
        logger.info("avg %4d x%4d x%4d ->   %4d", w, h, c, c)
        self.batch = batch
        self.w = w
        self.h = h
        self.c = c
        self.out_w = 1
        self.out_h = 1
        self.out_c = c
        self.outputs = c
        self.inputs = h * w * c
        self.output = np.zeros(self.outputs * batch, dtype=np.float32)
        self.delta = np.zeros(self.outputs * batch, dtype=np.float32)

    def resize(self, w: int, h: int) -> None:
        """Accept inputs of a new spatial size."""
        self.w = w
        self.h = h
        self.inputs = h * w * self.c

    def forward(self, state: NetworkState) -> None:
        """Average each channel of the state's input into ``output``."""
        n = self.batch * self.inputs
        if state.input.size < n:
            raise ValueError(f"input holds {state.input.size} values, expected {n}")
        grid = state.input[:n].reshape(self.batch, self.c, self.h * self.w)
        total = grid.sum(axis=2, dtype=np.float32)
        self.output = (total / np.float32(self.h * self.w)).astype(np.float32).ravel()

    def backward(self, state: NetworkState) -> None:
        """Spread each channel's delta evenly over its positions, adding into the state."""
        if state.delta is None:
            raise ValueError("average pooling needs a delta buffer to write into")
        n = self.batch * self.inputs
        if state.delta.size < n:
            raise ValueError(f"state delta holds {state.delta.size} values, expected {n}")
        share = self.delta.reshape(self.batch, self.c, 1) / np.float32(self.h * self.w)
        spread = np.broadcast_to(share, (self.batch, self.c, self.h * self.w))
        state.delta[:n] += spread.astype(np.float32).ravel()