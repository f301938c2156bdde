"""Crop layer that cuts a window out of each image, randomly while training."""

from __future__ import annotations

import logging

import numpy as np

from tinydark.state import NetworkState

logger = logging.getLogger(__name__)


class CropLayer:
    """Crops ``crop_height x crop_width`` windows and maps values to ``[-1, 1]``."""

    def __init__(
        self,
        batch: int,
        h: int,
        w: int,
        c: int,
        crop_height: int,
        crop_width: int,
        flip: bool = False,
        angle: float = 0.0,
        saturation: float = 1.0,
        exposure: float = 1.0,
        rng: np.random.Generator | None = None,
    ) -> None:
        logger.info(
            "Crop layer: %d x %d -> %d x %d x %d image", h, w, crop_height, crop_width, c
        )
        self.batch = batch
        self.h = h
        self.w = w
        self.c = c
        self.scale = crop_height / h
        self.flip = flip
        self.angle = angle
        self.saturation = saturation
        self.exposure = exposure
        self.noadjust = False
        self.out_w = crop_width
        self.out_h = crop_height
        self.out_c = c
        self.inputs = w * h * c
        self.outputs = self.out_w * self.out_h * self.out_c
        self.output = np.zeros(self.outputs * batch, dtype=np.float32)
        self.rng = rng if rng is not None else np.random.default_rng()

    def resize(self, w: int, h: int) -> None:
        """Accept inputs of a new size, keeping the crop ratio."""
        self.w = w
        self.h = h
        self.out_w = int(self.scale * w)
        self.out_h = int(self.scale * h)
        self.inputs = w * h * self.c
        self.outputs = self.out_h * self.out_w * self.out_c
        self.output = np.zeros(self.batch * self.outputs, dtype=np.float32)

    def forward(self, state: NetworkState) -> None:
        """Crop the input: a random (possibly flipped) window when training, the centre otherwise."""
        spare_h = self.h - self.out_h
        spare_w = self.w - self.out_w
        if spare_h < 0 or spare_w < 0:
            raise ValueError("crop window is larger than the input")
        n = self.batch * self.inputs
        if state.input.size < n:
            raise ValueError(f"input holds {state.input.size} values, expected {n}")
        if state.train:
            flip = bool(self.flip) and int(self.rng.integers(2)) == 1
            dh = int(self.rng.integers(spare_h + 1))
            dw = int(self.rng.integers(spare_w + 1))
        else:
            flip = False
            dh = spare_h // 2
            dw = spare_w // 2
        scale, trans = (1.0, 0.0) if self.noadjust else (2.0, -1.0)
        grid = state.input[:n].reshape(self.batch, self.c, self.h, self.w)
        rows = dh + np.arange(self.out_h)
        j = np.arange(self.out_w)
        cols = self.w - dw - j - 1 if flip else j + dw
        window = grid[:, :, rows][:, :, :, cols]
        self.output = (window * np.float32(scale) + np.float32(trans)).astype(
            np.float32
        ).ravel()

    def backward(self, state: NetworkState) -> None:
        """Cropping passes no gradient back."""