"""The state handed from the network to each layer during a pass."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from numpy.typing import ArrayLike


def _as_vector(values: ArrayLike) -> np.ndarray:
    array = np.asarray(values, dtype=np.float32)
    if array.ndim != 1:
        array = array.reshape(-1)
    return array


@dataclass
class NetworkState:
    """Input, gradient buffer and truth seen by a layer during one pass.

    ``input``, ``delta`` and ``truth`` are kept as flat float32 arrays.  A
    float32 array passed in is kept as is (or as a flat view of it), so
    layers writing into ``delta`` update the caller's buffer.
    """

    input: np.ndarray
    delta: np.ndarray | None = None
    truth: np.ndarray | None = None
    train: bool = False

    def __post_init__(self) -> None:
        self.input = _as_vector(self.input)
        if self.delta is not None:
            self.delta = _as_vector(self.delta)
        if self.truth is not None:
            self.truth = _as_vector(self.truth)