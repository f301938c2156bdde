"""Activation functions, their gradients and the channel-normalising variants."""

from __future__ import annotations

import enum
import warnings
from typing import Callable

import numpy as np
from numpy.typing import ArrayLike

MISH_THRESHOLD = 20.0
_NORM_EPS = 0.0001


class Activation(enum.Enum):
    """Activation kinds understood by the layers."""

    LOGISTIC = enum.auto()
    RELU = enum.auto()
    RELU6 = enum.auto()
    RELIE = enum.auto()
    LINEAR = enum.auto()
    RAMP = enum.auto()
    TANH = enum.auto()
    PLSE = enum.auto()
    LEAKY = enum.auto()
    ELU = enum.auto()
    LOGGY = enum.auto()
    STAIR = enum.auto()
    HARDTAN = enum.auto()
    LHTAN = enum.auto()
    SELU = enum.auto()
    GELU = enum.auto()
    SWISH = enum.auto()
    MISH = enum.auto()
    NORM_CHAN = enum.auto()
    NORM_CHAN_SOFTMAX = enum.auto()
    NORM_CHAN_SOFTMAX_MAXVAL = enum.auto()


_BY_NAME = {
    "logistic": Activation.LOGISTIC,
    "swish": Activation.SWISH,
    "mish": Activation.MISH,
    "normalize_channels": Activation.NORM_CHAN,
    "normalize_channels_softmax": Activation.NORM_CHAN_SOFTMAX,
    "normalize_channels_softmax_maxval": Activation.NORM_CHAN_SOFTMAX_MAXVAL,
    "loggy": Activation.LOGGY,
    "relu": Activation.RELU,
    "relu6": Activation.RELU6,
    "elu": Activation.ELU,
    "selu": Activation.SELU,
    "gelu": Activation.GELU,
    "relie": Activation.RELIE,
    "plse": Activation.PLSE,
    "hardtan": Activation.HARDTAN,
    "lhtan": Activation.LHTAN,
    "linear": Activation.LINEAR,
    "ramp": Activation.RAMP,
    "leaky": Activation.LEAKY,
    "tanh": Activation.TANH,
    "stair": Activation.STAIR,
}

_NAME_OF = {
    Activation.LOGISTIC: "logistic",
    Activation.LOGGY: "loggy",
    Activation.RELU: "relu",
    Activation.ELU: "elu",
    Activation.SELU: "selu",
    Activation.GELU: "gelu",
    Activation.RELIE: "relie",
    Activation.RAMP: "ramp",
    Activation.LINEAR: "linear",
    Activation.TANH: "tanh",
    Activation.PLSE: "plse",
    Activation.LEAKY: "leaky",
    Activation.STAIR: "stair",
    Activation.HARDTAN: "hardtan",
    Activation.LHTAN: "lhtan",
}


def get_activation(name: str) -> Activation:
    """Look up an activation by its configuration name, falling back to ReLU."""
    try:
        return _BY_NAME[name]
    except KeyError:
        warnings.warn(
            f"Couldn't find activation function {name}, going with ReLU",
            stacklevel=2,
        )
        return Activation.RELU


def get_activation_string(activation: Activation) -> str:
    """Return the configuration name of an activation ("relu" if it has none)."""
    return _NAME_OF.get(activation, "relu")


def _f32(x: ArrayLike) -> np.ndarray:
    return np.asarray(x, dtype=np.float32)


# --- element-wise activations -------------------------------------------------

def _stair(x: np.ndarray) -> np.ndarray:
    n = np.floor(x)
    half = np.floor(x / 2.0)
    return np.where(np.fmod(n, 2) == 0, half, (x - n) + half)


def _logistic(x: np.ndarray) -> np.ndarray:
    return 1.0 / (1.0 + np.exp(-x))


def _tanh(x: np.ndarray) -> np.ndarray:
    return 2.0 / (1.0 + np.exp(-2.0 * x)) - 1.0


def _softplus(x: np.ndarray, threshold: float) -> np.ndarray:
    return np.where(
        x > threshold,
        x,
        np.where(x < -threshold, np.exp(x), np.log(np.exp(x) + 1.0)),
    )


def _plse(x: np.ndarray) -> np.ndarray:
    return np.where(
        x < -4,
        0.01 * (x + 4),
        np.where(x > 4, 0.01 * (x - 4) + 1.0, 0.125 * x + 0.5),
    )


def _lhtan(x: np.ndarray) -> np.ndarray:
    return np.where(x < 0, 0.001 * x, np.where(x > 1, 0.001 * (x - 1) + 1.0, x))


def _gelu(x: np.ndarray) -> np.ndarray:
    return 0.5 * x * (1.0 + np.tanh(0.797885 * x + 0.035677 * x**3))


_ACTIVATE: dict[Activation, Callable[[np.ndarray], np.ndarray]] = {
    Activation.LINEAR: lambda x: x,
    Activation.LOGISTIC: _logistic,
    Activation.LOGGY: lambda x: 2.0 / (1.0 + np.exp(-x)) - 1.0,
    Activation.RELU: lambda x: np.where(x > 0, x, 0.0),
    Activation.RELU6: lambda x: np.minimum(np.maximum(x, 0.0), 6.0),
    Activation.ELU: lambda x: np.where(x >= 0, x, np.exp(x) - 1.0),
    Activation.SELU: lambda x: np.where(
        x >= 0, 1.0507 * x, 1.0507 * 1.6732 * (np.exp(x) - 1.0)
    ),
    Activation.GELU: _gelu,
    Activation.RELIE: lambda x: np.where(x > 0, x, 0.01 * x),
    Activation.RAMP: lambda x: np.where(x > 0, x, 0.0) + 0.1 * x,
    Activation.LEAKY: lambda x: np.where(x > 0, x, 0.1 * x),
    Activation.TANH: _tanh,
    Activation.PLSE: _plse,
    Activation.STAIR: _stair,
    Activation.HARDTAN: lambda x: np.clip(x, -1.0, 1.0),
    Activation.LHTAN: _lhtan,
}


# --- element-wise gradients (taken with respect to the activated output) ------

def _sech(x: np.ndarray) -> np.ndarray:
    return 2.0 / (np.exp(x) + np.exp(-x))


def _gelu_gradient(x: np.ndarray) -> np.ndarray:
    x3 = x**3
    inner = 0.0356774 * x3 + 0.797885 * x
    return (
        0.5 * np.tanh(inner)
        + (0.0535161 * x3 + 0.398942 * x) * _sech(inner) ** 2
        + 0.5
    )


def _loggy_gradient(x: np.ndarray) -> np.ndarray:
    y = (x + 1.0) / 2.0
    return 2.0 * (1.0 - y) * y


_GRADIENT: dict[Activation, Callable[[np.ndarray], np.ndarray]] = {
    Activation.LINEAR: lambda x: np.ones_like(x),
    Activation.LOGISTIC: lambda x: (1.0 - x) * x,
    Activation.LOGGY: _loggy_gradient,
    Activation.RELU: lambda x: (x > 0).astype(np.float32),
    Activation.RELU6: lambda x: ((x > 0) & (x < 6)).astype(np.float32),
    Activation.ELU: lambda x: (x >= 0) + (x < 0) * (x + 1.0),
    Activation.SELU: lambda x: (x >= 0) * 1.0507 + (x < 0) * (x + 1.0507 * 1.6732),
    Activation.GELU: _gelu_gradient,
    Activation.RELIE: lambda x: np.where(x > 0, 1.0, 0.01).astype(np.float32),
    Activation.RAMP: lambda x: (x > 0) + np.float32(0.1),
    Activation.LEAKY: lambda x: np.where(x > 0, 1.0, 0.1).astype(np.float32),
    Activation.TANH: lambda x: 1.0 - x * x,
    Activation.PLSE: lambda x: np.where((x < 0) | (x > 1), 0.01, 0.125).astype(
        np.float32
    ),
    Activation.STAIR: lambda x: np.where(np.floor(x) == x, 0.0, 1.0).astype(
        np.float32
    ),
    Activation.HARDTAN: lambda x: np.where((x > -1) & (x < 1), 1.0, 0.0).astype(
        np.float32
    ),
    Activation.LHTAN: lambda x: np.where((x > 0) & (x < 1), 1.0, 0.001).astype(
        np.float32
    ),
}

_NORM_KINDS = frozenset(
    {
        Activation.NORM_CHAN,
        Activation.NORM_CHAN_SOFTMAX,
        Activation.NORM_CHAN_SOFTMAX_MAXVAL,
    }
)


def _apply_activation(x: np.ndarray, activation: Activation) -> np.ndarray:
    func = _ACTIVATE.get(activation)
    if func is None:
        return np.zeros_like(x)
    with np.errstate(over="ignore"):
        return np.asarray(func(x), dtype=np.float32)


def _apply_gradient(x: np.ndarray, activation: Activation) -> np.ndarray:
    if activation in _NORM_KINDS:
        raise ValueError(
            "normalize-channels activations need their own gradient functions"
        )
    func = _GRADIENT.get(activation)
    if func is None:
        return np.zeros_like(x)
    with np.errstate(over="ignore"):
        return np.asarray(func(x), dtype=np.float32)


def activate(x: float, activation: Activation) -> float:
    """Apply an activation to a single value (0.0 for kinds with no scalar form)."""
    return float(_apply_activation(_f32(x), activation))


def gradient(x: float, activation: Activation) -> float:
    """Gradient of an activation at an already-activated value."""
    return float(_apply_gradient(_f32(x), activation))


def activate_array(x: ArrayLike, activation: Activation) -> np.ndarray:
    """Apply an activation element-wise, returning a new float32 array."""
    return _apply_activation(_f32(x).copy(), activation)


def gradient_array(x: ArrayLike, activation: Activation, delta: ArrayLike) -> np.ndarray:
    """Multiply ``delta`` by the activation gradient at the outputs ``x``."""
    return _f32(delta) * _apply_gradient(_f32(x), activation)


def activate_array_swish(x: ArrayLike) -> tuple[np.ndarray, np.ndarray]:
    """Swish activation; returns ``(sigmoid, output)``."""
    values = _f32(x)
    with np.errstate(over="ignore"):
        sigmoid = np.asarray(_logistic(values), dtype=np.float32)
    return sigmoid, values * sigmoid


def gradient_array_swish(x: ArrayLike, sigmoid: ArrayLike, delta: ArrayLike) -> np.ndarray:
    """Back-propagate through swish, given its output and stored sigmoid."""
    swish = _f32(x)
    sig = _f32(sigmoid)
    return _f32(delta) * (swish + sig * (1.0 - swish))


def activate_array_mish(x: ArrayLike) -> tuple[np.ndarray, np.ndarray]:
    """Mish activation; returns ``(activation_input, output)``."""
    values = _f32(x)
    with np.errstate(over="ignore"):
        output = values * _tanh(_softplus(values, MISH_THRESHOLD))
    return values.copy(), np.asarray(output, dtype=np.float32)


def gradient_array_mish(activation_input: ArrayLike, delta: ArrayLike) -> np.ndarray:
    """Back-propagate through mish, given the values it was applied to."""
    inp = _f32(activation_input)
    with np.errstate(over="ignore"):
        sp = _softplus(inp, MISH_THRESHOLD)
        grad_sp = 1.0 - np.exp(-sp)
        tsp = np.tanh(sp)
        grad_tsp = (1.0 - tsp * tsp) * grad_sp
        grad = inp * grad_tsp + tsp
    return _f32(delta) * np.asarray(grad, dtype=np.float32)


def _channels_view(x: ArrayLike, batch: int, channels: int, wh_step: int) -> np.ndarray:
    values = _f32(x)
    if values.size != batch * channels * wh_step:
        raise ValueError(
            f"array of {values.size} values does not hold "
            f"{batch} x {channels} x {wh_step} elements"
        )
    return values.reshape(batch, channels, wh_step)


def activate_array_normalize_channels(
    x: ArrayLike, batch: int, channels: int, wh_step: int
) -> np.ndarray:
    """Divide positive values by the per-position sum over channels; zero the rest."""
    values = _channels_view(x, batch, channels, wh_step)
    positive = np.where(values > 0, values, 0.0).astype(np.float32)
    total = _NORM_EPS + positive.sum(axis=1, keepdims=True)
    return (positive / total).astype(np.float32).ravel()


def gradient_array_normalize_channels(
    x: ArrayLike, batch: int, channels: int, wh_step: int, delta: ArrayLike
) -> np.ndarray:
    """Back-propagate through channel normalisation."""
    out = _channels_view(x, batch, channels, wh_step)
    d = _channels_view(delta, batch, channels, wh_step)
    grad = (out * d).sum(axis=1, keepdims=True)
    return np.where(out > 0, d * grad, d).astype(np.float32).ravel()


def activate_array_normalize_channels_softmax(
    x: ArrayLike, batch: int, channels: int, wh_step: int, use_max_val: bool
) -> np.ndarray:
    """Softmax over channels at every position, optionally shifted by the maximum."""
    values = _channels_view(x, batch, channels, wh_step)
    if use_max_val:
        shift = values.max(axis=1, keepdims=True)
    else:
        shift = np.zeros((batch, 1, wh_step), dtype=np.float32)
    with np.errstate(over="ignore"):
        exps = np.exp(values - shift)
    total = _NORM_EPS + exps.sum(axis=1, keepdims=True)
    return (exps / total).astype(np.float32).ravel()


def gradient_array_normalize_channels_softmax(
    x: ArrayLike, batch: int, channels: int, wh_step: int, delta: ArrayLike
) -> np.ndarray:
    """Back-propagate through the channel softmax."""
    out = _channels_view(x, batch, channels, wh_step)
    d = _channels_view(delta, batch, channels, wh_step)
    grad = (out * d).sum(axis=1, keepdims=True)
    return (d * grad).astype(np.float32).ravel()