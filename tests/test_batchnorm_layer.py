import numpy as np
import pytest

from tinydark.batchnorm_layer import (
    BatchnormLayer,
    backward_scale,
    mean_delta,
    normalize_delta,
    variance_delta,
)
from tinydark.state import NetworkState


def _inputs(seed=0, size=24):
    return np.random.default_rng(seed).normal(3.0, 2.0, size).astype(np.float32)


def test_construction_defaults():
    layer = BatchnormLayer(batch=2, w=2, h=2, c=3)
    assert layer.inputs == layer.outputs == 12
    assert np.all(layer.scales == 1.0)
    assert not layer.biases.any()
    assert layer.output.shape == (24,)


def test_training_forward_normalises_each_channel():
    layer = BatchnormLayer(batch=2, w=2, h=2, c=3, train=True)
    layer.forward(NetworkState(input=_inputs(), train=True))
    per_channel = layer.output.reshape(2, 3, 4).transpose(1, 0, 2).reshape(3, 8)
    assert np.allclose(per_channel.mean(axis=1), 0.0, atol=1e-5)
    assert np.allclose(per_channel.std(axis=1, ddof=1), 1.0, atol=1e-3)


def test_training_forward_moves_rolling_statistics():
    layer = BatchnormLayer(batch=2, w=2, h=2, c=3, train=True)
    layer.forward(NetworkState(input=_inputs(), train=True))
    assert np.allclose(layer.rolling_mean, 0.1 * layer.mean)
    assert np.allclose(layer.rolling_variance, 0.1 * layer.variance)


def test_inference_forward_uses_rolling_statistics_and_bias():
    layer = BatchnormLayer(batch=1, w=2, h=1, c=2)
    layer.rolling_variance = np.ones(2, dtype=np.float32)
    layer.biases = np.array([1.0, -1.0], dtype=np.float32)
    values = np.array([2.0, 4.0, 6.0, 8.0], dtype=np.float32)
    layer.forward(NetworkState(input=values))
    assert np.allclose(layer.output, values + np.repeat(layer.biases, 2), atol=1e-4)


def test_backward_before_training_forward_raises():
    layer = BatchnormLayer(batch=1, w=1, h=1, c=2)
    with pytest.raises(RuntimeError):
        layer.backward(NetworkState(input=[0.0, 0.0]))


def test_backward_gradient_sums_to_zero_per_channel():
    layer = BatchnormLayer(batch=2, w=2, h=2, c=3, train=True)
    layer.forward(NetworkState(input=_inputs(1), train=True))
    layer.delta = np.random.default_rng(2).normal(0, 0.1, 24).astype(np.float32)
    buffer = np.zeros(24, dtype=np.float32)
    layer.backward(NetworkState(input=np.zeros(24), delta=buffer, train=True))
    assert np.array_equal(buffer, layer.delta)
    sums = buffer.reshape(2, 3, 4).sum(axis=(0, 2))
    assert np.allclose(sums, 0.0, atol=1e-3)


def test_update_applies_and_decays():
    layer = BatchnormLayer(batch=1, w=1, h=1, c=3)
    updates = np.array([1.0, 2.0, 3.0], dtype=np.float32)
    layer.bias_updates = updates.copy()
    layer.scale_updates = updates.copy()
    layer.update(batch=2, learning_rate=0.5, momentum=0.9, decay=0.0)
    assert np.allclose(layer.biases, 0.25 * updates)
    assert np.allclose(layer.scales, 1.0 + 0.25 * updates)
    assert np.allclose(layer.bias_updates, 0.9 * updates)
    assert np.allclose(layer.scale_updates, 0.9 * updates)


def test_resize_reallocates_buffers():
    layer = BatchnormLayer(batch=2, w=2, h=2, c=3)
    layer.resize(4, 3)
    assert layer.inputs == layer.outputs == 36
    assert (layer.out_w, layer.out_h) == (4, 3)
    assert layer.output.shape == (72,)
    assert layer.delta.shape == (72,)


def test_backward_scale_with_unit_norm_sums_delta():
    delta = np.arange(12, dtype=np.float32)
    result = backward_scale(np.ones(12), delta, 2, 3, 2, np.zeros(3))
    assert np.allclose(result, delta.reshape(2, 3, 2).sum(axis=(0, 2)))


def test_mean_delta_is_linear_in_delta():
    delta = np.random.default_rng(3).normal(size=12).astype(np.float32)
    var = np.array([0.5, 1.0, 2.0], dtype=np.float32)
    single = mean_delta(delta, var, 2, 3, 2)
    double = mean_delta(2 * delta, var, 2, 3, 2)
    assert np.allclose(double, 2 * single)
    assert np.allclose(mean_delta(np.zeros(12), var, 2, 3, 2), 0.0)


def test_variance_delta_vanishes_at_mean():
    x = np.repeat(np.array([1.0, 2.0, 3.0], dtype=np.float32), 2)
    x = np.tile(x, 2)
    result = variance_delta(x, np.ones(12), [1.0, 2.0, 3.0], [1.0, 1.0, 1.0], 2, 3, 2)
    assert np.allclose(result, 0.0)


def test_normalize_delta_with_unit_variance_passes_delta():
    delta = np.random.default_rng(4).normal(size=6).astype(np.float32)
    result = normalize_delta(
        np.zeros(6), np.zeros(3), np.ones(3), np.zeros(3), np.zeros(3), 1, 3, 2, delta
    )
    assert np.allclose(result, delta, atol=1e-4)


def test_size_mismatch_raises():
    with pytest.raises(ValueError):
        mean_delta(np.zeros(5), np.ones(3), 2, 3, 2)
    layer = BatchnormLayer(batch=2, w=2, h=2, c=3)
    with pytest.raises(ValueError):
        layer.forward(NetworkState(input=np.zeros(10)))