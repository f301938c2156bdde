import numpy as np
import pytest

from tinydark.activations import Activation
from tinydark.connected_layer import ConnectedLayer
from tinydark.state import NetworkState


def _layer(batch=2, inputs=3, outputs=3, activation=Activation.LINEAR, bn=False):
    return ConnectedLayer(
        batch, 1, inputs, outputs, activation, bn, rng=np.random.default_rng(0)
    )


def test_initial_weights_within_scale():
    layer = _layer(inputs=8, outputs=4)
    bound = np.sqrt(2.0 / 8)
    assert layer.weights.shape == (4, 8)
    assert np.all(np.abs(layer.weights) <= bound + 1e-6)
    assert np.all(layer.biases == 0)


def test_forward_identity_weights_adds_bias():
    layer = _layer()
    layer.weights = np.eye(3, dtype=np.float32)
    layer.biases = np.array([1.0, 2.0, 3.0], dtype=np.float32)
    inp = np.array([0.5, -1.0, 2.0, 4.0, 0.0, -3.0], dtype=np.float32)
    layer.forward(NetworkState(input=inp))
    expected = inp.reshape(2, 3) + layer.biases
    np.testing.assert_allclose(layer.output, expected.ravel(), rtol=1e-6)


def test_forward_relu_zeroes_negatives():
    layer = _layer(activation=Activation.RELU)
    layer.weights = np.eye(3, dtype=np.float32)
    inp = np.array([0.5, -1.0, 2.0, -4.0, 1.0, -3.0], dtype=np.float32)
    layer.forward(NetworkState(input=inp))
    np.testing.assert_allclose(layer.output, np.maximum(inp, 0))


def test_forward_short_input_raises():
    layer = _layer()
    with pytest.raises(ValueError):
        layer.forward(NetworkState(input=np.zeros(4, dtype=np.float32)))


def test_backward_identity_passes_delta_through():
    layer = _layer()
    layer.weights = np.eye(3, dtype=np.float32)
    inp = np.arange(6, dtype=np.float32)
    layer.forward(NetworkState(input=inp))
    layer.delta = np.array([1.0, -1.0, 0.5, 2.0, 0.0, 1.0], dtype=np.float32)
    state_delta = np.zeros(6, dtype=np.float32)
    state = NetworkState(input=inp, delta=state_delta)
    layer.backward(state)
    np.testing.assert_allclose(state_delta, layer.delta)
    np.testing.assert_allclose(
        layer.bias_updates, layer.delta.reshape(2, 3).sum(axis=0)
    )
    np.testing.assert_allclose(
        layer.weight_updates,
        np.outer(layer.delta[:3], inp[:3]) + np.outer(layer.delta[3:], inp[3:]),
        rtol=1e-6,
    )


def test_update_with_zero_momentum_clears_updates():
    layer = _layer()
    before = layer.weights.copy()
    layer.bias_updates = np.ones(3, dtype=np.float32)
    layer.weight_updates = np.ones((3, 3), dtype=np.float32)
    layer.update(batch=1, learning_rate=0.1, momentum=0.0, decay=0.0)
    np.testing.assert_allclose(layer.biases, np.full(3, 0.1), rtol=1e-6)
    np.testing.assert_allclose(layer.weights, before + 0.1, rtol=1e-6)
    assert np.all(layer.bias_updates == 0)
    assert np.all(layer.weight_updates == 0)


def test_batchnorm_training_normalises_outputs():
    layer = _layer(batch=4, bn=True)
    inp = np.random.default_rng(1).normal(size=12).astype(np.float32)
    layer.forward(NetworkState(input=inp, train=True))
    out = layer.output.reshape(4, 3)
    np.testing.assert_allclose(out.mean(axis=0), np.zeros(3), atol=1e-5)
    np.testing.assert_allclose(layer.rolling_mean, 0.05 * layer.mean, rtol=1e-5)


def test_batchnorm_backward_without_training_raises():
    layer = _layer(bn=True)
    inp = np.ones(6, dtype=np.float32)
    layer.forward(NetworkState(input=inp))
    with pytest.raises(RuntimeError):
        layer.backward(NetworkState(input=inp))