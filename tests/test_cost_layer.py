import numpy as np
import pytest

from tinydark.cost_layer import SECRET_NUM, CostLayer, CostType, get_cost_type
from tinydark.state import NetworkState


def test_get_cost_type_known_names():
    assert get_cost_type("sse") is CostType.SSE
    assert get_cost_type("masked") is CostType.MASKED
    assert get_cost_type("smooth") is CostType.SMOOTH


def test_get_cost_type_unknown_falls_back_to_sse():
    with pytest.warns(UserWarning):
        assert get_cost_type("bogus") is CostType.SSE


def test_constructor_accepts_string():
    assert CostLayer(1, 2, "smooth").cost_type is CostType.SMOOTH


def test_sse_forward_delta_and_cost():
    layer = CostLayer(1, 4)
    inp = np.array([1.0, 2.0, 0.5, -1.0], dtype=np.float32)
    truth = np.array([1.0, 4.0, 0.0, 1.0], dtype=np.float32)
    layer.forward(NetworkState(input=inp, truth=truth))
    np.testing.assert_allclose(layer.delta, truth - inp)
    np.testing.assert_allclose(layer.output, (truth - inp) ** 2)
    assert layer.cost == pytest.approx(float(layer.output.sum()))


def test_forward_without_truth_keeps_cost():
    layer = CostLayer(1, 2)
    layer.forward(NetworkState(input=np.ones(2, dtype=np.float32)))
    assert layer.cost == 0.0
    assert np.all(layer.output == 0)


def test_masked_positions_give_no_delta():
    layer = CostLayer(1, 3, CostType.MASKED)
    inp = np.array([0.2, 0.4, 0.6], dtype=np.float32)
    truth = np.array([SECRET_NUM, 1.0, SECRET_NUM], dtype=np.float32)
    state = NetworkState(input=inp, truth=truth)
    layer.forward(state)
    assert state.input[0] == SECRET_NUM and state.input[2] == SECRET_NUM
    assert layer.delta[0] == 0 and layer.delta[2] == 0
    assert layer.delta[1] == pytest.approx(0.6)


def test_smooth_large_difference_gives_unit_delta():
    layer = CostLayer(1, 2, CostType.SMOOTH)
    inp = np.array([0.0, 0.0], dtype=np.float32)
    truth = np.array([5.0, -5.0], dtype=np.float32)
    layer.forward(NetworkState(input=inp, truth=truth))
    np.testing.assert_allclose(layer.delta, [1.0, -1.0])


def test_backward_adds_scaled_delta():
    layer = CostLayer(1, 2, scale=0.5)
    inp = np.array([0.0, 1.0], dtype=np.float32)
    truth = np.array([2.0, 1.0], dtype=np.float32)
    layer.forward(NetworkState(input=inp, truth=truth))
    state_delta = np.ones(2, dtype=np.float32)
    layer.backward(NetworkState(input=inp, delta=state_delta))
    np.testing.assert_allclose(state_delta, 1.0 + 0.5 * layer.delta)


def test_backward_without_delta_raises():
    layer = CostLayer(1, 2)
    with pytest.raises(ValueError):
        layer.backward(NetworkState(input=np.zeros(2, dtype=np.float32)))


def test_resize_changes_buffers():
    layer = CostLayer(3, 2)
    layer.resize(5)
    assert layer.inputs == layer.outputs == 5
    assert layer.delta.size == layer.output.size == 15