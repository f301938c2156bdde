import math

import numpy as np
import pytest

from tinydark import blas


def test_reorg_round_trip_and_permutation():
    batch, out_c, out_h, out_w, stride = 2, 8, 3, 3, 2
    x = np.arange(batch * out_c * out_h * out_w, dtype=np.float32)
    fwd = blas.reorg(x, out_w, out_h, out_c, batch, stride, True)
    assert sorted(fwd.tolist()) == sorted(x.tolist())
    assert not np.array_equal(fwd, x)
    back = blas.reorg(fwd, out_w, out_h, out_c, batch, stride, False)
    np.testing.assert_array_equal(back, x)


def test_reorg_rejects_too_few_channels():
    with pytest.raises(ValueError):
        blas.reorg(np.zeros(2 * 2 * 2), 2, 2, 2, 1, 2, True)


def test_flatten_forward_is_transpose_and_round_trips():
    size, layers, batch = 4, 3, 2
    x = np.arange(size * layers * batch, dtype=np.float32)
    fwd = blas.flatten(x, size, layers, batch, True)
    grid_in = x.reshape(batch, layers, size)
    grid_out = fwd.reshape(batch, size, layers)
    assert grid_out[1, 2, 0] == grid_in[1, 0, 2]
    assert grid_out[0, 3, 2] == grid_in[0, 2, 3]
    np.testing.assert_array_equal(blas.flatten(fwd, size, layers, batch, False), x)


def test_weighted_sum_extremes():
    a = np.array([1.0, 2.0, 3.0])
    b = np.array([4.0, 5.0, 6.0])
    np.testing.assert_allclose(blas.weighted_sum(a, b, np.ones(3)), a)
    np.testing.assert_allclose(blas.weighted_sum(a, b, np.zeros(3)), b)
    np.testing.assert_array_equal(blas.weighted_sum(a, None, np.zeros(3)), np.zeros(3))


def test_weighted_delta_splits_gradient():
    b = np.array([0.5, -1.0, 2.0])
    a = b + 1.0
    s = np.array([0.25, 0.5, 0.75])
    dc = np.array([1.0, 2.0, -3.0])
    da, db, ds = blas.weighted_delta(a, b, s, np.zeros(3), np.zeros(3), np.zeros(3), dc)
    np.testing.assert_allclose(da + db, dc, rtol=1e-6)
    np.testing.assert_allclose(ds, dc, rtol=1e-6)


def test_weighted_delta_skips_missing_inputs():
    da, db, ds = blas.weighted_delta(
        np.ones(2), np.zeros(2), np.ones(2), None, None, np.zeros(2), np.ones(2)
    )
    assert da is None and db is None
    np.testing.assert_allclose(ds, np.ones(2))


def test_shortcut_same_shape_adds():
    add = np.arange(2 * 3 * 2 * 2, dtype=np.float32)
    out = np.ones_like(add)
    result = blas.shortcut(2, 2, 2, 3, add, 2, 2, 3, out)
    np.testing.assert_allclose(result, add + 1.0)


def test_shortcut_downsamples_larger_input():
    add = np.arange(4 * 4, dtype=np.float32)
    out = np.zeros(2 * 2, dtype=np.float32)
    result = blas.shortcut(1, 4, 4, 1, add, 2, 2, 1, out)
    np.testing.assert_array_equal(result, add.reshape(4, 4)[::2, ::2].ravel())


def test_shortcut_rejects_mismatched_scaling():
    with pytest.raises(ValueError):
        blas.shortcut(1, 4, 2, 1, np.zeros(8), 2, 2, 1, np.zeros(4))


def test_backward_shortcut_distributes_delta():
    delta_in = np.arange(1, 7, dtype=np.float32)
    delta_out = np.ones(6, dtype=np.float32)
    new_out, layers = blas.backward_shortcut(
        3, [3, 2], [np.zeros(6), np.zeros(4)], delta_out, delta_in
    )
    np.testing.assert_allclose(new_out, delta_in + 1.0)
    np.testing.assert_allclose(layers[0], delta_in)
    np.testing.assert_allclose(layers[1], delta_in.reshape(2, 3)[:, :2].ravel())


def test_mean_and_variance_of_constant():
    x = np.full(2 * 3 * 4, 7.0)
    np.testing.assert_allclose(blas.mean(x, 2, 3, 4), np.full(3, 7.0))
    np.testing.assert_allclose(blas.variance(x, blas.mean(x, 2, 3, 4), 2, 3, 4), np.zeros(3))


def test_normalize_gives_zero_mean_unit_variance():
    rng = np.random.default_rng(1)
    x = rng.normal(3.0, 2.0, size=4 * 2 * 5)
    m = blas.mean(x, 4, 2, 5)
    v = blas.variance(x, m, 4, 2, 5)
    normed = blas.normalize(x, m, v, 4, 2, 5)
    nm = blas.mean(normed, 4, 2, 5)
    np.testing.assert_allclose(nm, np.zeros(2), atol=1e-5)
    np.testing.assert_allclose(blas.variance(normed, nm, 4, 2, 5), np.ones(2), rtol=1e-4)


def test_smooth_l1_small_and_large():
    delta, error = blas.smooth_l1([0.0, 0.0, 0.0], [0.5, 3.0, -3.0])
    assert delta[0] == pytest.approx(0.5)
    assert error[0] == pytest.approx(0.25)
    np.testing.assert_array_equal(delta[1:], [1.0, -1.0])
    np.testing.assert_allclose(error[1:], [5.0, 5.0])


def test_l1_sign_and_magnitude():
    delta, error = blas.l1([1.0, 2.0, 2.0], [3.0, 1.0, 2.0])
    np.testing.assert_array_equal(delta, [1.0, -1.0, -1.0])
    np.testing.assert_allclose(error, np.abs(np.array([3.0, 1.0, 2.0]) - [1.0, 2.0, 2.0]))


def test_logistic_x_ent_half():
    delta, error = blas.logistic_x_ent([0.5], [1.0])
    assert delta[0] == pytest.approx(0.5)
    assert error[0] == pytest.approx(math.log(2), rel=1e-6)


def test_l2_error_is_square_of_delta():
    pred = np.array([1.0, -2.0, 0.5])
    truth = np.array([3.0, 2.0, 0.5])
    delta, error = blas.l2(pred, truth)
    np.testing.assert_allclose(delta, truth - pred)
    np.testing.assert_allclose(error, delta * delta)


def test_upsample_repeats_values():
    x = np.array([1.0, 2.0, 3.0, 4.0])
    up = blas.upsample(x, 2, 2, 1, 1, 2, 1.0).reshape(4, 4)
    np.testing.assert_array_equal(up[:2, :2], np.full((2, 2), 1.0))
    np.testing.assert_array_equal(up[2:, 2:], np.full((2, 2), 4.0))
    assert up.sum() == pytest.approx(4 * x.sum())


def test_upsample_backward_sums_blocks():
    result = blas.upsample_backward(np.ones(4), 2, 2, 1, 1, 3, 1.0, np.ones(36))
    np.testing.assert_allclose(result, np.full(4, 1.0 + 9.0))


def test_constrain_clamps_and_handles_nan():
    result = blas.constrain([-5.0, 0.5, 5.0, np.nan], 2.0)
    np.testing.assert_array_equal(result, [-2.0, 0.5, 2.0, -2.0])


def test_fix_nan_and_inf_replaces_by_inverse_index():
    result = blas.fix_nan_and_inf([np.nan, 1.5, np.inf, -np.inf])
    assert math.isinf(result[0])
    assert result[1] == pytest.approx(1.5)
    assert result[2] == pytest.approx(1 / 2)
    assert result[3] == pytest.approx(1 / 3)