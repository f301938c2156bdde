"""Scatter column buffers back into images (the adjoint of im2col)."""

from __future__ import annotations

import numpy as np
from numpy.typing import ArrayLike


def _trunc_div(num: int, den: int) -> int:
    q = abs(num) // abs(den)
    return q if (num >= 0) == (den > 0) else -q


def _check_positive(**values: int) -> None:
    for name, value in values.items():
        if value < 1:
            raise ValueError(f"{name} must be at least 1, got {value}")


def col2im(
    data_col: ArrayLike,
    channels: int,
    height: int,
    width: int,
    ksize: int,
    stride: int,
    pad: int,
) -> np.ndarray:
    """Sum a square-kernel column buffer into a new ``channels x height x width`` image."""
    _check_positive(ksize=ksize, stride=stride)
    height_col = max(_trunc_div(height + 2 * pad - ksize, stride) + 1, 0)
    width_col = max(_trunc_div(width + 2 * pad - ksize, stride) + 1, 0)
    channels_col = channels * ksize * ksize
    cols = np.asarray(data_col, dtype=np.float32).ravel()
    expected = channels_col * height_col * width_col
    if cols.size != expected:
        raise ValueError(f"column buffer holds {cols.size} values, expected {expected}")
    image = np.zeros(channels * height * width, dtype=np.float32)
    if expected == 0:
        return image
    c, h, w = np.indices((channels_col, height_col, width_col))
    w_offset = c % ksize
    h_offset = (c // ksize) % ksize
    c_im = c // ksize // ksize
    row = h_offset + h * stride - pad
    col = w_offset + w * stride - pad
    inside = (row >= 0) & (col >= 0) & (row < height) & (col < width)
    index = col + width * (row + height * c_im)
    np.add.at(image, index[inside], cols.reshape(c.shape)[inside])
    return image


def col2im_ext(
    data_col: ArrayLike,
    channels: int,
    height: int,
    width: int,
    kernel_h: int,
    kernel_w: int,
    pad_h: int,
    pad_w: int,
    stride_h: int,
    stride_w: int,
    dilation_h: int,
    dilation_w: int,
) -> np.ndarray:
    """Sum a column buffer with separate kernel, padding, stride and dilation per axis."""
    _check_positive(
        kernel_h=kernel_h,
        kernel_w=kernel_w,
        stride_h=stride_h,
        stride_w=stride_w,
        dilation_h=dilation_h,
        dilation_w=dilation_w,
    )
    output_h = (
        _trunc_div(height + 2 * pad_h - (dilation_h * (kernel_h - 1) + 1), stride_h) + 1
    )
    output_w = (
        _trunc_div(width + 2 * pad_w - (dilation_w * (kernel_w - 1) + 1), stride_w) + 1
    )
    if output_h < 0 or output_w < 0:
        raise ValueError("kernel does not fit in the padded image")
    cols = np.asarray(data_col, dtype=np.float32).ravel()
    shape = (channels, kernel_h, kernel_w, output_h, output_w)
    expected = channels * kernel_h * kernel_w * output_h * output_w
    if cols.size != expected:
        raise ValueError(f"column buffer holds {cols.size} values, expected {expected}")
    image = np.zeros(channels * height * width, dtype=np.float32)
    if expected == 0:
        return image
    ch, kr, kc, oh, ow = np.indices(shape)
    row = -pad_h + kr * dilation_h + oh * stride_h
    col = -pad_w + kc * dilation_w + ow * stride_w
    inside = (row >= 0) & (row < height) & (col >= 0) & (col < width)
    index = ch * height * width + row * width + col
    np.add.at(image, index[inside], cols.reshape(shape)[inside])
    return image