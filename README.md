# tinydark

Small building blocks for convolutional detection networks, computed on the
CPU with NumPy. All arrays are handled as flat or shaped `float32` NumPy
arrays. Most functions return new arrays rather than changing their
arguments.

## Modules

- `tinydark.activations` holds the `Activation` enum. `get_activation(name)`
  looks up a configuration name. An unknown name gives a warning and falls
  back to `RELU`. `get_activation_string` goes the other way.
  - `activate` and `gradient` work on single values. `gradient` is taken at
    the already activated output.
  - `activate_array` and `gradient_array` work on whole arrays.
  - `activate_array_swish` returns `(sigmoid, output)` and pairs with
    `gradient_array_swish`.
  - `activate_array_mish` returns `(activation_input, output)` and pairs with
    `gradient_array_mish`.
  - The channel helpers are `activate_array_normalize_channels` and
    `activate_array_normalize_channels_softmax`, with their `gradient_*`
    counterparts.
  - Asking `gradient` for a normalize-channels kind raises `ValueError`.
- `tinydark.gemm`: `gemm(a, b, c=None, alpha=1.0, beta=1.0, trans_a=False,
  trans_b=False)` returns `alpha * op(a) @ op(b) + beta * c`.
- `tinydark.blas` provides array helpers:
  - reshaping: `reorg`, `flatten`, `upsample`, `upsample_backward`
  - weighted sums: `weighted_sum`, `weighted_delta`
  - shortcuts: `shortcut`, `backward_shortcut`
  - statistics: `mean`, `variance`, `normalize`
  - losses, each returning `(delta, error)`: `l1`, `l2`, `smooth_l1`,
    `logistic_x_ent`
  - clean-up: `constrain`, `fix_nan_and_inf`
- `tinydark.conv_ops` has convolution helpers: `conv_out_height`,
  `conv_out_width`, `add_bias`, `scale_bias`, `backward_bias` and
  `binarize_weights`.
- `tinydark.box` covers box geometry:
  - `Box` is a frozen dataclass holding centre and size. It offers
    `overlap`, `intersect`, `union`, `iou`, `giou`, `diou`, `ciou`, `rmse`
    and `iou_of_kind`.
  - `Box.dx_iou(pred, gt, iou_type)` returns a `DxRep` with the gradient of
    IoU, GIoU, DIoU or CIoU.
  - `AbsBox.enclosing` gives the box that encloses two boxes.
  - `nms_sort(dets, classes, thresh, nms_kind, beta)` runs class-wise
    non-maximum suppression in place on a list of `Detection` objects.
  - `get_most_prob_dets` reduces each detection to a `MostProbDet`.
- `tinydark.col2im`: `col2im` and `col2im_ext` scatter column buffers back
  into images.
- `tinydark.state`: `NetworkState` carries `input`, `delta`, `truth` and
  `train` into a layer.
- Layers, each with `forward(state)` and `backward(state)`:
  - `ActivationLayer`
  - `AvgpoolLayer`, which also has `resize`
  - `BatchnormLayer`, which also has `resize` and `update`. Its module also
    has the helpers `backward_scale`, `mean_delta`, `variance_delta` and
    `normalize_delta`.
  - `ConnectedLayer`, which also has `update`
  - `CostLayer`, which also has `resize`. It uses a `CostType` of `sse`,
    `masked` or `smooth`, looked up with `get_cost_type`.
  - `CropLayer`, which also has `resize`

  `ConnectedLayer` and `CropLayer` take an optional `numpy.random.Generator`
  for reproducible weights and crops. Layers report their shapes through the
  standard `logging` module.

## Install

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Example

```python
import numpy as np
from tinydark.activations import activate_array, get_activation
from tinydark.box import Box

x = np.array([-1.0, 0.5, 2.0], dtype=np.float32)
print(activate_array(x, get_activation("leaky")))

a = Box(0.5, 0.5, 0.2, 0.2)
b = Box(0.55, 0.5, 0.2, 0.2)
print(Box.iou(a, b), Box.giou(a, b), Box.diou(a, b, 0.6))
```

## What it does not do

This is a library of pieces, not a training or detection program.

- There is no command-line tool.
- It has no network configuration parser and no weight-file loading or
  saving.
- It has no image input.
- It has no convolutional layer itself, only the helpers in
  `tinydark.conv_ops` and `tinydark.col2im`.
- Everything runs on the CPU; there is no GPU support.