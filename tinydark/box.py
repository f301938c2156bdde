"""Bounding boxes, IoU variants with their gradients, and non-maximum suppression."""

from __future__ import annotations

import enum
import math
from dataclasses import dataclass, field
from typing import Sequence

_FLT_EPSILON = 2.0**-23
_AR_SCALE = 4.0 / (math.pi * math.pi)


def _div(num: float, den: float) -> float:
    """Divide with IEEE semantics instead of raising on a zero denominator."""
    try:
        return num / den
    except ZeroDivisionError:
        if num == 0 or math.isnan(num):
            return math.nan
        return math.copysign(math.inf, num) * math.copysign(1.0, den)


class IouLoss(enum.Enum):
    """Kinds of box overlap measure."""

    IOU = 0
    GIOU = 1
    MSE = 2
    DIOU = 3
    CIOU = 4


class NmsKind(enum.Enum):
    """Suppression criteria for :func:`nms_sort`."""

    GREEDY_NMS = 0
    DIOU_NMS = 1


@dataclass(frozen=True)
class DxRep:
    """Gradient of an IoU measure.

    The fields keep their corner names, but hold the gradient with respect to
    the centre x, centre y, width and height, in that order.
    """

    dt: float
    db: float
    dl: float
    dr: float


@dataclass(frozen=True)
class AbsBox:
    """A box given by its edges rather than its centre and size."""

    left: float
    right: float
    top: float
    bottom: float

    @classmethod
    def enclosing(cls, b1: "Box", b2: "Box") -> "AbsBox":
        """Smallest box that contains both boxes."""
        a1 = _abs_box(b1)
        a2 = _abs_box(b2)
        return cls(
            left=min(a1.left, a2.left),
            right=max(a1.right, a2.right),
            top=min(a1.top, a2.top),
            bottom=max(a1.bottom, a2.bottom),
        )


def _abs_box(b: "Box") -> AbsBox:
    return AbsBox(
        left=b.x - b.w / 2.0,
        right=b.x + b.w / 2.0,
        top=b.y - b.h / 2.0,
        bottom=b.y + b.h / 2.0,
    )


@dataclass(frozen=True)
class Box:
    """A box given by its centre and its size."""

    x: float = 0.0
    y: float = 0.0
    w: float = 0.0
    h: float = 0.0

    @classmethod
    def from_array(cls, values: Sequence[float], stride: int = 1) -> "Box":
        """Read x, y, w and h from ``values`` spaced ``stride`` apart."""
        return cls(
            float(values[0]),
            float(values[stride]),
            float(values[2 * stride]),
            float(values[3 * stride]),
        )

    def is_valid(self, ratio: float = 0.1) -> bool:
        """True when the centre lies strictly inside ``(ratio, 1 - ratio)`` on both axes."""
        lower = ratio
        upper = 1.0 - ratio
        return lower < self.x < upper and lower < self.y < upper

    @staticmethod
    def overlap(x1: float, w1: float, x2: float, w2: float) -> float:
        """Length shared by two segments given by centre and width (negative if apart)."""
        left = max(x1 - w1 / 2, x2 - w2 / 2)
        right = min(x1 + w1 / 2, x2 + w2 / 2)
        return right - left

    @staticmethod
    def intersect(b1: "Box", b2: "Box") -> float:
        """Area of the intersection of two boxes."""
        w = Box.overlap(b1.x, b1.w, b2.x, b2.w)
        h = Box.overlap(b1.y, b1.h, b2.y, b2.h)
        if w < 0 or h < 0:
            return 0.0
        return w * h

    @staticmethod
    def union(b1: "Box", b2: "Box") -> float:
        """Area of the union of two boxes."""
        return b1.w * b1.h + b2.w * b2.h - Box.intersect(b1, b2)

    @staticmethod
    def iou(b1: "Box", b2: "Box") -> float:
        """Intersection over union; 0 when either area is negligible."""
        inter = Box.intersect(b1, b2)
        uni = Box.union(b1, b2)
        if abs(inter) < _FLT_EPSILON or abs(uni) < _FLT_EPSILON:
            return 0.0
        return inter / uni

    @staticmethod
    def ciou(b1: "Box", b2: "Box") -> float:
        """Complete IoU: distance and aspect-ratio penalised IoU."""
        ab = AbsBox.enclosing(b1, b2)
        w = ab.right - ab.left
        h = ab.bottom - ab.top
        c = w * w + h * h
        iou = Box.iou(b1, b2)
        if abs(c) < _FLT_EPSILON:
            return iou
        u = (b1.x - b2.x) ** 2 + (b1.y - b2.y) ** 2
        d = u / c
        ar_gt = _div(b2.w, b2.h)
        ar_pred = _div(b1.w, b1.h)
        ar_loss = _AR_SCALE * (math.atan(ar_gt) - math.atan(ar_pred)) ** 2
        alpha = _div(ar_loss, 1 - iou + ar_loss + 0.000001)
        return iou - (d + alpha * ar_loss)

    @staticmethod
    def diou(b1: "Box", b2: "Box", beta: float = 0.6) -> float:
        """Distance IoU with the centre-distance term raised to ``beta``."""
        ab = AbsBox.enclosing(b1, b2)
        w = ab.right - ab.left
        h = ab.bottom - ab.top
        c = w * w + h * h
        iou = Box.iou(b1, b2)
        if abs(c) < _FLT_EPSILON:
            return iou
        d = (b1.x - b2.x) ** 2 + (b1.y - b2.y) ** 2
        return iou - math.pow(d / c, beta)

    @staticmethod
    def giou(b1: "Box", b2: "Box") -> float:
        """Generalised IoU."""
        ab = AbsBox.enclosing(b1, b2)
        c = (ab.right - ab.left) * (ab.bottom - ab.top)
        iou = Box.iou(b1, b2)
        if abs(c) < _FLT_EPSILON:
            return iou
        u = Box.union(b1, b2)
        return iou - (c - u) / c

    @staticmethod
    def rmse(b1: "Box", b2: "Box") -> float:
        """Euclidean distance between the (x, y, w, h) vectors of two boxes."""
        return math.sqrt(
            (b1.x - b2.x) ** 2
            + (b1.y - b2.y) ** 2
            + (b1.w - b2.w) ** 2
            + (b1.h - b2.h) ** 2
        )

    @staticmethod
    def iou_of_kind(b1: "Box", b2: "Box", iou_type: IouLoss) -> float:
        """Overlap measure selected by ``iou_type``."""
        if iou_type is IouLoss.GIOU:
            return Box.giou(b1, b2)
        if iou_type is IouLoss.MSE:
            return Box.rmse(b1, b2)
        if iou_type is IouLoss.DIOU:
            return Box.diou(b1, b2)
        if iou_type is IouLoss.CIOU:
            return Box.ciou(b1, b2)
        return Box.iou(b1, b2)

    @staticmethod
    def dx_iou(pred: "Box", gt: "Box", iou_type: IouLoss) -> DxRep:
        """Gradient of the chosen IoU measure with respect to the predicted box."""
        ab_pred = _abs_box(pred)
        ab_gt = _abs_box(gt)
        pred_t = min(ab_pred.top, ab_pred.bottom)
        pred_b = max(ab_pred.top, ab_pred.bottom)
        pred_l = min(ab_pred.left, ab_pred.right)
        pred_r = max(ab_pred.left, ab_pred.right)

        x_area = (pred_b - pred_t) * (pred_r - pred_l)
        gt_area = (ab_gt.bottom - ab_gt.top) * (ab_gt.right - ab_gt.left)
        ih = min(pred_b, ab_gt.bottom) - max(pred_t, ab_gt.top)
        iw = min(pred_r, ab_gt.right) - max(pred_l, ab_gt.left)
        inter = iw * ih
        uni = x_area + gt_area - inter
        s = (pred.x - gt.x) ** 2 + (pred.y - gt.y) ** 2
        giou_cw = max(pred_r, ab_gt.right) - min(pred_l, ab_gt.left)
        giou_ch = max(pred_b, ab_gt.bottom) - min(pred_t, ab_gt.top)
        giou_c = giou_cw * giou_ch

        dx_t = -(pred_r - pred_l)
        dx_b = pred_r - pred_l
        dx_l = -(pred_b - pred_t)
        dx_r = pred_b - pred_t

        di_t = -iw if pred_t > ab_gt.top else 0.0
        di_b = iw if pred_b < ab_gt.bottom else 0.0
        di_l = -ih if pred_l > ab_gt.left else 0.0
        di_r = ih if pred_r < ab_gt.right else 0.0

        du_t = dx_t - di_t
        du_b = dx_b - di_b
        du_l = dx_l - di_l
        du_r = dx_r - di_r

        dc_t = -giou_cw if pred_t < ab_gt.top else 0.0
        dc_b = giou_cw if pred_b > ab_gt.bottom else 0.0
        dc_l = -giou_ch if pred_l < ab_gt.left else 0.0
        dc_r = giou_ch if pred_r > ab_gt.right else 0.0

        p_dt = p_db = p_dl = p_dr = 0.0
        if uni > 0:
            u_sq = uni * uni
            p_dt = (uni * di_t - inter * du_t) / u_sq
            p_db = (uni * di_b - inter * du_b) / u_sq
            p_dl = (uni * di_l - inter * du_l) / u_sq
            p_dr = (uni * di_r - inter * du_r) / u_sq
        if not ab_pred.top < ab_pred.bottom:
            p_dt = p_db
        if not ab_pred.left < ab_pred.right:
            p_dl = p_dr

        if iou_type is IouLoss.GIOU:
            c_sq = giou_c * giou_c

            def c_term(du: float, dc: float) -> float:
                return _div(giou_c * du - uni * dc, c_sq)

            if giou_c > 0:
                p_dt += c_term(du_t, dc_t)
                p_db += c_term(du_b, dc_b)
                p_dl += c_term(du_l, dc_l)
                p_dr += c_term(du_r, dc_r)
            if iw <= 0 or ih <= 0:
                p_dt = c_term(du_t, dc_t)
                p_db = c_term(du_b, dc_b)
                p_dl = c_term(du_l, dc_l)
                p_dr = c_term(du_r, dc_r)

        ct = min(pred.y - pred.h / 2, gt.y - gt.h / 2)
        cb = max(pred.y + pred.h / 2, gt.y + gt.h / 2)
        cl = min(pred.x - pred.w / 2, gt.x - gt.w / 2)
        cr = max(pred.x + pred.w / 2, gt.x + gt.w / 2)
        cw = cr - cl
        ch = cb - ct
        c = cw * cw + ch * ch

        dct_dy = 1.0 if pred_t < ab_gt.top else 0.0
        dct_dh = -0.5 if pred_t < ab_gt.top else 0.0
        dcb_dy = 1.0 if pred_b > ab_gt.bottom else 0.0
        dcb_dh = 0.5 if pred_b > ab_gt.bottom else 0.0
        dcl_dx = 1.0 if pred_l < ab_gt.left else 0.0
        dcl_dw = -0.5 if pred_l < ab_gt.left else 0.0
        dcr_dx = 1.0 if pred_r > ab_gt.right else 0.0
        dcr_dw = 0.5 if pred_r > ab_gt.right else 0.0

        dcw_dx = dcr_dx - dcl_dx
        dcw_dw = dcr_dw - dcl_dw
        dch_dy = dcb_dy - dct_dy
        dch_dh = dcb_dh - dct_dh

        p_dx = p_dl + p_dr
        p_dy = p_dt + p_db
        p_dw = p_dr - p_dl
        p_dh = p_db - p_dt

        if iou_type in (IouLoss.DIOU, IouLoss.CIOU):
            c_sq = c * c
            dist_dx = _div(2 * (gt.x - pred.x) * c - 2 * cw * dcw_dx * s, c_sq)
            dist_dy = _div(2 * (gt.y - pred.y) * c - 2 * ch * dch_dy * s, c_sq)
            dist_dw = _div(2 * cw * dcw_dw * s, c_sq)
            dist_dh = _div(2 * ch * dch_dh * s, c_sq)

            if iou_type is IouLoss.CIOU:
                ar_diff = math.atan(_div(gt.w, gt.h)) - math.atan(_div(pred.w, pred.h))
                ar_loss = _AR_SCALE * ar_diff * ar_diff
                alpha = _div(ar_loss, 1 - _div(inter, uni) + ar_loss + 0.000001)
                dist_dw += alpha * (2 * _AR_SCALE * ar_diff * pred.h)
                dist_dh += alpha * (-2 * _AR_SCALE * ar_diff * pred.w)

            if c > 0:
                p_dx += dist_dx
                p_dy += dist_dy
                p_dw += dist_dw
                p_dh += dist_dh
            if iw <= 0 or ih <= 0:
                p_dx = dist_dx
                p_dy = dist_dy
                p_dw = dist_dw
                p_dh = dist_dh

        return DxRep(p_dx, p_dy, p_dw, p_dh)


@dataclass(eq=False)
class Detection:
    """A detected box with per-class probabilities."""

    bbox: Box
    prob: list[float] = field(default_factory=list)
    objectness: float = 0.0
    sort_class: int = 0
    mask: list[float] | None = None
    uc: list[float] | None = None
    points: int = 0

    @property
    def classes(self) -> int:
        """Number of classes the detection carries probabilities for."""
        return len(self.prob)


@dataclass(frozen=True)
class MostProbDet:
    """A detection reduced to its most probable class."""

    bbox: Box
    cid: int
    prob: float


def nms_sort(
    dets: list[Detection],
    classes: int,
    thresh: float,
    nms_kind: NmsKind = NmsKind.GREEDY_NMS,
    beta: float = 0.6,
) -> None:
    """Suppress overlapping detections class by class, in place.

    For every class the list is sorted by that class's probability, highest
    first, and each lower-ranked detection overlapping a kept one by more than
    ``thresh`` has its probability for the class set to zero.
    """
    for k in range(classes):
        for det in dets:
            det.sort_class = k
        dets.sort(key=lambda det: det.prob[k], reverse=True)
        for i, kept in enumerate(dets):
            if abs(kept.prob[k]) < _FLT_EPSILON:
                continue
            a = kept.bbox
            for other in dets[i + 1 :]:
                b = other.bbox
                if nms_kind is NmsKind.GREEDY_NMS and Box.iou(a, b) > thresh:
                    other.prob[k] = 0.0
                elif nms_kind is NmsKind.DIOU_NMS and Box.diou(a, b, beta) > thresh:
                    other.prob[k] = 0.0


def get_most_prob_dets(dets: Sequence[Detection]) -> list[MostProbDet]:
    """Pick each detection's most probable class, dropping those with none above zero."""
    result = []
    for det in dets:
        cid = -1
        max_prob = 0.0
        for j, p in enumerate(det.prob):
            if p > max_prob:
                cid = j
                max_prob = p
        if cid != -1:
            result.append(MostProbDet(bbox=det.bbox, cid=cid, prob=max_prob))
    return result