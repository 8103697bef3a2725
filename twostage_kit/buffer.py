"""
Image <-> inference tensor conversion.

An engine declares its input through a `TensorSpec`: memory layout, channel
order and the numeric range 8-bit samples are mapped into. `encode` and
`decode` are exact inverses up to rounding (at most 1 LSB of error).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

import numpy as np

from .errors import DecodeFailure, InvalidInput
from .types import Size


LAYOUTS = ("NCHW", "NHWC")
CHANNEL_ORDERS = ("RGB", "BGR")


@dataclass(frozen=True)
class TensorSpec:
    layout: str = "NCHW"
    channel_order: str = "RGB"
    value_range: Tuple[float, float] = (0.0, 1.0)
    # Add a leading batch axis of size 1.
    batch: bool = True

    def __post_init__(self) -> None:
        if self.layout not in LAYOUTS:
            raise InvalidInput(f"layout must be one of {LAYOUTS}, got {self.layout!r}")
        if self.channel_order not in CHANNEL_ORDERS:
            raise InvalidInput(f"channel_order must be one of {CHANNEL_ORDERS}, got {self.channel_order!r}")
        lo, hi = self.value_range
        if not (np.isfinite(lo) and np.isfinite(hi)) or hi <= lo:
            raise InvalidInput(f"value_range must be (lo, hi) with hi > lo, got {self.value_range!r}")


# Detector canvases: RGB, 0..1. Classifier crops: RGB, -1..1.
DETECTOR_SPEC = TensorSpec()
CLASSIFIER_SPEC = TensorSpec(value_range=(-1.0, 1.0))


def as_bgr(image: np.ndarray) -> np.ndarray:
    """
    Validate a decoded image and return it as (H, W, 3) uint8 BGR.

    Grayscale and BGRA inputs are converted; the input array is never modified.
    """

    if image is None or not hasattr(image, "shape"):
        raise InvalidInput("image must be a NumPy array.")
    if image.ndim not in (2, 3) or (image.ndim == 3 and image.shape[2] not in (1, 3, 4)):
        raise InvalidInput(f"Expected image shape (H, W), (H, W, 3) or (H, W, 4), got {image.shape}")
    if image.shape[0] <= 0 or image.shape[1] <= 0:
        raise InvalidInput(f"Image has zero-sized dimensions: {image.shape}")
    if image.dtype != np.uint8:
        raise InvalidInput(f"Expected uint8 samples, got {image.dtype}")

    if image.ndim == 3 and image.shape[2] == 3:
        return image

    import cv2  # type: ignore

    if image.ndim == 2 or image.shape[2] == 1:
        return cv2.cvtColor(image, cv2.COLOR_GRAY2BGR)
    return cv2.cvtColor(image, cv2.COLOR_BGRA2BGR)


def encode(image: np.ndarray, target_size: Size, spec: TensorSpec = DETECTOR_SPEC) -> np.ndarray:
    """
    Convert a BGR uint8 image into a float32 tensor of `target_size` (width, height).

    Resizes with bilinear interpolation when the image is not already at target size.
    """

    img = as_bgr(image)
    tw, th = target_size
    if tw <= 0 or th <= 0:
        raise InvalidInput(f"target_size must be positive, got {target_size!r}")

    h, w = img.shape[:2]
    if (w, h) != (tw, th):
        import cv2  # type: ignore

        try:
            img = cv2.resize(img, (int(tw), int(th)), interpolation=cv2.INTER_LINEAR)
        except cv2.error as e:
            raise DecodeFailure(f"resize to {(tw, th)} failed: {e}") from e

    if spec.channel_order == "RGB":
        img = img[:, :, ::-1]

    lo, hi = spec.value_range
    blob = img.astype(np.float32) * np.float32((hi - lo) / 255.0) + np.float32(lo)

    if spec.layout == "NCHW":
        blob = np.transpose(blob, (2, 0, 1))
    if spec.batch:
        blob = blob[None, ...]
    return np.ascontiguousarray(blob, dtype=np.float32)


def decode(tensor: np.ndarray, spec: TensorSpec = DETECTOR_SPEC) -> np.ndarray:
    """
    Inverse of `encode`: map a tensor back to an (H, W, 3) uint8 BGR image.
    """

    t = np.asarray(tensor, dtype=np.float64)
    if spec.batch:
        if t.ndim != 4 or t.shape[0] != 1:
            raise DecodeFailure(f"Expected a batch of one, got shape {t.shape}")
        t = t[0]
    if t.ndim != 3:
        raise DecodeFailure(f"Expected a 3-D image tensor, got shape {t.shape}")
    if spec.layout == "NCHW":
        t = np.transpose(t, (1, 2, 0))
    if t.shape[2] != 3:
        raise DecodeFailure(f"Expected 3 channels, got shape {t.shape}")

    lo, hi = spec.value_range
    samples = np.clip(np.rint((t - lo) * (255.0 / (hi - lo))), 0, 255).astype(np.uint8)
    if spec.channel_order == "RGB":
        samples = samples[:, :, ::-1]
    return np.ascontiguousarray(samples)
