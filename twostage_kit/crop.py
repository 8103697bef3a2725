"""
Region cropping and coordinate-space reconciliation.

Every box in the pipeline is top-left origin, in pixels of some logical image
size. A `CoordinateSpace` names that size and its vertical origin; boxes are
mapped onto the actual pixel buffer with `map_box_to_pixels` before any pixel
is read or drawn. Both the cropper and the overlay renderer go through it.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

from .errors import DecodeFailure, EmptyRegion, InvalidInput
from .types import Box, Size


TOP_LEFT = "top_left"
BOTTOM_LEFT = "bottom_left"
ORIGINS = (TOP_LEFT, BOTTOM_LEFT)

# Absorbs float noise so 449.9999999 still snaps to pixel 450.
_SNAP_EPS = 1e-6


@dataclass(frozen=True)
class CoordinateSpace:
    """
    Logical space a box was computed in.

    width/height: the image size the box coordinates assume (e.g. a display-scaled
    preview); origin: where y == 0 lies.
    """

    width: float
    height: float
    origin: str = TOP_LEFT

    def __post_init__(self) -> None:
        if not (self.width > 0 and self.height > 0):
            raise InvalidInput(f"CoordinateSpace needs positive dimensions, got {(self.width, self.height)}")
        if self.origin not in ORIGINS:
            raise InvalidInput(f"origin must be one of {ORIGINS}, got {self.origin!r}")

    @classmethod
    def of_image(cls, image: np.ndarray, origin: str = TOP_LEFT) -> "CoordinateSpace":
        h, w = image.shape[:2]
        return cls(width=float(w), height=float(h), origin=origin)


def flip_vertical(box: Box, height: float) -> Box:
    """Convert a box between top-left and bottom-left origin in an image of `height`."""
    return Box(x=box.x, y=height - box.y - box.height, width=box.width, height=box.height)


def map_box_to_pixels(box: Box, space: Optional[CoordinateSpace], actual_size: Size) -> Box:
    """
    Express `box` in top-left-origin pixels of a buffer of `actual_size` (width, height).

    Rescales by actual/assumed size first, then flips the vertical axis when the
    source space is bottom-left origin.
    """

    aw, ah = actual_size
    if space is None:
        return box

    sx = aw / space.width
    sy = ah / space.height
    mapped = Box(x=box.x * sx, y=box.y * sy, width=box.width * sx, height=box.height * sy)
    if space.origin == BOTTOM_LEFT:
        mapped = flip_vertical(mapped, ah)
    return mapped


def pixel_rect(box: Box, actual_size: Size) -> Tuple[int, int, int, int]:
    """
    Smallest integer xyxy rect enclosing `box`, clamped to the buffer.

    Raises EmptyRegion when nothing of the box lies inside the image.
    """

    w, h = actual_size
    x0, y0, x1, y1 = box.as_xyxy()
    if not all(math.isfinite(v) for v in (x0, y0, x1, y1)):
        raise EmptyRegion(f"Non-finite box: {box}")

    x0 = max(0, min(int(math.floor(x0 + _SNAP_EPS)), w))
    y0 = max(0, min(int(math.floor(y0 + _SNAP_EPS)), h))
    x1 = max(0, min(int(math.ceil(x1 - _SNAP_EPS)), w))
    y1 = max(0, min(int(math.ceil(y1 - _SNAP_EPS)), h))
    if x1 <= x0 or y1 <= y0:
        raise EmptyRegion(f"Empty crop after clamping: {(x0, y0, x1, y1)} from {box}")
    return x0, y0, x1, y1


def resize_high_quality(image: np.ndarray, size: Size) -> np.ndarray:
    """
    Resize to (width, height): area averaging when shrinking, bicubic when enlarging.
    """

    import cv2  # type: ignore

    tw, th = size
    h, w = image.shape[:2]
    if (w, h) == (tw, th):
        return image.copy()
    shrinking = tw <= w and th <= h
    interpolation = cv2.INTER_AREA if shrinking else cv2.INTER_CUBIC
    try:
        return cv2.resize(image, (int(tw), int(th)), interpolation=interpolation)
    except cv2.error as e:
        raise DecodeFailure(f"resize {(w, h)} -> {(tw, th)} failed: {e}") from e


def crop_region(
    image: np.ndarray,
    box: Box,
    source_space: Optional[CoordinateSpace] = None,
    *,
    output_size: Size = (480, 480),
) -> np.ndarray:
    """
    Crop `box` out of `image` and resize it to the classifier's input size.

    Args:
        image: (H, W, C) pixel buffer to crop from (not modified)
        box: region, in `source_space` coordinates
        source_space: space the box was computed in; None means `image`'s own
            pixel space, top-left origin
        output_size: (width, height) of the returned crop
    """

    if image is None or not hasattr(image, "shape") or image.ndim not in (2, 3):
        raise InvalidInput(f"Expected image shape (H, W) or (H, W, C), got {getattr(image, 'shape', None)}")
    h, w = image.shape[:2]
    if w <= 0 or h <= 0:
        raise InvalidInput(f"Image has zero-sized dimensions: {image.shape}")
    if output_size[0] <= 0 or output_size[1] <= 0:
        raise InvalidInput(f"output_size must be positive, got {output_size!r}")

    mapped = map_box_to_pixels(box, source_space, (w, h))
    x0, y0, x1, y1 = pixel_rect(mapped, (w, h))
    return resize_high_quality(image[y0:y1, x0:x1], output_size)
