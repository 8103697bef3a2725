from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

import numpy as np

from .errors import DecodeFailure, InvalidInput, InvalidState
from .types import Size


# Padding value for the non-content border of the detector canvas, same value in
# every channel. YOLO-family detectors are trained on 114-grey letterbox borders.
LETTERBOX_FILL: Tuple[int, int, int] = (114, 114, 114)


def _check_size(size: Size, name: str) -> Tuple[int, int]:
    try:
        w, h = size
    except (TypeError, ValueError) as e:
        raise InvalidInput(f"{name} must be a (width, height) pair, got {size!r}") from e
    if not np.isfinite(w) or not np.isfinite(h) or w <= 0 or h <= 0:
        raise InvalidInput(f"{name} must have positive dimensions, got {size!r}")
    if w != int(w) or h != int(h):
        raise InvalidInput(f"{name} must be whole pixels, got {size!r}")
    return int(w), int(h)


@dataclass(frozen=True)
class LetterboxTransform:
    """
    Uniform scale + centering offset from an original image onto a fixed canvas.

    canvas = original * scale + (content_offset_x, content_offset_y)
    """

    scale: float
    canvas_size: Size
    content_offset_x: float
    content_offset_y: float
    original_size: Size

    @property
    def content_rect(self) -> Tuple[float, float, float, float]:
        """(x, y, w, h) of the scaled image inside the canvas."""
        ow, oh = self.original_size
        return self.content_offset_x, self.content_offset_y, ow * self.scale, oh * self.scale

    def _require_valid(self) -> None:
        if not self.scale > 0:
            raise InvalidState(f"letterbox scale must be > 0, got {self.scale}")

    def canvas_to_original(self, points: np.ndarray) -> np.ndarray:
        """Map (..., 2) canvas-pixel points back to original-image pixels."""
        self._require_valid()
        pts = np.asarray(points, dtype=np.float64)
        offset = np.array([self.content_offset_x, self.content_offset_y])
        return (pts - offset) / self.scale

    def original_to_canvas(self, points: np.ndarray) -> np.ndarray:
        """Map (..., 2) original-image points onto the canvas."""
        self._require_valid()
        pts = np.asarray(points, dtype=np.float64)
        offset = np.array([self.content_offset_x, self.content_offset_y])
        return pts * self.scale + offset


def compute_letterbox(original_size: Size, canvas_size: Size = (640, 640)) -> LetterboxTransform:
    """
    Compute the scale/offset that fits `original_size` inside `canvas_size` without distortion.

    Sizes are (width, height). Raises InvalidInput for zero or negative dimensions.
    """

    ow, oh = _check_size(original_size, "original_size")
    cw, ch = _check_size(canvas_size, "canvas_size")

    r = min(cw / ow, ch / oh)
    dx = (cw - ow * r) / 2.0
    dy = (ch - oh * r) / 2.0
    return LetterboxTransform(
        scale=r,
        canvas_size=(cw, ch),
        content_offset_x=dx,
        content_offset_y=dy,
        original_size=(ow, oh),
    )


def letterbox(
    image: np.ndarray,
    transform: LetterboxTransform,
    color: Tuple[int, int, int] = LETTERBOX_FILL,
) -> np.ndarray:
    """
    Render `image` onto the canvas described by `transform`.

    The content is resized with bilinear interpolation to round(original * scale)
    and padded with `color`. Integer placement means the drawn content may sit up
    to half a pixel from the exact float offset; boxes are always restored with
    the exact offsets stored on the transform.
    """

    try:
        import cv2  # type: ignore
    except Exception as e:  # pragma: no cover
        raise ImportError("OpenCV is required for letterbox(). Install with `pip install opencv-python`.") from e

    if image is None or not hasattr(image, "shape") or image.ndim not in (2, 3):
        raise InvalidInput(f"Expected image shape (H, W) or (H, W, C), got {getattr(image, 'shape', None)}")

    h, w = image.shape[:2]
    if (w, h) != tuple(transform.original_size):
        raise InvalidInput(f"Image size {(w, h)} does not match transform original_size {transform.original_size}")
    transform._require_valid()

    new_w, new_h = transform.canvas_size
    resized_w = min(new_w, max(1, int(round(w * transform.scale))))
    resized_h = min(new_h, max(1, int(round(h * transform.scale))))
    dw = (new_w - resized_w) / 2
    dh = (new_h - resized_h) / 2

    top, bottom = int(round(dh - 0.1)), int(round(dh + 0.1))
    left, right = int(round(dw - 0.1)), int(round(dw + 0.1))
    try:
        if (w, h) != (resized_w, resized_h):
            image = cv2.resize(image, (resized_w, resized_h), interpolation=cv2.INTER_LINEAR)
        return cv2.copyMakeBorder(image, top, bottom, left, right, cv2.BORDER_CONSTANT, value=color)
    except cv2.error as e:
        raise DecodeFailure(f"letterbox to {transform.canvas_size} failed: {e}") from e
