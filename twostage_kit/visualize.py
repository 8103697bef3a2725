from __future__ import annotations

from typing import Mapping, Optional, Sequence, Tuple

import numpy as np

from .buffer import as_bgr
from .crop import CoordinateSpace, map_box_to_pixels
from .types import Box, ClassificationOutcome, DetectedRegion, Size


BOX_COLOR: Tuple[int, int, int] = (0, 0, 255)  # red, BGR
TEXT_COLOR: Tuple[int, int, int] = (255, 255, 255)


def caption_for(outcome: Optional[ClassificationOutcome]) -> str:
    """
    "label (confidence)" using the best-ranked class, e.g. "apple (0.50)".
    """

    best = outcome.best if outcome is not None else None
    if best is None:
        return "Unknown (0.00)"
    label, prob = best
    return f"{label} ({prob:.2f})"


def render_overlay(
    image_bgr: np.ndarray,
    regions: Sequence[DetectedRegion],
    outcomes: Mapping[int, ClassificationOutcome],
    *,
    source_space: Optional[CoordinateSpace] = None,
    color: Tuple[int, int, int] = BOX_COLOR,
    box_thickness: int = 3,
    font_scale: float = 0.5,
    font_thickness: int = 1,
) -> np.ndarray:
    """
    Draw region boxes + classification captions on a copy of the image.

    Args:
        image_bgr: source image (H, W, 3) BGR; never modified.
        regions: detected regions, boxes in `source_space` coordinates.
        outcomes: classification outcomes keyed by region index.
        source_space: space the boxes were computed in; None means the image's
            own pixel space with top-left origin. Boxes go through the same
            mapping the cropper uses.
    """

    try:
        import cv2  # type: ignore
    except Exception as e:  # pragma: no cover
        raise ImportError("OpenCV is required for render_overlay(). Install with `pip install opencv-python`.") from e

    out = as_bgr(image_bgr).copy()
    size = (out.shape[1], out.shape[0])

    for region in regions:
        x1, y1, x2, y2 = _pixel_corners(map_box_to_pixels(region.box, source_space, size), size)
        cv2.rectangle(out, (x1, y1), (x2, y2), color, thickness=box_thickness)
        draw_caption(
            out,
            caption_for(outcomes.get(region.index)),
            (x1, y1),
            color,
            font_scale=font_scale,
            thickness=font_thickness,
        )

    return out


def _pixel_corners(box: Box, size: Size) -> Tuple[int, int, int, int]:
    w, h = size
    x1, y1, x2, y2 = (int(round(v)) for v in box.as_xyxy())
    return (
        min(max(x1, 0), w - 1),
        min(max(y1, 0), h - 1),
        min(max(x2, 0), w - 1),
        min(max(y2, 0), h - 1),
    )


def draw_caption(
    canvas: np.ndarray,
    text: str,
    anchor: Tuple[int, int],
    color: Tuple[int, int, int],
    *,
    font_scale: float = 0.5,
    thickness: int = 1,
) -> None:
    """
    Draw `text` on a filled tag whose left edge starts at `anchor` (a box's top-left corner).

    The tag sits above the anchor when it fits in the image, otherwise just
    below it, inside the box. Draws in place.
    """

    import cv2  # type: ignore

    font = cv2.FONT_HERSHEY_SIMPLEX
    h, w = canvas.shape[:2]
    x, y = anchor
    (text_w, text_h), baseline = cv2.getTextSize(text, font, font_scale, thickness)
    tag_h = text_h + baseline
    top = y - tag_h if y >= tag_h else y

    cv2.rectangle(canvas, (x, top), (min(x + text_w, w - 1), min(top + tag_h, h - 1)), color, thickness=-1)
    cv2.putText(
        canvas,
        text,
        (x, min(top + text_h, h - 1)),
        font,
        font_scale,
        TEXT_COLOR,
        thickness=thickness,
        lineType=cv2.LINE_AA,
    )
