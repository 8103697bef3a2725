import unittest

import numpy as np

from twostage_kit.crop import (
    BOTTOM_LEFT,
    TOP_LEFT,
    CoordinateSpace,
    crop_region,
    map_box_to_pixels,
    pixel_rect,
    resize_high_quality,
)
from twostage_kit.errors import EmptyRegion, InvalidInput
from twostage_kit.types import Box


RED = (0, 0, 255)
GREEN = (0, 255, 0)
BLUE = (255, 0, 0)
WHITE = (255, 255, 255)


def _corner_image(w: int = 100, h: int = 80) -> np.ndarray:
    """Each 10x8 corner patch has its own colour; the rest is black."""
    image = np.zeros((h, w, 3), dtype=np.uint8)
    image[:8, :10] = RED  # top-left
    image[:8, w - 10 :] = GREEN  # top-right
    image[h - 8 :, :10] = BLUE  # bottom-left
    image[h - 8 :, w - 10 :] = WHITE  # bottom-right
    return image


class TestMapBoxToPixels(unittest.TestCase):
    def test_none_space_is_identity(self) -> None:
        box = Box(1.0, 2.0, 3.0, 4.0)
        self.assertEqual(map_box_to_pixels(box, None, (100, 80)), box)

    def test_preview_space_is_rescaled(self) -> None:
        space = CoordinateSpace(50, 40)
        mapped = map_box_to_pixels(Box(5, 4, 10, 8), space, (100, 80))
        self.assertEqual(mapped.as_xywh(), (10.0, 8.0, 20.0, 16.0))

    def test_bottom_left_space_is_flipped(self) -> None:
        space = CoordinateSpace(200, 160, origin=BOTTOM_LEFT)
        mapped = map_box_to_pixels(Box(0, 0, 20, 16), space, (100, 80))
        self.assertEqual(mapped.as_xywh(), (0.0, 72.0, 10.0, 8.0))

    def test_invalid_space_rejected(self) -> None:
        with self.assertRaises(InvalidInput):
            CoordinateSpace(0, 10)
        with self.assertRaises(InvalidInput):
            CoordinateSpace(10, 10, origin="center")


class TestCropRegion(unittest.TestCase):
    def _assert_uniform(self, crop: np.ndarray, color) -> None:
        self.assertTrue(np.all(crop == np.array(color, dtype=np.uint8)), msg=f"expected {color}")

    def test_four_corners_top_left_origin(self) -> None:
        image = _corner_image()
        space = CoordinateSpace.of_image(image, TOP_LEFT)
        cases = [
            (Box(0, 0, 10, 8), RED),
            (Box(90, 0, 10, 8), GREEN),
            (Box(0, 72, 10, 8), BLUE),
            (Box(90, 72, 10, 8), WHITE),
        ]
        for box, color in cases:
            self._assert_uniform(crop_region(image, box, space, output_size=(4, 4)), color)

    def test_four_corners_bottom_left_origin(self) -> None:
        image = _corner_image()
        space = CoordinateSpace.of_image(image, BOTTOM_LEFT)
        cases = [
            (Box(0, 0, 10, 8), BLUE),
            (Box(90, 0, 10, 8), WHITE),
            (Box(0, 72, 10, 8), RED),
            (Box(90, 72, 10, 8), GREEN),
        ]
        for box, color in cases:
            self._assert_uniform(crop_region(image, box, space, output_size=(4, 4)), color)

    def test_corners_from_half_size_preview(self) -> None:
        image = _corner_image()
        preview = CoordinateSpace(50, 40)
        crop = crop_region(image, Box(45, 36, 5, 4), preview, output_size=(4, 4))
        self._assert_uniform(crop, WHITE)

    def test_whole_image_box_equals_resize(self) -> None:
        rng = np.random.default_rng(3)
        image = rng.integers(0, 256, size=(60, 90, 3), dtype=np.uint8)
        for size in [(32, 32), (480, 480)]:
            crop = crop_region(image, Box(0, 0, 90, 60), output_size=size)
            self.assertTrue(np.array_equal(crop, resize_high_quality(image, size)))

    def test_output_size(self) -> None:
        crop = crop_region(_corner_image(), Box(10, 10, 30, 20))
        self.assertEqual(crop.shape, (480, 480, 3))

    def test_input_not_modified(self) -> None:
        image = _corner_image()
        before = image.copy()
        crop = crop_region(image, Box(0, 0, 100, 80), output_size=(100, 80))
        crop[...] = 0
        self.assertTrue(np.array_equal(image, before))

    def test_empty_regions_rejected(self) -> None:
        image = _corner_image()
        for box in [
            Box(200, 200, 10, 10),
            Box(10, 10, 0, 10),
            Box(-50, -50, 20, 20),
            Box(float("nan"), 0, 10, 10),
        ]:
            with self.assertRaises(EmptyRegion):
                crop_region(image, box, output_size=(8, 8))


class TestPixelRect(unittest.TestCase):
    def test_snaps_outward_and_clamps(self) -> None:
        self.assertEqual(pixel_rect(Box(10.2, 5.5, 20.0, 10.0), (100, 80)), (10, 5, 31, 16))
        self.assertEqual(pixel_rect(Box(-5, -5, 200, 200), (100, 80)), (0, 0, 100, 80))

    def test_float_noise_snaps_to_nearest_pixel(self) -> None:
        self.assertEqual(pixel_rect(Box(9.9999999999, 0, 10.0000000001, 8), (100, 80)), (10, 0, 20, 8))


if __name__ == "__main__":
    unittest.main()
