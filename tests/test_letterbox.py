import unittest

import numpy as np

from twostage_kit.errors import InvalidInput, InvalidState
from twostage_kit.letterbox import LETTERBOX_FILL, LetterboxTransform, compute_letterbox, letterbox


class TestComputeLetterbox(unittest.TestCase):
    def test_landscape_photo_into_square_canvas(self) -> None:
        t = compute_letterbox((1000, 800), (640, 640))
        self.assertAlmostEqual(t.scale, 0.64)
        self.assertAlmostEqual(t.content_offset_x, 0.0)
        self.assertAlmostEqual(t.content_offset_y, 64.0)
        x, y, w, h = t.content_rect
        self.assertAlmostEqual(w, 640.0)
        self.assertAlmostEqual(h, 512.0)

    def test_portrait_photo_centers_horizontally(self) -> None:
        t = compute_letterbox((300, 600), (640, 640))
        self.assertAlmostEqual(t.scale, 640 / 600)
        self.assertAlmostEqual(t.content_offset_x, (640 - 300 * 640 / 600) / 2)
        self.assertAlmostEqual(t.content_offset_y, 0.0)

    def test_corners_round_trip(self) -> None:
        for size in [(1000, 800), (800, 1000), (640, 640), (4032, 3024), (1, 1), (37, 1013)]:
            t = compute_letterbox(size, (640, 640))
            w, h = size
            corners = np.array([[0, 0], [w, 0], [0, h], [w, h]], dtype=np.float64)
            canvas = t.original_to_canvas(corners)
            back = t.canvas_to_original(canvas)
            self.assertTrue(np.allclose(back, corners, atol=1e-6), msg=str(size))

    def test_content_corners_land_on_canvas_rect(self) -> None:
        t = compute_letterbox((1000, 800), (640, 640))
        canvas = t.original_to_canvas(np.array([[0, 0], [1000, 800]]))
        self.assertTrue(np.allclose(canvas, [[0, 64], [640, 576]]))

    def test_invalid_sizes_rejected(self) -> None:
        for bad in [(0, 100), (100, 0), (-5, 10), (10, -1)]:
            with self.assertRaises(InvalidInput):
                compute_letterbox(bad, (640, 640))
            with self.assertRaises(InvalidInput):
                compute_letterbox((640, 480), bad)

    def test_fractional_sizes_rejected(self) -> None:
        with self.assertRaises(InvalidInput):
            compute_letterbox((1000.7, 800), (640, 640))
        with self.assertRaises(InvalidInput):
            compute_letterbox((1000, 800), (640, 639.5))
        t = compute_letterbox((1000.0, np.int64(800)), (640, 640))
        self.assertEqual(t.original_size, (1000, 800))

    def test_invalid_input_is_a_value_error(self) -> None:
        with self.assertRaises(ValueError):
            compute_letterbox((0, 0))

    def test_zero_scale_transform_rejected(self) -> None:
        t = LetterboxTransform(
            scale=0.0,
            canvas_size=(640, 640),
            content_offset_x=0.0,
            content_offset_y=0.0,
            original_size=(10, 10),
        )
        with self.assertRaises(InvalidState):
            t.canvas_to_original(np.array([[1.0, 1.0]]))


class TestLetterboxRender(unittest.TestCase):
    def test_canvas_shape_and_fill(self) -> None:
        image = np.zeros((800, 1000, 3), dtype=np.uint8)
        t = compute_letterbox((1000, 800), (640, 640))
        canvas = letterbox(image, t)
        self.assertEqual(canvas.shape, (640, 640, 3))
        self.assertEqual(tuple(canvas[0, 0]), LETTERBOX_FILL)
        self.assertEqual(tuple(canvas[639, 639]), LETTERBOX_FILL)
        self.assertEqual(tuple(canvas[320, 320]), (0, 0, 0))
        # Content occupies rows 64..575.
        self.assertEqual(tuple(canvas[63, 320]), LETTERBOX_FILL)
        self.assertEqual(tuple(canvas[64, 320]), (0, 0, 0))
        self.assertEqual(tuple(canvas[575, 320]), (0, 0, 0))
        self.assertEqual(tuple(canvas[576, 320]), LETTERBOX_FILL)

    def test_input_not_modified(self) -> None:
        image = np.full((50, 80, 3), 7, dtype=np.uint8)
        before = image.copy()
        letterbox(image, compute_letterbox((80, 50), (64, 64)))
        self.assertTrue(np.array_equal(image, before))

    def test_size_mismatch_rejected(self) -> None:
        image = np.zeros((10, 20, 3), dtype=np.uint8)
        with self.assertRaises(InvalidInput):
            letterbox(image, compute_letterbox((30, 20), (64, 64)))


if __name__ == "__main__":
    unittest.main()
