import json
import tempfile
import unittest
from pathlib import Path

from twostage_kit.config import PipelineConfig, config_from_dict, load_pipeline_config
from twostage_kit.metadata import load_class_names


class _TempDirMixin:
    def _write(self, name: str, text: str) -> Path:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        path = Path(tmpdir.name) / name
        path.write_text(text, encoding="utf-8")
        return path


class TestPipelineConfig(_TempDirMixin, unittest.TestCase):
    def test_defaults(self) -> None:
        cfg = PipelineConfig()
        self.assertEqual(cfg.canvas, (640, 640))
        self.assertEqual(cfg.classifier_input, (480, 480))
        self.assertEqual(cfg.conf_threshold, 0.25)
        self.assertEqual(cfg.top_k, 5)
        self.assertEqual(cfg.detector_spec().value_range, (0.0, 1.0))
        self.assertEqual(cfg.classifier_spec().value_range, (-1.0, 1.0))
        self.assertEqual(cfg.coordinator_config().input_size, (480, 480))
        self.assertFalse(cfg.decoder_config().apply_nms)

    def test_load_ok(self) -> None:
        path = self._write(
            "pipeline.json",
            json.dumps(
                {
                    "canvas_size": 320,
                    "conf_threshold": 0.4,
                    "top_k": 3,
                    "classify_timeout_s": None,
                    "box_units": "pixels",
                    "apply_nms": True,
                    "classifier_value_range": [0, 1],
                }
            ),
        )
        cfg = load_pipeline_config(path)
        self.assertIsInstance(cfg, PipelineConfig)
        self.assertEqual(cfg.canvas, (320, 320))
        self.assertEqual(cfg.conf_threshold, 0.4)
        self.assertEqual(cfg.top_k, 3)
        self.assertIsNone(cfg.classify_timeout_s)
        self.assertEqual(cfg.decoder_config().box_units, "pixels")
        self.assertTrue(cfg.decoder_config().apply_nms)
        self.assertEqual(cfg.classifier_spec().value_range, (0.0, 1.0))
        self.assertIsNone(cfg.coordinator_config().timeout_s)

    def test_unknown_keys_rejected(self) -> None:
        path = self._write("pipeline.json", json.dumps({"top_k": 3, "extra": 123}))
        with self.assertRaises(ValueError):
            load_pipeline_config(path)

    def test_invalid_values_rejected(self) -> None:
        for payload in [
            {"conf_threshold": 1.5},
            {"top_k": 0},
            {"top_k": 2.5},
            {"max_concurrency": True},
            {"box_form": "polygon"},
            {"detect_timeout_s": 0},
            {"detector_value_range": [1, 0]},
            {"apply_nms": "yes"},
        ]:
            with self.assertRaises(ValueError, msg=str(payload)):
                config_from_dict(payload)

    def test_overrides_keep_base(self) -> None:
        base = PipelineConfig(top_k=3)
        cfg = config_from_dict({"conf_threshold": 0.5}, base=base)
        self.assertEqual(cfg.top_k, 3)
        self.assertEqual(cfg.conf_threshold, 0.5)

    def test_missing_and_malformed_files(self) -> None:
        with self.assertRaises(FileNotFoundError):
            load_pipeline_config(Path("/nonexistent/pipeline.json"))
        with self.assertRaises(ValueError):
            load_pipeline_config(self._write("bad.json", "{not json"))
        with self.assertRaises(ValueError):
            load_pipeline_config(self._write("list.json", "[1, 2]"))


class TestLoadClassNames(_TempDirMixin, unittest.TestCase):
    def test_json_list(self) -> None:
        path = self._write("labels.json", json.dumps(["apple", "banana", "pear"]))
        self.assertEqual(load_class_names(path), ["apple", "banana", "pear"])

    def test_json_mapping(self) -> None:
        path = self._write("labels.json", json.dumps({"1": "banana", "0": "apple"}))
        self.assertEqual(load_class_names(path), ["apple", "banana"])

    def test_names_block(self) -> None:
        text = "# classifier metadata\nimgsz: 480\nnames:\n  0: apple\n  1: 'banana'\n  2: \"pear\"\n"
        path = self._write("metadata.yaml", text)
        self.assertEqual(load_class_names(path), ["apple", "banana", "pear"])

    def test_gaps_rejected(self) -> None:
        path = self._write("labels.json", json.dumps({"0": "apple", "2": "pear"}))
        with self.assertRaises(ValueError):
            load_class_names(path)

    def test_empty_rejected(self) -> None:
        with self.assertRaises(ValueError):
            load_class_names(self._write("labels.json", "[]"))
        with self.assertRaises(ValueError):
            load_class_names(self._write("metadata.yaml", "imgsz: 480\n"))


if __name__ == "__main__":
    unittest.main()
