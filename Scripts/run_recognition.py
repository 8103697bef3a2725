import argparse
import json
import logging
from pathlib import Path

import cv2

from twostage_kit import load_pipeline, load_pipeline_config
from twostage_kit.config import PipelineConfig, config_from_dict


def main() -> int:
    parser = argparse.ArgumentParser(description="Detect objects in a photo, classify each one and draw the results.")
    parser.add_argument("--image", required=True, help="Path to an input image.")
    parser.add_argument("--detector", default="Models/detector.onnx", help="Path to the detector ONNX model.")
    parser.add_argument("--classifier", default="Models/classifier.onnx", help="Path to the classifier ONNX model.")
    parser.add_argument("--labels", default="Models/labels.json", help="Classifier labels (JSON list or names: mapping).")
    parser.add_argument("--config", default=None, help="Optional pipeline config JSON.")
    parser.add_argument("--conf", type=float, default=None, help="Override the detection confidence threshold.")
    parser.add_argument("--top-k", type=int, default=None, help="Override the number of ranked classes per object.")
    parser.add_argument(
        "--detect-max-side",
        type=int,
        default=0,
        help="Run detection on a copy downscaled to this longest side and crop from the full image (0 = off).",
    )
    parser.add_argument(
        "--onnx-providers",
        default=None,
        help='Comma-separated ORT providers, e.g. "CUDAExecutionProvider,CPUExecutionProvider".',
    )
    parser.add_argument("--out", default=None, help="Optional output path for the annotated image.")
    parser.add_argument("--json", default=None, help="Optional output path for the results as JSON.")
    parser.add_argument("--show", action="store_true", help="Show a window with the annotated image.")
    parser.add_argument("--log-level", default="INFO", help="Logging level (DEBUG, INFO, WARNING, ...).")
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = load_pipeline_config(Path(args.config)) if args.config else PipelineConfig()
    overrides = {}
    if args.conf is not None:
        overrides["conf_threshold"] = args.conf
    if args.top_k is not None:
        overrides["top_k"] = args.top_k
    if overrides:
        config = config_from_dict(overrides, base=config)

    if args.detect_max_side < 0:
        raise ValueError("--detect-max-side must be >= 0")
    onnx_providers = None
    if args.onnx_providers:
        onnx_providers = [p.strip() for p in str(args.onnx_providers).split(",") if p.strip()]

    img = cv2.imread(args.image)
    if img is None:
        raise FileNotFoundError(f"Could not read image at path: {args.image}")

    detect_img = img
    crop_source = None
    h, w = img.shape[:2]
    if args.detect_max_side and max(w, h) > args.detect_max_side:
        r = args.detect_max_side / max(w, h)
        size = (max(1, int(round(w * r))), max(1, int(round(h * r))))
        detect_img = cv2.resize(img, size, interpolation=cv2.INTER_AREA)
        crop_source = img

    with load_pipeline(
        args.detector,
        args.classifier,
        args.labels,
        config=config,
        onnx_providers=onnx_providers,
    ) as pipeline:
        result = pipeline(detect_img, crop_source=crop_source)

    if args.out and result.annotated is not None:
        ok = cv2.imwrite(args.out, result.annotated)
        if not ok:
            raise RuntimeError(f"Failed to write output image: {args.out}")

    if args.json:
        Path(args.json).write_text(json.dumps(result.to_dict(), indent=2), encoding="utf-8")

    if args.show and result.annotated is not None:
        cv2.imshow("recognition", result.annotated)
        cv2.waitKey(0)
        cv2.destroyAllWindows()

    for key, ranked in result.to_dict()["classifications"].items():
        print(key, ", ".join(f"{label} {p:.2f}" for label, p in ranked))
    for name, value in result.timing.as_display().items():
        print(f"{name}: {value}")
    if result.error:
        print(f"error: {result.error}")

    return 0 if result.error is None else 1


if __name__ == "__main__":
    raise SystemExit(main())
