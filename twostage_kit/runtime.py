from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple, Union

import numpy as np

from .buffer import as_bgr, encode
from .classify import ClassificationCoordinator, ClassifyFn, EnginePool
from .config import PipelineConfig
from .crop import CoordinateSpace
from .postprocess import DetectionDecoder
from .errors import InferenceFailure, TwoStageError
from .letterbox import compute_letterbox, letterbox
from .types import DetectedRegion, RecognitionResult, RecognitionStatus, TimingReport
from .visualize import render_overlay

logger = logging.getLogger(__name__)


PathLike = Union[str, Path]
# (tensor, iou_threshold, confidence_threshold) -> (boxes, scores)
DetectFn = Callable[[np.ndarray, float, float], Tuple[np.ndarray, np.ndarray]]


def find_project_root(
    start: Optional[PathLike] = None,
    markers: Sequence[str] = ("pyproject.toml", ".git"),
) -> Path:
    """
    Best-effort project root discovery, used to resolve relative model paths.
    """

    p = Path(start) if start is not None else Path.cwd()
    p = p.resolve()

    # If a file is provided, start from its directory.
    if p.is_file():
        p = p.parent

    for parent in (p, *p.parents):
        for m in markers:
            if (parent / m).exists():
                return parent
    return p


def resolve_path(path: PathLike, root: Optional[PathLike] = "auto") -> Path:
    """
    Resolve `path` to an absolute Path.

    - Absolute paths are returned as-is.
    - Relative paths are resolved against `root` if provided, the project root otherwise.
    """

    p = Path(path)
    if p.is_absolute():
        return p

    if root == "auto" or root is None:
        base = find_project_root()
    else:
        base = Path(root).resolve()

    return (base / p).resolve()


def _elapsed_ms(t0: float) -> float:
    return (time.perf_counter() - t0) * 1000.0


class TwoStagePipeline:
    """
    Detect -> decode -> classify every region -> render.

    Engines are passed in explicitly, so tests can substitute plain functions:
    - detect_fn(tensor, iou_threshold, confidence_threshold) -> (boxes, scores)
    - classify_fn(tensor) -> (label, {class: probability})

    Images are (H, W, 3) uint8 BGR arrays and are never modified.
    """

    def __init__(
        self,
        detect_fn: DetectFn,
        classify_fn: ClassifyFn,
        *,
        config: PipelineConfig = PipelineConfig(),
    ):
        self._detect_fn = detect_fn
        self.config = config
        self.decoder = DetectionDecoder(config.decoder_config())
        self.detector_spec = config.detector_spec()
        self.coordinator = ClassificationCoordinator(
            classify_fn,
            tensor_spec=config.classifier_spec(),
            config=config.coordinator_config(),
        )
        self._detector = EnginePool(1, "detect")
        self._current: Optional[asyncio.Task] = None
        self.latest: Optional[RecognitionResult] = None

    async def detect(self, image: np.ndarray) -> Tuple[List[DetectedRegion], float]:
        """
        Letterbox, run the detector and decode its output.

        Returns (regions, detection_ms). Any failure raises; callers decide
        whether that aborts the run.
        """

        t0 = time.perf_counter()
        img = as_bgr(image)
        h, w = img.shape[:2]
        transform = compute_letterbox((w, h), self.config.canvas)
        canvas = letterbox(img, transform)
        blob = encode(canvas, self.config.canvas, self.detector_spec)

        output = await self._detector.call(
            self._detect_fn,
            blob,
            self.config.iou_threshold,
            self.config.conf_threshold,
            timeout_s=self.config.detect_timeout_s,
            name="detector",
        )
        try:
            raw_boxes, raw_scores = output
        except (TypeError, ValueError) as e:
            raise InferenceFailure(f"detector must return (boxes, scores), got {type(output).__name__}") from e

        regions = self.decoder.decode(raw_boxes, raw_scores, transform, (w, h))
        return regions, _elapsed_ms(t0)

    async def run(self, image: np.ndarray, *, crop_source: Optional[np.ndarray] = None) -> RecognitionResult:
        """
        Full two-stage run on one image.

        Never raises for bad input or engine failures: a malformed image or a
        failed detector yields a `detection_failed` result carrying the error.

        Args:
            image: image the detector sees; regions are expressed in its pixels
            crop_source: optional higher-resolution buffer of the same photo to
                crop regions from; boxes are rescaled onto it
        """

        t0 = time.perf_counter()
        try:
            img = as_bgr(image)
            source = as_bgr(crop_source) if crop_source is not None else img
            regions, detection_ms = await self.detect(img)
        except TwoStageError as e:
            detection_ms = _elapsed_ms(t0)
            logger.error("Detection failed (%s): %s", e.kind, e)
            return RecognitionResult(
                status=RecognitionStatus.DETECTION_FAILED,
                regions=[],
                outcomes={},
                timing=TimingReport(
                    detection_ms=detection_ms,
                    avg_classification_ms=None,
                    end_to_end_ms=detection_ms,
                    status=RecognitionStatus.DETECTION_FAILED,
                ),
                error=f"{e.kind}: {e}",
            )
        logger.info("Detected %d regions in %.2f ms", len(regions), detection_ms)
        logger.debug("Regions: %s", regions_summary(regions))

        if not regions:
            return RecognitionResult(
                status=RecognitionStatus.NO_OBJECTS,
                regions=[],
                outcomes={},
                timing=TimingReport(
                    detection_ms=detection_ms,
                    avg_classification_ms=None,
                    end_to_end_ms=_elapsed_ms(t0),
                    status=RecognitionStatus.NO_OBJECTS,
                ),
                annotated=img.copy(),
            )

        space = CoordinateSpace.of_image(img) if crop_source is not None else None

        batch = await self.coordinator.classify_all(source, regions, source_space=space)
        end_to_end_ms = _elapsed_ms(t0)

        timing = TimingReport(
            detection_ms=detection_ms,
            avg_classification_ms=batch.avg_classification_ms,
            end_to_end_ms=end_to_end_ms,
            status=RecognitionStatus.OK,
        )
        logger.info(
            "Run done: detection %.2f ms, avg classification %s, end-to-end %.2f ms",
            detection_ms,
            "n/a" if timing.avg_classification_ms is None else f"{timing.avg_classification_ms:.2f} ms",
            end_to_end_ms,
        )
        return RecognitionResult(
            status=RecognitionStatus.OK,
            regions=list(regions),
            outcomes=dict(batch.outcomes),
            timing=timing,
            failures=list(batch.failures),
            annotated=render_overlay(img, regions, batch.outcomes),
        )

    def submit(self, image: np.ndarray, *, crop_source: Optional[np.ndarray] = None) -> asyncio.Task:
        """
        Start a run for a new image, cancelling the previous one if still in flight.

        `latest` is only updated by the newest submission, so a superseded run can
        never publish a stale result. Must be called from the event loop.
        """

        if self._current is not None and not self._current.done():
            logger.info("New image submitted; cancelling in-flight run")
            self._current.cancel()
        task = asyncio.ensure_future(self._run_and_publish(image, crop_source))
        self._current = task
        return task

    async def _run_and_publish(self, image: np.ndarray, crop_source: Optional[np.ndarray]) -> RecognitionResult:
        result = await self.run(image, crop_source=crop_source)
        self.latest = result
        return result

    def __call__(self, image: np.ndarray, *, crop_source: Optional[np.ndarray] = None) -> RecognitionResult:
        """Blocking run for callers without an event loop."""
        return asyncio.run(self.run(image, crop_source=crop_source))

    def close(self) -> None:
        self.coordinator.close()
        self._detector.close()

    def __enter__(self) -> "TwoStagePipeline":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


def load_pipeline(
    detector_path: PathLike,
    classifier_path: PathLike,
    labels_path: PathLike,
    *,
    config: PipelineConfig = PipelineConfig(),
    root: Optional[PathLike] = "auto",
    onnx_providers: Optional[Sequence[str]] = None,
) -> TwoStagePipeline:
    """
    Create a pipeline over two ONNX models on disk.

    Relative paths resolve against the project root by default.

        pipe = load_pipeline("models/det.onnx", "models/cls.onnx", "models/labels.json")
    """

    from .backends.onnxruntime_backend import OnnxClassifier, OnnxDetector, OnnxRuntimeBackendConfig
    from .metadata import load_class_names

    ort_cfg = OnnxRuntimeBackendConfig(providers=onnx_providers)
    detector = OnnxDetector(resolve_path(detector_path, root=root), ort_cfg)
    labels = load_class_names(resolve_path(labels_path, root=root))
    classifier = OnnxClassifier(resolve_path(classifier_path, root=root), labels, ort_cfg)
    logger.info("Loaded detector and classifier (%d labels)", len(labels))
    return TwoStagePipeline(detector, classifier, config=config)


def regions_summary(regions: Sequence[DetectedRegion]) -> str:
    return ", ".join(f"{r.key}@{r.confidence:.2f}" for r in regions)
