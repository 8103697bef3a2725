from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple, Union

import numpy as np

from ..errors import InferenceFailure


PathLike = Union[str, Path]


@dataclass(frozen=True)
class OnnxRuntimeBackendConfig:
    """
    Configuration for ONNX Runtime inference.

    - providers: ORT execution providers (e.g., ["CUDAExecutionProvider", "CPUExecutionProvider"])
    - input_name: override the auto-selected input name
    - output_names: override the auto-selected outputs (detector: boxes then scores)
    - intra_op_threads: 0 lets ORT decide
    """

    providers: Optional[Sequence[str]] = None
    input_name: Optional[str] = None
    output_names: Optional[Sequence[str]] = None
    intra_op_threads: int = 0


class OnnxRuntimeBackend:
    """
    Minimal ONNX Runtime session wrapper.

    Expects a float32 blob shaped as the model declares (typically (1, 3, H, W)).
    """

    def __init__(self, model_path: PathLike, cfg: OnnxRuntimeBackendConfig = OnnxRuntimeBackendConfig()):
        try:
            import onnxruntime as ort  # type: ignore
        except Exception as e:  # pragma: no cover
            raise ImportError(
                "onnxruntime is required for the ONNX backend. Install it with `pip install onnxruntime` "
                "(or `onnxruntime-gpu`)."
            ) from e

        self._ort = ort
        self.model_path = Path(model_path)
        if not self.model_path.exists():
            raise FileNotFoundError(str(self.model_path))

        sess_opts = ort.SessionOptions()
        if cfg.intra_op_threads > 0:
            sess_opts.intra_op_num_threads = int(cfg.intra_op_threads)
        providers = list(cfg.providers) if cfg.providers is not None else None
        self.session = ort.InferenceSession(str(self.model_path), sess_options=sess_opts, providers=providers)

        self.input_name = cfg.input_name or self.session.get_inputs()[0].name
        self.output_names = list(cfg.output_names or [o.name for o in self.session.get_outputs()])

    @property
    def providers_in_use(self) -> Sequence[str]:
        # ORT returns providers in priority order for this session.
        return tuple(self.session.get_providers())

    def run(self, blob: np.ndarray, extra_inputs: Optional[Dict[str, Any]] = None) -> list:
        inputs: Dict[str, Any] = {self.input_name: blob}
        if extra_inputs:
            inputs.update(extra_inputs)
        try:
            return self.session.run(self.output_names, inputs)
        except Exception as e:
            raise InferenceFailure(f"{self.model_path.name}: {e}") from e


def split_yolo_output(preds: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """
    Split a single-output YOLO head into parallel (boxes, scores) arrays.

    Supported layouts (per image):
    - (C + 4, A): e.g. 84 x 8400 for yolov8/v9 exports, rows are [cx, cy, w, h, class_scores...]
    - (N, 5 + C): [cx, cy, w, h, obj, class_scores...]

    Boxes come back as (N, 4) center-form canvas pixels, scores as (N, C).
    """

    p = np.asarray(preds)
    if p.ndim == 3:
        if p.shape[0] != 1:
            raise ValueError(f"Batch > 1 is not supported (got shape {p.shape}). Pass one image at a time.")
        p = p[0]
    if p.ndim != 2:
        raise ValueError(f"Unsupported YOLO output shape: {p.shape}")

    h, w = p.shape
    # Heuristic: YOLO "channels" dimension is usually small (<= ~512) and anchors dimension is large.
    small, large = (h, w) if h <= w else (w, h)
    looks_like_anchors_layout = 5 <= small <= 512 and (large / max(small, 1)) >= 4

    if looks_like_anchors_layout and h <= w:
        return p[0:4, :].T, p[4:, :].T

    if p.shape[1] >= 6:
        objectness = p[:, 4:5]
        return p[:, :4], objectness * p[:, 5:]

    raise ValueError(f"Unsupported YOLO output shape: {p.shape}")


class OnnxDetector:
    """
    Detector engine over ONNX Runtime: tensor -> (boxes, scores).

    Two-output models (e.g. exports with NMS baked in) return their outputs as-is,
    ordered boxes then scores. Single-output YOLO heads are split with
    `split_yolo_output`; pair those with box_units="pixels", box_form="center"
    and apply_nms=True in the decoder.
    """

    def __init__(self, model_path: PathLike, cfg: OnnxRuntimeBackendConfig = OnnxRuntimeBackendConfig()):
        self.backend = OnnxRuntimeBackend(model_path, cfg)

    def __call__(
        self,
        blob: np.ndarray,
        iou_threshold: float = 0.5,
        confidence_threshold: float = 0.25,
    ) -> Tuple[np.ndarray, np.ndarray]:
        # Thresholds are forwarded only to models that declare them as inputs.
        declared = {i.name for i in self.backend.session.get_inputs()}
        extra: Dict[str, Any] = {}
        if "iouThreshold" in declared:
            extra["iouThreshold"] = np.array([iou_threshold], dtype=np.float32)
        if "confidenceThreshold" in declared:
            extra["confidenceThreshold"] = np.array([confidence_threshold], dtype=np.float32)

        outputs = self.backend.run(blob, extra)
        if len(outputs) >= 2:
            return np.asarray(outputs[0]), np.asarray(outputs[1])
        try:
            return split_yolo_output(outputs[0])
        except ValueError as e:
            raise InferenceFailure(str(e)) from e


def softmax(logits: np.ndarray) -> np.ndarray:
    z = logits - np.max(logits)
    e = np.exp(z)
    return e / np.sum(e)


class OnnxClassifier:
    """
    Classifier engine over ONNX Runtime: tensor -> (label, {class: probability}).

    Raw logits are passed through softmax; outputs that already form a
    distribution are used unchanged. The mapping follows `labels` order.
    """

    def __init__(
        self,
        model_path: PathLike,
        labels: Sequence[str],
        cfg: OnnxRuntimeBackendConfig = OnnxRuntimeBackendConfig(),
    ):
        if not labels:
            raise ValueError("labels must not be empty")
        self.backend = OnnxRuntimeBackend(model_path, cfg)
        self.labels = list(labels)

    def __call__(self, blob: np.ndarray) -> Tuple[str, Mapping[str, float]]:
        scores = np.asarray(self.backend.run(blob)[0], dtype=np.float64).reshape(-1)
        if scores.shape[0] != len(self.labels):
            raise InferenceFailure(f"Classifier returned {scores.shape[0]} scores for {len(self.labels)} labels")
        is_distribution = np.all(scores >= 0) and np.all(scores <= 1) and abs(float(scores.sum()) - 1.0) < 1e-3
        probs = scores if is_distribution else softmax(scores)
        best = int(np.argmax(probs))
        return self.labels[best], {label: float(p) for label, p in zip(self.labels, probs)}
