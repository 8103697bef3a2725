"""
Two-stage (detect, then classify each region) image recognition helpers.

Framework-agnostic: engines are plain callables over NumPy tensors, so ONNX
Runtime models, other runtimes or test doubles plug in the same way. Core
dependencies are NumPy and OpenCV.
"""

from .types import (
    Box,
    ClassificationBatch,
    ClassificationOutcome,
    DetectedRegion,
    RecognitionResult,
    RecognitionStatus,
    RegionFailure,
    TimingReport,
    region_key,
)
from .errors import DecodeFailure, EmptyRegion, InferenceFailure, InvalidInput, InvalidState, TwoStageError
from .letterbox import LETTERBOX_FILL, LetterboxTransform, compute_letterbox, letterbox
from .buffer import CLASSIFIER_SPEC, DETECTOR_SPEC, TensorSpec, decode, encode
from .nms import nms
from .postprocess import DecoderConfig, DetectionDecoder
from .crop import BOTTOM_LEFT, TOP_LEFT, CoordinateSpace, crop_region, map_box_to_pixels
from .classify import ClassificationCoordinator, CoordinatorConfig, classify_all_sync, rank_probabilities
from .visualize import render_overlay
from .config import PipelineConfig, load_pipeline_config
from .runtime import TwoStagePipeline, load_pipeline, find_project_root, resolve_path
from .metadata import load_class_names

__all__ = [
    "Box",
    "ClassificationBatch",
    "ClassificationOutcome",
    "DetectedRegion",
    "RecognitionResult",
    "RecognitionStatus",
    "RegionFailure",
    "TimingReport",
    "region_key",
    "DecodeFailure",
    "EmptyRegion",
    "InferenceFailure",
    "InvalidInput",
    "InvalidState",
    "TwoStageError",
    "LETTERBOX_FILL",
    "LetterboxTransform",
    "compute_letterbox",
    "letterbox",
    "CLASSIFIER_SPEC",
    "DETECTOR_SPEC",
    "TensorSpec",
    "decode",
    "encode",
    "nms",
    "DecoderConfig",
    "DetectionDecoder",
    "BOTTOM_LEFT",
    "TOP_LEFT",
    "CoordinateSpace",
    "crop_region",
    "map_box_to_pixels",
    "ClassificationCoordinator",
    "CoordinatorConfig",
    "classify_all_sync",
    "rank_probabilities",
    "render_overlay",
    "PipelineConfig",
    "load_pipeline_config",
    "TwoStagePipeline",
    "load_pipeline",
    "find_project_root",
    "resolve_path",
    "load_class_names",
]
