from __future__ import annotations

import json
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from .buffer import CHANNEL_ORDERS, LAYOUTS, TensorSpec
from .classify import CoordinatorConfig
from .postprocess import BOX_FORMS, BOX_UNITS, DecoderConfig


@dataclass(frozen=True)
class PipelineConfig:
    """
    Tunables for a two-stage run. Threshold and top-k are policy, not constants.
    """

    canvas_size: int = 640
    classifier_input_size: int = 480
    conf_threshold: float = 0.25
    iou_threshold: float = 0.5
    top_k: int = 5
    max_concurrency: int = 4
    classify_timeout_s: Optional[float] = 10.0
    detect_timeout_s: Optional[float] = 30.0
    box_units: str = "normalized"
    box_form: str = "center"
    score_column: Optional[int] = None
    apply_nms: bool = False
    detector_layout: str = "NCHW"
    detector_channel_order: str = "RGB"
    detector_value_range: Tuple[float, float] = (0.0, 1.0)
    classifier_layout: str = "NCHW"
    classifier_channel_order: str = "RGB"
    classifier_value_range: Tuple[float, float] = (-1.0, 1.0)

    def __post_init__(self) -> None:
        if self.canvas_size < 32:
            raise ValueError("canvas_size must be >= 32")
        if self.classifier_input_size < 1:
            raise ValueError("classifier_input_size must be >= 1")
        if not 0.0 <= self.conf_threshold < 1.0:
            raise ValueError("conf_threshold must be in [0, 1)")
        if not 0.0 <= self.iou_threshold <= 1.0:
            raise ValueError("iou_threshold must be in [0, 1]")
        if self.top_k < 1:
            raise ValueError("top_k must be >= 1")
        if self.max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        for name in ("classify_timeout_s", "detect_timeout_s"):
            value = getattr(self, name)
            if value is not None and value <= 0:
                raise ValueError(f"{name} must be > 0 (or null to disable)")
        if self.box_units not in BOX_UNITS:
            raise ValueError(f"box_units must be one of {BOX_UNITS}")
        if self.box_form not in BOX_FORMS:
            raise ValueError(f"box_form must be one of {BOX_FORMS}")
        if self.score_column is not None and self.score_column < 0:
            raise ValueError("score_column must be >= 0")
        for prefix in ("detector", "classifier"):
            if getattr(self, f"{prefix}_layout") not in LAYOUTS:
                raise ValueError(f"{prefix}_layout must be one of {LAYOUTS}")
            if getattr(self, f"{prefix}_channel_order") not in CHANNEL_ORDERS:
                raise ValueError(f"{prefix}_channel_order must be one of {CHANNEL_ORDERS}")
            lo, hi = getattr(self, f"{prefix}_value_range")
            if hi <= lo:
                raise ValueError(f"{prefix}_value_range must be [lo, hi] with hi > lo")

    @property
    def canvas(self) -> Tuple[int, int]:
        return self.canvas_size, self.canvas_size

    @property
    def classifier_input(self) -> Tuple[int, int]:
        return self.classifier_input_size, self.classifier_input_size

    def decoder_config(self) -> DecoderConfig:
        return DecoderConfig(
            conf_threshold=self.conf_threshold,
            box_units=self.box_units,
            box_form=self.box_form,
            score_column=self.score_column,
            apply_nms=self.apply_nms,
            iou_threshold=self.iou_threshold,
        )

    def coordinator_config(self) -> CoordinatorConfig:
        return CoordinatorConfig(
            input_size=self.classifier_input,
            top_k=self.top_k,
            max_concurrency=self.max_concurrency,
            timeout_s=self.classify_timeout_s,
        )

    def detector_spec(self) -> TensorSpec:
        return TensorSpec(
            layout=self.detector_layout,
            channel_order=self.detector_channel_order,
            value_range=tuple(self.detector_value_range),
        )

    def classifier_spec(self) -> TensorSpec:
        return TensorSpec(
            layout=self.classifier_layout,
            channel_order=self.classifier_channel_order,
            value_range=tuple(self.classifier_value_range),
        )


_INT_KEYS = {"canvas_size", "classifier_input_size", "top_k", "max_concurrency"}
_FLOAT_KEYS = {"conf_threshold", "iou_threshold"}
_OPTIONAL_FLOAT_KEYS = {"classify_timeout_s", "detect_timeout_s"}
_STR_KEYS = {
    "box_units",
    "box_form",
    "detector_layout",
    "detector_channel_order",
    "classifier_layout",
    "classifier_channel_order",
}
_RANGE_KEYS = {"detector_value_range", "classifier_value_range"}


def _require_int(value: object, key: str) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{key} must be an integer")
    if isinstance(value, float) and not value.is_integer():
        raise ValueError(f"{key} must be an integer")
    return int(value)


def _require_number(value: object, key: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{key} must be a number")
    return float(value)


def _coerce(key: str, value: object) -> Any:
    if key in _INT_KEYS:
        return _require_int(value, key)
    if key in _FLOAT_KEYS:
        return _require_number(value, key)
    if key in _OPTIONAL_FLOAT_KEYS:
        return None if value is None else _require_number(value, key)
    if key in _STR_KEYS:
        if not isinstance(value, str) or not value.strip():
            raise ValueError(f"{key} must be a non-empty string")
        return value.strip()
    if key in _RANGE_KEYS:
        if not isinstance(value, list) or len(value) != 2:
            raise ValueError(f"{key} must be a [lo, hi] pair")
        return (_require_number(value[0], key), _require_number(value[1], key))
    if key == "score_column":
        return None if value is None else _require_int(value, key)
    if key == "apply_nms":
        if not isinstance(value, bool):
            raise ValueError(f"{key} must be a boolean")
        return value
    raise ValueError(f"Unsupported pipeline config key: {key}")


def config_from_dict(payload: Dict[str, Any], base: Optional[PipelineConfig] = None) -> PipelineConfig:
    allowed = {f.name for f in fields(PipelineConfig)}
    unknown = sorted(set(payload.keys()) - allowed)
    if unknown:
        raise ValueError(f"Unknown pipeline config keys: {unknown}")
    values = {f.name: getattr(base, f.name) for f in fields(PipelineConfig)} if base else {}
    values.update({key: _coerce(key, value) for key, value in payload.items()})
    return PipelineConfig(**values)


def load_pipeline_config(path: Path) -> PipelineConfig:
    if not path.exists():
        raise FileNotFoundError(f"Pipeline config not found: {path}")
    raw = path.read_text(encoding="utf-8")
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid pipeline config JSON: {path}") from exc
    if not isinstance(payload, dict):
        raise ValueError("Pipeline config must be a JSON object")
    return config_from_dict(payload)
