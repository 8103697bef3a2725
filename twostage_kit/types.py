from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

import numpy as np


Size = Tuple[int, int]  # (width, height)


def region_key(index: int) -> str:
    """
    Display key for a region, derived from its 0-based detection-order index.

    Region 0 -> "Object 01". Never derived from confidence rank.
    """

    return f"Object {index + 1:02d}"


@dataclass(frozen=True)
class Box:
    """
    Axis-aligned box, top-left origin, in the pixel space of the image it refers to.
    """

    x: float
    y: float
    width: float
    height: float

    def as_xyxy(self) -> Tuple[float, float, float, float]:
        return self.x, self.y, self.x + self.width, self.y + self.height

    def as_xywh(self) -> Tuple[float, float, float, float]:
        return self.x, self.y, self.width, self.height

    @property
    def area(self) -> float:
        return max(0.0, self.width) * max(0.0, self.height)


@dataclass(frozen=True)
class DetectedRegion:
    """
    One retained detection in original-image pixel coordinates.

    `index` is the position in the detector's raw emission order (after the
    confidence filter) and is the stable display index.
    """

    index: int
    box: Box
    confidence: float
    class_id: Optional[int] = None

    @property
    def key(self) -> str:
        return region_key(self.index)


@dataclass(frozen=True)
class ClassificationOutcome:
    region_index: int
    top_label: str
    # (label, probability), strictly descending, ties in class enumeration order.
    probabilities: Tuple[Tuple[str, float], ...]

    @property
    def key(self) -> str:
        return region_key(self.region_index)

    @property
    def best(self) -> Optional[Tuple[str, float]]:
        return self.probabilities[0] if self.probabilities else None


@dataclass(frozen=True)
class RegionFailure:
    region_index: int
    kind: str
    message: str


class RecognitionStatus(str, Enum):
    OK = "ok"
    NO_OBJECTS = "no_objects"
    DETECTION_FAILED = "detection_failed"


@dataclass(frozen=True)
class TimingReport:
    detection_ms: float
    # None when no region was classified (see `status`).
    avg_classification_ms: Optional[float]
    end_to_end_ms: float
    status: RecognitionStatus = RecognitionStatus.OK

    def as_display(self) -> Dict[str, str]:
        """Human-readable strings for a display layer."""
        if self.status is RecognitionStatus.NO_OBJECTS:
            classification = "No objects detected"
        elif self.avg_classification_ms is None:
            classification = "-- ms"
        else:
            classification = f"{self.avg_classification_ms:.2f} ms"
        return {
            "detection": f"{self.detection_ms:.2f} ms",
            "classification": classification,
            "end_to_end": f"{self.end_to_end_ms:.2f} ms",
        }


@dataclass
class ClassificationBatch:
    """
    Joined output of one classification fan-out.
    """

    outcomes: Dict[int, ClassificationOutcome] = field(default_factory=dict)
    failures: List[RegionFailure] = field(default_factory=list)
    durations_ms: Dict[int, float] = field(default_factory=dict)
    status: RecognitionStatus = RecognitionStatus.OK

    @property
    def avg_classification_ms(self) -> Optional[float]:
        ok = [self.durations_ms[i] for i in self.outcomes if i in self.durations_ms]
        if not ok:
            return None
        return float(sum(ok) / len(ok))

    def by_key(self) -> Dict[str, List[Tuple[str, float]]]:
        """Outcomes keyed by display key, in detection order."""
        return {
            self.outcomes[i].key: list(self.outcomes[i].probabilities)
            for i in sorted(self.outcomes)
        }


@dataclass
class RecognitionResult:
    status: RecognitionStatus
    regions: List[DetectedRegion]
    outcomes: Dict[int, ClassificationOutcome]
    timing: TimingReport
    failures: List[RegionFailure] = field(default_factory=list)
    annotated: Optional[np.ndarray] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Plain data for a display layer (the annotated image is left out)."""
        return {
            "status": self.status.value,
            "regions": [
                {
                    "key": r.key,
                    "box": list(r.box.as_xywh()),
                    "confidence": float(r.confidence),
                }
                for r in self.regions
            ],
            "classifications": {
                self.outcomes[i].key: [[label, float(p)] for label, p in self.outcomes[i].probabilities]
                for i in sorted(self.outcomes)
            },
            "timing": {
                "detection_ms": self.timing.detection_ms,
                "avg_classification_ms": self.timing.avg_classification_ms,
                "end_to_end_ms": self.timing.end_to_end_ms,
                "status": self.timing.status.value,
            },
            "failures": [
                {"key": region_key(f.region_index), "kind": f.kind, "message": f.message}
                for f in self.failures
            ],
            "error": self.error,
        }
