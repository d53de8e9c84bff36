from __future__ import annotations

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Any


def format_percentage(probability: float) -> str:
    # Halves round up, matching JavaScript toFixed on the shortest float repr.
    value = Decimal(repr(float(probability) * 100)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    return f"{value}%"


@dataclass(frozen=True)
class Keypoint:
    part: str
    x: float
    y: float
    score: float

    def to_json(self) -> dict[str, Any]:
        return {
            "part": self.part,
            "position": {"x": float(self.x), "y": float(self.y)},
            "score": float(self.score),
        }


@dataclass(frozen=True)
class PredictionItem:
    class_name: str
    probability: float

    @property
    def percentage(self) -> str:
        return format_percentage(self.probability)

    def to_json(self) -> dict[str, Any]:
        return {
            "className": self.class_name,
            "probability": float(self.probability),
            "percentage": self.percentage,
        }


@dataclass
class PoseResult:
    detected_pose: str | None
    confidence: float
    predictions: list[PredictionItem] = field(default_factory=list)
    keypoints: list[Keypoint] = field(default_factory=list)

    def to_json(self) -> dict[str, Any]:
        return {
            "success": True,
            "detectedPose": self.detected_pose,
            "confidence": float(self.confidence),
            "allPredictions": [p.to_json() for p in self.predictions],
            "keypoints": [kp.to_json() for kp in self.keypoints],
        }


@dataclass
class FailureResult:
    error: str
    image_url: str | None = None
    item: Any = None
    # Missing-input failures echo the original item, even when it is None.
    include_item: bool = False

    def to_json(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "success": False,
            "error": self.error,
            "imageUrl": self.image_url,
        }
        if self.include_item:
            payload["item"] = self.item
        return payload


def wrap_item(record: PoseResult | FailureResult) -> dict[str, Any]:
    """Wrap a result in the workflow host's ``{"json": ...}`` item convention."""
    return {"json": record.to_json()}
