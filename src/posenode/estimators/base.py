from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import numpy as np

from posenode.records import Keypoint

# PoseNet part names, in the order the classifier features are laid out.
KEYPOINT_PARTS: tuple[str, ...] = (
    "nose",
    "leftEye",
    "rightEye",
    "leftEar",
    "rightEar",
    "leftShoulder",
    "rightShoulder",
    "leftElbow",
    "rightElbow",
    "leftWrist",
    "rightWrist",
    "leftHip",
    "rightHip",
    "leftKnee",
    "rightKnee",
    "leftAnkle",
    "rightAnkle",
)


@dataclass
class PoseEstimate:
    detected: bool
    keypoints: list[Keypoint]
    width: int
    height: int
    latency_ms: float
    metadata: dict[str, Any] = field(default_factory=dict)


def empty_keypoints() -> list[Keypoint]:
    return [Keypoint(part=part, x=0.0, y=0.0, score=0.0) for part in KEYPOINT_PARTS]


class BasePoseEstimator:
    name = "base"

    def estimate(self, frame_bgr: np.ndarray) -> PoseEstimate:  # pragma: no cover - interface
        raise NotImplementedError

    def close(self) -> None:
        return None
