from __future__ import annotations

import os
from pathlib import Path
import time

import cv2

# Prefer CPU execution; the node runs on headless workflow hosts.
os.environ.setdefault("MEDIAPIPE_DISABLE_GPU", "1")

import numpy as np

from posenode.config import DEFAULT_LANDMARKER_PATH
from posenode.estimators.base import KEYPOINT_PARTS, BasePoseEstimator, PoseEstimate, empty_keypoints
from posenode.records import Keypoint

# MediaPipe's 33-landmark topology, reduced to the 17 PoseNet parts.
MP_LANDMARK_FOR_PART = {
    "nose": 0,
    "leftEye": 2,
    "rightEye": 5,
    "leftEar": 7,
    "rightEar": 8,
    "leftShoulder": 11,
    "rightShoulder": 12,
    "leftElbow": 13,
    "rightElbow": 14,
    "leftWrist": 15,
    "rightWrist": 16,
    "leftHip": 23,
    "rightHip": 24,
    "leftKnee": 25,
    "rightKnee": 26,
    "leftAnkle": 27,
    "rightAnkle": 28,
}


class MediaPipePoseEstimator(BasePoseEstimator):
    name = "mediapipe"

    def __init__(
        self,
        min_detection_confidence: float = 0.5,
        model_complexity: int = 1,
        task_model_path: str | None = None,
    ) -> None:
        try:
            import mediapipe as mp
        except Exception as e:
            raise RuntimeError(
                "MediaPipe backend requires mediapipe. Install with: pip install 'posenode[mediapipe]'"
            ) from e

        if hasattr(mp, "solutions"):
            self.backend = "solutions"
            self.mp_pose = mp.solutions.pose
            # Every image is independent, so no tracking between calls.
            self.pose = self.mp_pose.Pose(
                static_image_mode=True,
                model_complexity=model_complexity,
                min_detection_confidence=min_detection_confidence,
            )
            return

        self.backend = "tasks"
        self._init_tasks_backend(
            mp,
            task_model_path=task_model_path,
            min_detection_confidence=min_detection_confidence,
        )

    def _init_tasks_backend(self, mp, task_model_path: str | None, min_detection_confidence: float) -> None:
        model_path = Path(task_model_path or DEFAULT_LANDMARKER_PATH)
        if not model_path.exists():
            raise RuntimeError(
                f"MediaPipe Tasks model not found at: {model_path}. "
                "Download it first with: posenode fetch-model --with-landmarker"
            )

        try:
            from mediapipe.tasks import python as mp_python
            from mediapipe.tasks.python import vision
        except Exception as e:
            raise RuntimeError(
                "Installed mediapipe package does not provide either `solutions` or tasks vision APIs."
            ) from e

        options = vision.PoseLandmarkerOptions(
            base_options=mp_python.BaseOptions(
                model_asset_path=str(model_path),
                delegate=mp_python.BaseOptions.Delegate.CPU,
            ),
            running_mode=vision.RunningMode.IMAGE,
            num_poses=1,
            min_pose_detection_confidence=min_detection_confidence,
            min_pose_presence_confidence=min_detection_confidence,
        )
        self.pose = vision.PoseLandmarker.create_from_options(options)
        self._mp_image_cls = mp.Image
        self._mp_image_fmt = mp.ImageFormat

    def estimate(self, frame_bgr: np.ndarray) -> PoseEstimate:
        t0 = time.perf_counter()
        h, w = frame_bgr.shape[:2]
        frame_rgb = cv2.cvtColor(frame_bgr, cv2.COLOR_BGR2RGB)
        if self.backend == "solutions":
            results = self.pose.process(frame_rgb)
            landmarks = results.pose_landmarks.landmark if results.pose_landmarks else None
        else:
            mp_image = self._mp_image_cls(image_format=self._mp_image_fmt.SRGB, data=frame_rgb)
            results = self.pose.detect(mp_image)
            landmarks = results.pose_landmarks[0] if results.pose_landmarks else None
        latency_ms = (time.perf_counter() - t0) * 1000.0

        if landmarks is None:
            return PoseEstimate(
                detected=False,
                keypoints=empty_keypoints(),
                width=w,
                height=h,
                latency_ms=latency_ms,
                metadata={"reason": "no_pose_landmarks", "backend": self.backend},
            )

        keypoints = []
        for part in KEYPOINT_PARTS:
            lm = landmarks[MP_LANDMARK_FOR_PART[part]]
            # Landmarks are normalised; keypoints are reported in pixels.
            keypoints.append(
                Keypoint(
                    part=part,
                    x=float(lm.x) * w,
                    y=float(lm.y) * h,
                    score=float(getattr(lm, "visibility", 1.0)),
                )
            )

        return PoseEstimate(
            detected=True,
            keypoints=keypoints,
            width=w,
            height=h,
            latency_ms=latency_ms,
            metadata={"backend": self.backend},
        )

    def close(self) -> None:
        if hasattr(self.pose, "close"):
            self.pose.close()
