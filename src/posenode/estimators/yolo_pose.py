from __future__ import annotations

import time

import numpy as np

from posenode.estimators.base import KEYPOINT_PARTS, BasePoseEstimator, PoseEstimate, empty_keypoints
from posenode.records import Keypoint


class YoloPoseEstimator(BasePoseEstimator):
    """COCO-17 keypoints from an Ultralytics pose model.

    YOLO pose models emit the COCO keypoint order, which matches the PoseNet
    part order one-to-one, so no remapping is needed.
    """

    name = "yolo-pose"

    def __init__(
        self,
        model_path: str = "yolo11n-pose.pt",
        conf_threshold: float = 0.25,
        iou_threshold: float = 0.45,
        imgsz: int = 640,
        device: str = "cpu",
    ) -> None:
        try:
            from ultralytics import YOLO
        except Exception as e:
            raise RuntimeError(
                "YOLO-Pose backend requires ultralytics. Install with: pip install 'posenode[yolo]'"
            ) from e

        self.model = YOLO(model_path)
        self.conf_threshold = conf_threshold
        self.iou_threshold = iou_threshold
        self.imgsz = imgsz
        self.device = device

    def estimate(self, frame_bgr: np.ndarray) -> PoseEstimate:
        t0 = time.perf_counter()
        h, w = frame_bgr.shape[:2]
        results = self.model.predict(
            source=frame_bgr,
            conf=self.conf_threshold,
            iou=self.iou_threshold,
            imgsz=self.imgsz,
            device=self.device,
            verbose=False,
        )
        latency_ms = (time.perf_counter() - t0) * 1000.0

        if not results:
            return self._no_pose(w, h, latency_ms, "no_result")

        result = results[0]
        if result.keypoints is None or result.keypoints.xy is None or len(result.keypoints.xy) == 0:
            return self._no_pose(w, h, latency_ms, "no_keypoints")

        kxy_all = result.keypoints.xy
        kcf_all = result.keypoints.conf
        person_idx = self._select_person(kxy_all, kcf_all)

        kxy = kxy_all[person_idx].cpu().numpy()
        if kcf_all is None:
            kcf = np.ones((kxy.shape[0],), dtype=np.float32)
        else:
            kcf = kcf_all[person_idx].cpu().numpy()

        keypoints = [
            Keypoint(part=part, x=float(kxy[idx][0]), y=float(kxy[idx][1]), score=float(kcf[idx]))
            for idx, part in enumerate(KEYPOINT_PARTS)
        ]
        return PoseEstimate(
            detected=True,
            keypoints=keypoints,
            width=w,
            height=h,
            latency_ms=latency_ms,
            metadata={"backend": "yolo-pose", "num_people": int(len(kxy_all)), "person_idx": person_idx},
        )

    @staticmethod
    def _no_pose(w: int, h: int, latency_ms: float, reason: str) -> PoseEstimate:
        return PoseEstimate(
            detected=False,
            keypoints=empty_keypoints(),
            width=w,
            height=h,
            latency_ms=latency_ms,
            metadata={"reason": reason, "backend": "yolo-pose"},
        )

    @staticmethod
    def _select_person(kxy_all, kcf_all) -> int:
        num_people = len(kxy_all)
        if num_people == 1:
            return 0
        if kcf_all is None:
            return 0
        means = []
        for i in range(num_people):
            means.append(float(kcf_all[i].mean().item()))
        return int(np.argmax(np.array(means)))
