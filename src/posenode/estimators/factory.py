from __future__ import annotations

from posenode.estimators.base import BasePoseEstimator

SUPPORTED_BACKENDS = ("mediapipe", "yolo-pose")


def build_estimator(backend: str, backend_cfg: dict | None = None) -> BasePoseEstimator:
    cfg = backend_cfg or {}
    key = backend.lower()

    # Backends are imported on demand; each one pulls in a heavy runtime.
    if key == "mediapipe":
        from posenode.estimators.mediapipe_pose import MediaPipePoseEstimator

        return MediaPipePoseEstimator(
            min_detection_confidence=float(cfg.get("min_detection_confidence", 0.5)),
            model_complexity=int(cfg.get("model_complexity", 1)),
            task_model_path=cfg.get("task_model_path"),
        )

    if key == "yolo-pose":
        from posenode.estimators.yolo_pose import YoloPoseEstimator

        return YoloPoseEstimator(
            model_path=str(cfg.get("model_path", "yolo11n-pose.pt")),
            conf_threshold=float(cfg.get("conf_threshold", 0.25)),
            iou_threshold=float(cfg.get("iou_threshold", 0.45)),
            imgsz=int(cfg.get("imgsz", 640)),
            device=str(cfg.get("device", "cpu")),
        )

    raise ValueError(
        f"Unsupported estimator backend: {backend}. Choose one of: {', '.join(SUPPORTED_BACKENDS)}"
    )
