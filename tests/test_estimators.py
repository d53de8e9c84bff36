import unittest
from types import SimpleNamespace
from unittest import mock

import numpy as np

from posenode.estimators.base import KEYPOINT_PARTS, empty_keypoints
from posenode.estimators.factory import build_estimator
from posenode.estimators.mediapipe_pose import MP_LANDMARK_FOR_PART, MediaPipePoseEstimator
from posenode.estimators.yolo_pose import YoloPoseEstimator


class FakeTensor:
    def __init__(self, values) -> None:
        self.values = np.asarray(values, dtype=np.float32)

    def __len__(self) -> int:
        return len(self.values)

    def __getitem__(self, idx):
        return FakeTensor(self.values[idx])

    def cpu(self):
        return self

    def numpy(self):
        return self.values

    def mean(self):
        return self.values.mean()


class FakeYolo:
    def __init__(self, results) -> None:
        self.results = results
        self.calls = []

    def predict(self, **kwargs):
        self.calls.append(kwargs)
        return self.results


def _estimator(results) -> YoloPoseEstimator:
    est = YoloPoseEstimator.__new__(YoloPoseEstimator)
    est.model = FakeYolo(results)
    est.conf_threshold = 0.25
    est.iou_threshold = 0.45
    est.imgsz = 640
    est.device = "cpu"
    return est


class FactoryTests(unittest.TestCase):
    def test_unknown_backend(self) -> None:
        with self.assertRaises(ValueError):
            build_estimator("openpose")

    def test_empty_keypoints_cover_every_part(self) -> None:
        kps = empty_keypoints()
        self.assertEqual([kp.part for kp in kps], list(KEYPOINT_PARTS))
        self.assertTrue(all(kp.score == 0.0 for kp in kps))

    def test_missing_mediapipe_names_the_extra(self) -> None:
        with mock.patch.dict("sys.modules", {"mediapipe": None}):
            with self.assertRaises(RuntimeError) as ctx:
                build_estimator("mediapipe")
        self.assertIn("posenode[mediapipe]", str(ctx.exception))


class YoloPoseEstimatorTests(unittest.TestCase):
    def test_picks_most_confident_person(self) -> None:
        n = len(KEYPOINT_PARTS)
        xy = [np.zeros((n, 2)), np.tile([[10.0, 20.0]], (n, 1))]
        conf = [np.full(n, 0.2), np.full(n, 0.9)]
        result = SimpleNamespace(keypoints=SimpleNamespace(xy=FakeTensor(xy), conf=FakeTensor(conf)))
        est = _estimator([result])

        estimate = est.estimate(np.zeros((120, 80, 3), dtype=np.uint8))

        self.assertTrue(estimate.detected)
        self.assertEqual((estimate.width, estimate.height), (80, 120))
        self.assertEqual(estimate.metadata["person_idx"], 1)
        self.assertEqual(len(estimate.keypoints), n)
        self.assertEqual(estimate.keypoints[5].part, "leftShoulder")
        self.assertAlmostEqual(estimate.keypoints[5].x, 10.0)
        self.assertAlmostEqual(estimate.keypoints[5].y, 20.0)
        self.assertAlmostEqual(estimate.keypoints[5].score, 0.9, places=5)
        self.assertFalse(est.model.calls[0]["verbose"])

    def test_no_people_found(self) -> None:
        result = SimpleNamespace(keypoints=SimpleNamespace(xy=FakeTensor(np.zeros((0, 17, 2))), conf=None))
        estimate = _estimator([result]).estimate(np.zeros((10, 10, 3), dtype=np.uint8))
        self.assertFalse(estimate.detected)
        self.assertEqual(estimate.metadata["reason"], "no_keypoints")
        self.assertEqual(len(estimate.keypoints), len(KEYPOINT_PARTS))

    def test_empty_results(self) -> None:
        estimate = _estimator([]).estimate(np.zeros((10, 10, 3), dtype=np.uint8))
        self.assertFalse(estimate.detected)
        self.assertEqual(estimate.metadata["reason"], "no_result")

    def test_missing_confidences_default_to_one(self) -> None:
        xy = [np.ones((len(KEYPOINT_PARTS), 2))]
        result = SimpleNamespace(keypoints=SimpleNamespace(xy=FakeTensor(xy), conf=None))
        estimate = _estimator([result]).estimate(np.zeros((10, 10, 3), dtype=np.uint8))
        self.assertTrue(all(kp.score == 1.0 for kp in estimate.keypoints))


def _mediapipe_estimator(pose_landmarks) -> MediaPipePoseEstimator:
    est = MediaPipePoseEstimator.__new__(MediaPipePoseEstimator)
    est.backend = "solutions"
    est.pose = SimpleNamespace(process=lambda frame_rgb: SimpleNamespace(pose_landmarks=pose_landmarks))
    return est


class MediaPipePoseEstimatorTests(unittest.TestCase):
    def test_maps_landmarks_to_pixel_keypoints(self) -> None:
        landmarks = [SimpleNamespace(x=i / 100, y=i / 200, visibility=i / 40) for i in range(33)]
        est = _mediapipe_estimator(SimpleNamespace(landmark=landmarks))

        estimate = est.estimate(np.zeros((200, 100, 3), dtype=np.uint8))

        self.assertTrue(estimate.detected)
        self.assertEqual((estimate.width, estimate.height), (100, 200))
        self.assertEqual([kp.part for kp in estimate.keypoints], list(KEYPOINT_PARTS))
        for kp in estimate.keypoints:
            idx = MP_LANDMARK_FOR_PART[kp.part]
            self.assertAlmostEqual(kp.x, idx / 100 * 100)
            self.assertAlmostEqual(kp.y, idx / 200 * 200)
            self.assertAlmostEqual(kp.score, idx / 40)

        left_hip = estimate.keypoints[KEYPOINT_PARTS.index("leftHip")]
        self.assertAlmostEqual(left_hip.x, 23.0)
        self.assertAlmostEqual(left_hip.y, 23.0)
        self.assertAlmostEqual(left_hip.score, 0.575)
        self.assertEqual(estimate.metadata["backend"], "solutions")

    def test_missing_visibility_defaults_to_one(self) -> None:
        landmarks = [SimpleNamespace(x=0.5, y=0.5) for _ in range(33)]
        estimate = _mediapipe_estimator(SimpleNamespace(landmark=landmarks)).estimate(
            np.zeros((10, 20, 3), dtype=np.uint8)
        )
        self.assertTrue(all(kp.score == 1.0 for kp in estimate.keypoints))
        self.assertEqual((estimate.keypoints[0].x, estimate.keypoints[0].y), (10.0, 5.0))

    def test_no_landmarks(self) -> None:
        estimate = _mediapipe_estimator(None).estimate(np.zeros((10, 10, 3), dtype=np.uint8))
        self.assertFalse(estimate.detected)
        self.assertEqual(estimate.metadata["reason"], "no_pose_landmarks")
        self.assertEqual(len(estimate.keypoints), len(KEYPOINT_PARTS))
        self.assertTrue(all(kp.score == 0.0 for kp in estimate.keypoints))

    def test_close_closes_graph(self) -> None:
        est = _mediapipe_estimator(None)
        est.pose = mock.Mock()
        est.close()
        est.pose.close.assert_called_once()


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
