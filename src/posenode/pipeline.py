from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Iterable, Mapping, Sequence

from posenode.errors import ClassificationError, MissingInputError, PoseNodeError
from posenode.imaging import DecodedImage, ImageFetcher
from posenode.model import ModelCache, PoseModel
from posenode.records import FailureResult, Keypoint, PoseResult, PredictionItem, wrap_item


def select_top(predictions: Sequence[PredictionItem]) -> tuple[str | None, float]:
    """Return the most probable class; the earliest entry wins a tie.

    Scores at or below zero never win, so an empty or all-zero list yields
    ``(None, 0.0)``.
    """
    max_class: str | None = None
    max_probability = 0.0
    for item in predictions:
        if item.probability > max_probability:
            max_probability = item.probability
            max_class = item.class_name
    return max_class, max_probability


def extract_image_url(item: Any) -> str | None:
    """Pull ``imageUrl`` out of a bare record or a ``{"json": record}`` item."""
    if not isinstance(item, Mapping):
        return None
    payload = item.get("json", item)
    if not isinstance(payload, Mapping):
        return None
    url = payload.get("imageUrl")
    if not isinstance(url, str) or not url.strip():
        return None
    return url.strip()


class PredictionPipeline:
    def __init__(
        self,
        cache: ModelCache,
        fetcher: ImageFetcher,
        logger: logging.Logger | None = None,
        max_workers: int = 1,
    ) -> None:
        self.cache = cache
        self.fetcher = fetcher
        self.log = logger or logging.getLogger(__name__)
        self.max_workers = max(int(max_workers), 1)
        # Estimator backends hold per-call state and are not re-entrant.
        self._inference_lock = threading.Lock()

    def classify(self, image: DecodedImage, model: PoseModel) -> tuple[list[Keypoint], list[PredictionItem]]:
        with self._inference_lock:
            try:
                estimate = model.estimate_pose(image.pixels)
                predictions = model.predict(estimate)
            except Exception as e:
                self.log.error("Prediction error for %s: %s", image.url, e)
                raise ClassificationError(image.url, e) from e
        return list(estimate.keypoints), list(predictions)

    def predict_url(self, image_url: str) -> PoseResult:
        model = self.cache.ensure_loaded()
        with self.fetcher.fetch(image_url) as image:
            keypoints, predictions = self.classify(image, model)

        detected_pose, confidence = select_top(predictions)
        if detected_pose is None:
            self.log.warning("No class scored above zero for %s", image_url)
        return PoseResult(
            detected_pose=detected_pose,
            confidence=confidence,
            predictions=predictions,
            keypoints=keypoints,
        )

    def process_item(self, item: Any) -> dict[str, Any]:
        image_url = extract_image_url(item)
        if image_url is None:
            err = MissingInputError(item)
            self.log.error("%s: %r", err.message, item)
            return wrap_item(FailureResult(error=err.message, item=item, include_item=True))

        try:
            result = self.predict_url(image_url)
        except PoseNodeError as e:
            return wrap_item(FailureResult(error=e.message, image_url=image_url))
        self.log.debug("%s -> %s (%.3f)", image_url, result.detected_pose, result.confidence)
        return wrap_item(result)

    def run(self, items: Iterable[Any]) -> list[dict[str, Any]]:
        items = list(items)
        self.log.info("Classifying %d item(s)", len(items))
        if self.max_workers == 1 or len(items) <= 1:
            return [self.process_item(item) for item in items]

        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="posenode") as pool:
            return list(pool.map(self.process_item, items))
