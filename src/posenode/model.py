from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Any, Callable

import numpy as np
import requests

from posenode.classifier import (
    FEATURE_SIZE,
    DenseClassifier,
    ModelMetadata,
    keypoint_features,
    parse_metadata,
    to_prediction_items,
)
from posenode.config import NodeConfig
from posenode.errors import ModelLoadError
from posenode.estimators.base import BasePoseEstimator, PoseEstimate
from posenode.estimators.factory import build_estimator
from posenode.records import PredictionItem

logger = logging.getLogger(__name__)


def is_remote(location: str) -> bool:
    return location.startswith(("http://", "https://"))


def read_document(
    location: str,
    timeout: float,
    user_agent: str,
    session: requests.Session | None = None,
) -> Any:
    """Read a JSON document from an http(s) URL or a local path."""
    logger.debug("Reading model document %s", location)
    try:
        if is_remote(location):
            http = session or requests
            response = http.get(location, headers={"User-Agent": user_agent}, timeout=timeout)
            response.raise_for_status()
            return response.json()
        with Path(location).open("r", encoding="utf-8") as f:
            return json.load(f)
    except (requests.RequestException, OSError, ValueError) as e:
        raise ModelLoadError(location, e) from e


class PoseModel:
    """Pose estimator plus classifier head; shared read-only once loaded."""

    def __init__(
        self,
        estimator: BasePoseEstimator,
        classifier: DenseClassifier,
        metadata: ModelMetadata,
    ) -> None:
        self.estimator = estimator
        self.classifier = classifier
        self.metadata = metadata

    @property
    def labels(self) -> list[str]:
        return self.metadata.labels

    @property
    def backend(self) -> str:
        return self.estimator.name

    def estimate_pose(self, frame_bgr: np.ndarray) -> PoseEstimate:
        return self.estimator.estimate(frame_bgr)

    def predict(self, estimate: PoseEstimate) -> list[PredictionItem]:
        features = keypoint_features(estimate.keypoints, estimate.width, estimate.height)
        probabilities = self.classifier.predict_proba(features)
        return to_prediction_items(self.labels, probabilities)

    def close(self) -> None:
        self.estimator.close()


def load_pose_model(
    config: NodeConfig,
    session: requests.Session | None = None,
    estimator_builder: Callable[[str, dict | None], BasePoseEstimator] = build_estimator,
) -> PoseModel:
    try:
        model_location, metadata_location = config.model_locations()
    except ValueError as e:
        raise ModelLoadError(None, e) from e

    model_doc = read_document(model_location, config.fetch_timeout, config.user_agent, session)
    metadata_doc = read_document(metadata_location, config.fetch_timeout, config.user_agent, session)

    try:
        classifier = DenseClassifier.from_document(model_doc)
    except (ValueError, KeyError, TypeError, AttributeError) as e:
        raise ModelLoadError(model_location, e) from e
    try:
        metadata = parse_metadata(metadata_doc)
    except ValueError as e:
        raise ModelLoadError(metadata_location, e) from e

    if classifier.input_size != FEATURE_SIZE:
        raise ModelLoadError(
            model_location,
            f"classifier expects {classifier.input_size} inputs but keypoints provide {FEATURE_SIZE}",
        )
    if classifier.num_classes != len(metadata.labels):
        raise ModelLoadError(
            metadata_location,
            f"metadata lists {len(metadata.labels)} labels but the classifier has {classifier.num_classes} outputs",
        )

    try:
        estimator = estimator_builder(config.backend, config.backend_config())
    except Exception as e:
        raise ModelLoadError(None, f"estimator backend '{config.backend}' unavailable: {e}") from e

    return PoseModel(estimator=estimator, classifier=classifier, metadata=metadata)


class ModelCache:
    """Loads the pose model on first use and hands out the same instance after."""

    def __init__(
        self,
        config: NodeConfig,
        loader: Callable[[NodeConfig], PoseModel] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.config = config
        self._loader = loader or load_pose_model
        self._log = logger or logging.getLogger(__name__)
        self._lock = threading.Lock()
        self._model: PoseModel | None = None

    @property
    def is_loaded(self) -> bool:
        return self._model is not None

    def ensure_loaded(self) -> PoseModel:
        model = self._model
        if model is not None:
            return model

        with self._lock:
            if self._model is not None:
                return self._model

            self._log.info("Loading pose classification model (backend=%s)...", self.config.backend)
            try:
                model = self._loader(self.config)
            except ModelLoadError as e:
                self._log.error("Error loading model: %s", e.message)
                raise
            except Exception as e:
                self._log.error("Error loading model: %s", e)
                raise ModelLoadError(self.config.model_url, e) from e

            self._model = model
            self._log.info("Model loaded successfully")
            return model

    def close(self) -> None:
        with self._lock:
            if self._model is not None:
                self._model.close()
                self._model = None
