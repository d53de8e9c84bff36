"""Dense pose classifier evaluated with numpy.

The classifier head reads flattened, image-normalised keypoints and produces
one probability per class label. Weights come from a ``model.json`` document
and labels from a Teachable Machine style ``metadata.json``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Sequence

import numpy as np

from posenode.estimators.base import KEYPOINT_PARTS
from posenode.records import Keypoint, PredictionItem

FEATURES_PER_KEYPOINT = 3
FEATURE_SIZE = len(KEYPOINT_PARTS) * FEATURES_PER_KEYPOINT


def _softmax(x: np.ndarray) -> np.ndarray:
    shifted = np.exp(x - np.max(x))
    return shifted / shifted.sum()


def _sigmoid(x: np.ndarray) -> np.ndarray:
    return 1.0 / (1.0 + np.exp(-x))


ACTIVATIONS: dict[str, Callable[[np.ndarray], np.ndarray]] = {
    "linear": lambda x: x,
    "relu": lambda x: np.maximum(x, 0.0),
    "sigmoid": _sigmoid,
    "tanh": np.tanh,
    "softmax": _softmax,
}


@dataclass(frozen=True)
class ModelMetadata:
    labels: list[str]
    model_name: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)


def parse_metadata(doc: Any) -> ModelMetadata:
    if not isinstance(doc, dict):
        raise ValueError("metadata document must be a JSON object")
    labels = doc.get("labels")
    if not isinstance(labels, list) or not labels:
        raise ValueError("metadata document has no 'labels' list")
    if not all(isinstance(label, str) for label in labels):
        raise ValueError("metadata labels must be strings")

    extra = {k: v for k, v in doc.items() if k not in ("labels", "modelName")}
    return ModelMetadata(labels=list(labels), model_name=doc.get("modelName"), extra=extra)


@dataclass
class DenseLayer:
    weights: np.ndarray
    bias: np.ndarray
    activation: str = "linear"

    @property
    def input_size(self) -> int:
        return int(self.weights.shape[0])

    @property
    def output_size(self) -> int:
        return int(self.weights.shape[1])

    def __call__(self, x: np.ndarray) -> np.ndarray:
        return ACTIVATIONS[self.activation](x @ self.weights + self.bias)


class DenseClassifier:
    def __init__(self, layers: Sequence[DenseLayer]) -> None:
        if not layers:
            raise ValueError("classifier needs at least one layer")
        for prev, nxt in zip(layers, layers[1:]):
            if prev.output_size != nxt.input_size:
                raise ValueError(
                    f"layer widths do not chain: {prev.output_size} outputs feed {nxt.input_size} inputs"
                )
        self.layers = list(layers)

    @property
    def input_size(self) -> int:
        return self.layers[0].input_size

    @property
    def num_classes(self) -> int:
        return self.layers[-1].output_size

    @classmethod
    def from_document(cls, doc: Any) -> DenseClassifier:
        if not isinstance(doc, dict) or not isinstance(doc.get("layers"), list):
            raise ValueError("model document must be a JSON object with a 'layers' list")

        layers = []
        for idx, layer_doc in enumerate(doc["layers"]):
            activation = str(layer_doc.get("activation", "linear")).lower()
            if activation not in ACTIVATIONS:
                raise ValueError(f"layer {idx}: unsupported activation '{activation}'")
            weights = np.asarray(layer_doc["weights"], dtype=np.float32)
            if weights.ndim != 2:
                raise ValueError(f"layer {idx}: weights must be a 2-D matrix, got shape {weights.shape}")
            bias = np.asarray(layer_doc.get("bias", np.zeros(weights.shape[1])), dtype=np.float32)
            if bias.shape != (weights.shape[1],):
                raise ValueError(f"layer {idx}: bias shape {bias.shape} does not match {weights.shape[1]} units")
            layers.append(DenseLayer(weights=weights, bias=bias, activation=activation))

        classifier = cls(layers)
        declared = doc.get("inputSize")
        if declared is not None and int(declared) != classifier.input_size:
            raise ValueError(f"inputSize {declared} does not match first layer width {classifier.input_size}")
        return classifier

    def predict_proba(self, features: np.ndarray) -> np.ndarray:
        x = np.asarray(features, dtype=np.float32).reshape(-1)
        if x.shape[0] != self.input_size:
            raise ValueError(f"expected {self.input_size} features, got {x.shape[0]}")
        for layer in self.layers:
            x = layer(x)
        return x


def keypoint_features(keypoints: Sequence[Keypoint], width: int, height: int) -> np.ndarray:
    """Flatten keypoints to ``(x / width, y / height, score)`` triples."""
    w = max(int(width), 1)
    h = max(int(height), 1)
    feats = np.zeros((len(keypoints), FEATURES_PER_KEYPOINT), dtype=np.float32)
    for i, kp in enumerate(keypoints):
        feats[i] = (kp.x / w, kp.y / h, kp.score)
    return feats.reshape(-1)


def to_prediction_items(labels: Sequence[str], probabilities: np.ndarray) -> list[PredictionItem]:
    probs = np.asarray(probabilities).reshape(-1)
    if len(labels) != probs.shape[0]:
        raise ValueError(f"model produced {probs.shape[0]} scores for {len(labels)} labels")
    return [PredictionItem(class_name=label, probability=float(p)) for label, p in zip(labels, probs)]
