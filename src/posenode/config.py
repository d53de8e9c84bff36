from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Mapping

import yaml

DEFAULT_BACKEND = "mediapipe"
DEFAULT_FETCH_TIMEOUT = 10.0
DEFAULT_USER_AGENT = "posenode/0.1"
DEFAULT_LANDMARKER_PATH = "models/mediapipe/pose_landmarker_lite.task"
LANDMARKER_URL = (
    "https://storage.googleapis.com/mediapipe-models/pose_landmarker/"
    "pose_landmarker_lite/float16/latest/pose_landmarker_lite.task"
)

ENV_MODEL_URL = "POSENODE_MODEL_URL"
ENV_METADATA_URL = "POSENODE_METADATA_URL"
ENV_BACKEND = "POSENODE_BACKEND"


@dataclass(frozen=True)
class NodeConfig:
    """Settings fixed at process start.

    Attributes:
        model_url: Location of ``model.json``, or a base directory ending in
            ``/`` that holds it.
        metadata_url: Location of ``metadata.json``; derived from
            ``model_url`` when unset.
        backend: Pose estimator backend name.
        backend_options: Keyword options for every backend, keyed by name.
        fetch_timeout: Seconds before an HTTP request is abandoned.
        user_agent: User-Agent header sent with every request.
        max_workers: Items processed concurrently by the pipeline.
    """

    model_url: str | None = None
    metadata_url: str | None = None
    backend: str = DEFAULT_BACKEND
    backend_options: Mapping[str, dict] = field(default_factory=dict)
    fetch_timeout: float = DEFAULT_FETCH_TIMEOUT
    user_agent: str = DEFAULT_USER_AGENT
    max_workers: int = 1

    def backend_config(self, backend: str | None = None) -> dict:
        return dict(self.backend_options.get(backend or self.backend, {}) or {})

    def model_locations(self) -> tuple[str, str]:
        """Return ``(model_json_location, metadata_location)``."""
        if not self.model_url:
            raise ValueError(
                f"No model location configured. Set model.url in the config file, "
                f"{ENV_MODEL_URL}, or pass --model-url."
            )
        if self.model_url.endswith("/"):
            base = self.model_url
            model_json = base + "model.json"
        else:
            model_json = self.model_url
            base = model_json.rsplit("/", 1)[0] + "/" if "/" in model_json else ""
        metadata = self.metadata_url or base + "metadata.json"
        return model_json, metadata


def load_node_config(config_path: Path, env: Mapping[str, str] | None = None) -> NodeConfig:
    doc: dict[str, Any] = {}
    if config_path.exists():
        with config_path.open("r", encoding="utf-8") as f:
            doc = yaml.safe_load(f) or {}

    model = doc.get("model", {}) or {}
    estimator = doc.get("estimator", {}) or {}
    fetch = doc.get("fetch", {}) or {}
    pipeline = doc.get("pipeline", {}) or {}

    config = NodeConfig(
        model_url=model.get("url"),
        metadata_url=model.get("metadata_url"),
        backend=str(estimator.get("backend", DEFAULT_BACKEND)),
        backend_options=doc.get("backends", {}) or {},
        fetch_timeout=float(fetch.get("timeout_seconds", DEFAULT_FETCH_TIMEOUT)),
        user_agent=str(fetch.get("user_agent", DEFAULT_USER_AGENT)),
        max_workers=int(pipeline.get("max_workers", 1)),
    )
    return apply_env_overrides(config, os.environ if env is None else env)


def apply_env_overrides(config: NodeConfig, env: Mapping[str, str]) -> NodeConfig:
    overrides: dict[str, Any] = {}
    if env.get(ENV_MODEL_URL):
        overrides["model_url"] = env[ENV_MODEL_URL]
    if env.get(ENV_METADATA_URL):
        overrides["metadata_url"] = env[ENV_METADATA_URL]
    if env.get(ENV_BACKEND):
        overrides["backend"] = env[ENV_BACKEND]
    return replace(config, **overrides) if overrides else config
