from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import Any

import requests

from posenode.config import DEFAULT_LANDMARKER_PATH, LANDMARKER_URL, NodeConfig, load_node_config
from posenode.errors import ModelLoadError
from posenode.estimators.factory import SUPPORTED_BACKENDS
from posenode.imaging import ImageFetcher
from posenode.model import ModelCache, read_document
from posenode.pipeline import PredictionPipeline


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="posenode: pose classification workflow node")
    parser.add_argument("--config", default="configs/node.yaml", help="Node config YAML")
    parser.add_argument("--model-url", default=None, help="Location of model.json (or its base directory ending in /)")
    parser.add_argument("--metadata-url", default=None, help="Location of metadata.json")
    parser.add_argument("--backend", default=None, choices=SUPPORTED_BACKENDS, help="Pose estimator backend")
    parser.add_argument("--verbose", action="store_true", help="Log at DEBUG level")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Classify a batch of input items")
    run.add_argument("--input", required=True, help='JSON array or JSONL file of items, or "-" for stdin')
    run.add_argument("--output", default=None, help="Where to write result items (default: stdout)")
    run.add_argument("--workers", type=int, default=None, help="Items processed concurrently")

    one = sub.add_parser("classify-url", help="Classify one or more image URLs")
    one.add_argument("urls", nargs="+", help="Image URLs")

    sub.add_parser("inspect-model", help="Load the model and print its labels")

    fetch = sub.add_parser("fetch-model", help="Copy the model documents to a local directory")
    fetch.add_argument("--output-dir", default="models/classifier", help="Destination directory")
    fetch.add_argument(
        "--with-landmarker",
        action="store_true",
        help="Also download the MediaPipe pose landmarker used by the Tasks backend",
    )

    return parser.parse_args(argv)


def resolve_config(args: argparse.Namespace) -> NodeConfig:
    config = load_node_config(Path(args.config))
    overrides: dict[str, Any] = {}
    if args.model_url:
        overrides["model_url"] = args.model_url
    if args.metadata_url:
        overrides["metadata_url"] = args.metadata_url
    if args.backend:
        overrides["backend"] = args.backend
    if getattr(args, "workers", None):
        overrides["max_workers"] = args.workers
    return replace(config, **overrides) if overrides else config


def read_items(text: str) -> list[Any]:
    """Parse a JSON array, a single JSON object, or JSON lines."""
    stripped = text.strip()
    if not stripped:
        return []
    try:
        doc = json.loads(stripped)
    except json.JSONDecodeError:
        return [json.loads(line) for line in stripped.splitlines() if line.strip()]
    if isinstance(doc, list):
        return doc
    return [doc]


def build_pipeline(config: NodeConfig) -> PredictionPipeline:
    cache = ModelCache(config)
    fetcher = ImageFetcher(timeout=config.fetch_timeout, user_agent=config.user_agent)
    return PredictionPipeline(cache=cache, fetcher=fetcher, max_workers=config.max_workers)


def _run_items(config: NodeConfig, items: list[Any]) -> list[dict]:
    pipeline = build_pipeline(config)
    try:
        return pipeline.run(items)
    finally:
        pipeline.cache.close()
        pipeline.fetcher.close()


def run_batch(args: argparse.Namespace) -> int:
    config = resolve_config(args)
    if args.input == "-":
        text = sys.stdin.read()
    else:
        text = Path(args.input).read_text(encoding="utf-8")
    items = read_items(text)
    results = _run_items(config, items)

    payload = json.dumps(results, indent=2)
    if args.output:
        out_path = Path(args.output)
        out_path.parent.mkdir(parents=True, exist_ok=True)
        out_path.write_text(payload + "\n", encoding="utf-8")
    else:
        print(payload)

    failed = sum(1 for r in results if not r["json"]["success"])
    print(f"Classified {len(results)} item(s): {len(results) - failed} ok, {failed} failed", file=sys.stderr)
    if args.output:
        print(f"Results: {args.output}", file=sys.stderr)
    return 1 if failed else 0


def classify_urls(args: argparse.Namespace) -> int:
    config = resolve_config(args)
    results = _run_items(config, [{"json": {"imageUrl": url}} for url in args.urls])
    for url, result in zip(args.urls, results):
        record = result["json"]
        if record["success"]:
            print(f"{url}: {record['detectedPose']} ({record['confidence']:.3f})")
            for pred in record["allPredictions"]:
                print(f"  {pred['className']}: {pred['percentage']}")
        else:
            print(f"{url}: ERROR {record['error']}")
    return 0 if all(r["json"]["success"] for r in results) else 1


def inspect_model(args: argparse.Namespace) -> int:
    config = resolve_config(args)
    cache = ModelCache(config)
    try:
        model = cache.ensure_loaded()
    except ModelLoadError as e:
        print(e.message)
        return 1
    try:
        model_location, metadata_location = config.model_locations()
        print(f"Model: {model_location}")
        print(f"Metadata: {metadata_location}")
        if model.metadata.model_name:
            print(f"Name: {model.metadata.model_name}")
        print(f"Estimator backend: {model.backend}")
        print(f"Input size: {model.classifier.input_size}")
        print("Labels:")
        for idx, label in enumerate(model.labels):
            print(f"  [{idx}] {label}")
    finally:
        cache.close()
    return 0


def fetch_model(args: argparse.Namespace) -> int:
    config = resolve_config(args)
    model_location, metadata_location = config.model_locations()
    out_dir = Path(args.output_dir)
    out_dir.mkdir(parents=True, exist_ok=True)

    for location, name in ((model_location, "model.json"), (metadata_location, "metadata.json")):
        try:
            doc = read_document(location, config.fetch_timeout, config.user_agent)
        except ModelLoadError as e:
            print(e.message)
            return 1
        target = out_dir / name
        with target.open("w", encoding="utf-8") as f:
            json.dump(doc, f)
        print(f"Saved {location} -> {target}")

    if args.with_landmarker:
        landmarker_path = Path(config.backend_config("mediapipe").get("task_model_path") or DEFAULT_LANDMARKER_PATH)
        landmarker_path.parent.mkdir(parents=True, exist_ok=True)
        print(f"Downloading pose landmarker to {landmarker_path} ...")
        with requests.get(LANDMARKER_URL, stream=True, timeout=config.fetch_timeout) as response:
            response.raise_for_status()
            with landmarker_path.open("wb") as f:
                for chunk in response.iter_content(chunk_size=1 << 16):
                    f.write(chunk)
        print("Done.")

    print(f"Use it offline with: --model-url {out_dir.as_posix()}/")
    return 0


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s | %(name)s | %(message)s",
    )
    if args.command == "run":
        return run_batch(args)
    if args.command == "classify-url":
        return classify_urls(args)
    if args.command == "inspect-model":
        return inspect_model(args)
    if args.command == "fetch-model":
        return fetch_model(args)
    raise ValueError(f"Unknown command: {args.command}")


if __name__ == "__main__":
    raise SystemExit(main())
