from __future__ import annotations

from typing import Any


class PoseNodeError(RuntimeError):
    """Base class for every failure the node reports per item."""

    def __init__(self, message: str, url: str | None = None, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.url = url
        self.cause = cause


class MissingInputError(PoseNodeError):
    def __init__(self, item: Any = None) -> None:
        super().__init__("Missing imageUrl in input")
        self.item = item


class ModelLoadError(PoseNodeError):
    """Model definition, metadata or estimator backend could not be loaded."""

    def __init__(self, location: str | None, cause: BaseException | str) -> None:
        reason = cause if isinstance(cause, str) else _describe(cause)
        where = f" from {location}" if location else ""
        super().__init__(
            f"Failed to load pose model{where}: {reason}",
            url=location,
            cause=cause if isinstance(cause, BaseException) else None,
        )
        self.location = location


class ImageFetchError(PoseNodeError):
    def __init__(self, url: str, cause: BaseException | str) -> None:
        reason = cause if isinstance(cause, str) else _describe(cause)
        super().__init__(
            f"Failed to load image {url}: {reason}",
            url=url,
            cause=cause if isinstance(cause, BaseException) else None,
        )


class ClassificationError(PoseNodeError):
    def __init__(self, url: str | None, cause: BaseException) -> None:
        super().__init__(f"Pose classification failed: {_describe(cause)}", url=url, cause=cause)


def _describe(exc: BaseException) -> str:
    text = str(exc).strip()
    return text or type(exc).__name__
