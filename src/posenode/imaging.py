from __future__ import annotations

import logging
import threading

import cv2
import numpy as np
import requests

from posenode.config import DEFAULT_FETCH_TIMEOUT, DEFAULT_USER_AGENT
from posenode.errors import ImageFetchError

logger = logging.getLogger(__name__)


class DecodedImage:
    """A decoded 3-channel BGR image that must be released after use."""

    def __init__(self, url: str, pixels: np.ndarray) -> None:
        self.url = url
        self._pixels: np.ndarray | None = pixels

    @property
    def pixels(self) -> np.ndarray:
        if self._pixels is None:
            raise RuntimeError(f"Image {self.url} has already been released")
        return self._pixels

    @property
    def released(self) -> bool:
        return self._pixels is None

    @property
    def shape(self) -> tuple[int, ...]:
        return tuple(self.pixels.shape)

    def release(self) -> None:
        self._pixels = None

    def __enter__(self) -> DecodedImage:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()


def decode_image(url: str, data: bytes) -> DecodedImage:
    if not data:
        raise ImageFetchError(url, "response body is empty")
    buf = np.frombuffer(data, dtype=np.uint8)
    try:
        pixels = cv2.imdecode(buf, cv2.IMREAD_COLOR)
    except cv2.error as e:
        raise ImageFetchError(url, e) from e
    if pixels is None:
        raise ImageFetchError(url, "content is not a decodable image")
    return DecodedImage(url, pixels)


class ImageFetcher:
    """HTTP image source; each worker thread gets its own ``requests.Session``."""

    def __init__(
        self,
        timeout: float = DEFAULT_FETCH_TIMEOUT,
        user_agent: str = DEFAULT_USER_AGENT,
        session: requests.Session | None = None,
    ) -> None:
        self.timeout = timeout
        self.headers = {"User-Agent": user_agent}
        self._shared_session = session
        self._local = threading.local()
        self._sessions: list[requests.Session] = []
        self._sessions_lock = threading.Lock()

    @property
    def session(self) -> requests.Session:
        if self._shared_session is not None:
            return self._shared_session
        session = getattr(self._local, "session", None)
        if session is None:
            session = requests.Session()
            self._local.session = session
            with self._sessions_lock:
                self._sessions.append(session)
        return session

    def fetch(self, url: str) -> DecodedImage:
        logger.debug("Fetching image %s", url)
        try:
            response = self.session.get(url, headers=self.headers, timeout=self.timeout)
            response.raise_for_status()
        except (requests.RequestException, ValueError) as e:
            # urllib3 raises LocationParseError (a ValueError) for hosts it cannot parse.
            logger.error("Error loading image %s: %s", url, e)
            raise ImageFetchError(url, e) from e

        try:
            image = decode_image(url, response.content)
        except ImageFetchError as e:
            logger.error("Error decoding image %s: %s", url, e.message)
            raise
        logger.debug("Decoded image %s with shape %s", url, image.shape)
        return image

    def close(self) -> None:
        if self._shared_session is not None:
            self._shared_session.close()
        with self._sessions_lock:
            for session in self._sessions:
                session.close()
            self._sessions.clear()
