"""Perceptual difference scoring between pairs of captured frames."""

from __future__ import annotations

import logging
import os
from collections.abc import Callable, Sequence
from concurrent.futures import Future, ThreadPoolExecutor
from enum import Enum
from typing import Any, Final, cast

import cv2
import numpy as np
from skimage.metrics import structural_similarity

from ..models import Frame

__all__ = [
    "DEFAULT_CHANNEL_THRESHOLD",
    "MAX_DIFF",
    "DiffFunction",
    "DiffMethod",
    "consecutive_diffs",
    "frame_diff",
    "get_diff_function",
    "ssim_diff",
]

_LOGGER = logging.getLogger(__name__)

FrameArray = np.ndarray[Any, np.dtype[np.uint8]]
DiffFunction = Callable[[Frame, Frame], float]
ImagePath = str | os.PathLike[str]

DEFAULT_CHANNEL_THRESHOLD: Final[int] = 25
MAX_DIFF: Final[float] = 100.0
GRAYSCALE_DIMENSION = 2
_SSIM = cast(Callable[..., float], structural_similarity)


class DiffMethod(str, Enum):
    """Available frame difference metrics."""

    PIXEL = "pixel"
    SSIM = "ssim"


def _read_color(path: ImagePath) -> FrameArray | None:
    """Decode ``path`` as a 3-channel image, returning ``None`` when unreadable."""
    try:
        image = cv2.imread(os.fspath(path), cv2.IMREAD_COLOR)
    except cv2.error:
        return None
    if image is None or image.size == 0:
        return None
    return cast(FrameArray, image)


def _read_pair(path_a: ImagePath, path_b: ImagePath) -> tuple[FrameArray, FrameArray] | None:
    """Decode both images and shrink them to their common dimensions."""
    image_a = _read_color(path_a)
    image_b = _read_color(path_b)
    if image_a is None or image_b is None:
        _LOGGER.warning(
            "diff.decode_failed",
            extra={"frame_a": os.fspath(path_a), "frame_b": os.fspath(path_b)},
        )
        return None

    height = min(image_a.shape[0], image_b.shape[0])
    width = min(image_a.shape[1], image_b.shape[1])
    return _fit(image_a, width, height), _fit(image_b, width, height)


def _fit(image: FrameArray, width: int, height: int) -> FrameArray:
    if image.shape[0] == height and image.shape[1] == width:
        return image
    return cast(FrameArray, cv2.resize(image, (width, height), interpolation=cv2.INTER_AREA))


def frame_diff(
    path_a: ImagePath,
    path_b: ImagePath,
    *,
    channel_threshold: int = DEFAULT_CHANNEL_THRESHOLD,
) -> float:
    """Return the percentage of pixels that differ noticeably between two images.

    Both images are reduced to the smaller width and height of the pair. A pixel
    counts as changed when the sum of its absolute per-channel differences
    exceeds ``channel_threshold * 3``.

    Args:
        path_a: First image.
        path_b: Second image.
        channel_threshold: Per-channel intensity threshold in ``[0, 255]``.

    Returns:
        Changed pixel percentage in ``[0, 100]``. Images that cannot be decoded
        score ``100`` so they are never silently excluded.
    """
    pair = _read_pair(path_a, path_b)
    if pair is None:
        return MAX_DIFF
    image_a, image_b = pair

    delta = np.abs(image_a.astype(np.int16) - image_b.astype(np.int16)).sum(axis=2)
    changed = int(np.count_nonzero(delta > channel_threshold * 3))
    total = delta.size
    if total == 0:
        return MAX_DIFF
    return changed / total * 100.0


def ssim_diff(path_a: ImagePath, path_b: ImagePath) -> float:
    """Return ``100 * (1 - SSIM)`` between two images, clamped to ``[0, 100]``.

    Decode failures score ``100`` like :func:`frame_diff`.
    """
    pair = _read_pair(path_a, path_b)
    if pair is None:
        return MAX_DIFF
    gray_a, gray_b = (_to_gray(image) for image in pair)
    # structural_similarity needs a 7x7 window; tiny thumbnails fall back to the pixel metric.
    if min(gray_a.shape) < 7:
        return frame_diff(path_a, path_b)
    similarity = _SSIM(gray_a, gray_b, data_range=255)
    return float(min(MAX_DIFF, max(0.0, (1.0 - similarity) * 100.0)))


def get_diff_function(
    method: DiffMethod | str = DiffMethod.PIXEL,
    *,
    channel_threshold: int = DEFAULT_CHANNEL_THRESHOLD,
) -> DiffFunction:
    """Return a frame-to-frame difference function for ``method``."""
    resolved = DiffMethod(method)
    if resolved is DiffMethod.SSIM:
        return lambda previous, current: ssim_diff(previous.locator, current.locator)
    return lambda previous, current: frame_diff(
        previous.locator, current.locator, channel_threshold=channel_threshold
    )


def consecutive_diffs(
    frames: Sequence[Frame],
    diff: DiffFunction | None = None,
    *,
    max_workers: int = 1,
) -> list[float]:
    """Score every frame against its predecessor.

    Args:
        frames: Frames in chronological order.
        diff: Pairwise difference function; defaults to the pixel metric.
        max_workers: Pairs are independent, so values above one spread the
            decoding across a thread pool.

    Returns:
        One score per frame. The first frame has no predecessor and scores ``0``.
    """
    if not frames:
        return []
    scorer = diff or get_diff_function()
    pairs = list(zip(frames[:-1], frames[1:], strict=True))

    if max_workers <= 1 or len(pairs) <= 1:
        scores = [scorer(previous, current) for previous, current in pairs]
    else:
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            futures: list[Future[float]] = [
                executor.submit(scorer, previous, current) for previous, current in pairs
            ]
            scores = [future.result() for future in futures]

    _LOGGER.debug(
        "diff.consecutive_complete",
        extra={"frames": len(frames), "workers": max(1, max_workers)},
    )
    return [0.0, *scores]


def _to_gray(frame: FrameArray) -> FrameArray:
    """Convert an image to grayscale if it is not already."""
    if frame.ndim == GRAYSCALE_DIMENSION:
        return frame
    return cast(FrameArray, cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY))
