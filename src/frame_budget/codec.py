"""Frame codec interface and an OpenCV JPEG implementation."""

from __future__ import annotations

import logging
import os
from collections.abc import Sequence
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Protocol, runtime_checkable

import cv2

from .models import BudgetAllocation, Frame, Resolution, ScoredFrame
from .tokens import DEFAULT_IMAGE_TOKEN_ESTIMATE, estimate_image_tokens, round_half_up

__all__ = [
    "FrameCodec",
    "JpegFrameCodec",
    "OptimizedFrame",
    "apply_codec",
    "fit_within",
]


@dataclass(frozen=True, slots=True)
class OptimizedFrame:
    """Result of encoding a frame for the downstream model."""

    locator: Path
    width: int
    height: int
    size_bytes: int
    token_estimate: int


@runtime_checkable
class FrameCodec(Protocol):
    """Resizes and encodes a selected frame at a target resolution and quality."""

    def optimize(
        self, frame: Frame, resolution: Resolution, quality: int
    ) -> OptimizedFrame:  # pragma: no cover - protocol definition
        ...


def fit_within(width: int, height: int, resolution: Resolution) -> tuple[int, int]:
    """Scale ``width`` x ``height`` to fit ``resolution``, keeping the aspect ratio.

    Frames already smaller than the target are left at their size.
    """
    if width <= resolution.width and height <= resolution.height:
        return width, height
    aspect = width / height
    target_width = resolution.width
    target_height = round_half_up(target_width / aspect)
    if target_height > resolution.height:
        target_height = resolution.height
        target_width = round_half_up(target_height * aspect)
    return max(1, target_width), max(1, target_height)


class JpegFrameCodec:
    """Write optimized JPEG copies of frames into ``output_dir``."""

    def __init__(self, output_dir: Path, *, logger: logging.Logger | None = None) -> None:
        """Bind the codec to the directory that receives optimized frames."""
        self.output_dir = output_dir
        self.logger = logger or logging.getLogger(__name__)

    def optimize(self, frame: Frame, resolution: Resolution, quality: int) -> OptimizedFrame:
        """Resize ``frame`` to fit ``resolution`` and encode it at ``quality``.

        Frames that cannot be written keep their original locator and are priced
        at their source size. Undecodable frames get the default token estimate.
        """
        image = cv2.imread(os.fspath(frame.locator), cv2.IMREAD_COLOR)
        if image is None:
            self.logger.warning(
                "codec.decode_failed",
                extra={"frame": str(frame.locator), "index": frame.index},
            )
            return self._fallback(frame, resolution)

        source_size = (image.shape[1], image.shape[0])
        width, height = fit_within(*source_size, resolution)
        if (width, height) != source_size:
            image = cv2.resize(image, (width, height), interpolation=cv2.INTER_AREA)

        destination = self.output_dir / f"key_{frame.index:04d}.jpg"
        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)
            written = cv2.imwrite(
                str(destination), image, [int(cv2.IMWRITE_JPEG_QUALITY), int(quality)]
            )
        except (OSError, cv2.error) as exc:
            self.logger.warning(
                "codec.encode_failed",
                extra={"frame": str(frame.locator), "error": str(exc)},
            )
            return self._fallback(frame, resolution, source_size)
        if not written:
            self.logger.warning(
                "codec.encode_failed",
                extra={"frame": str(frame.locator), "destination": str(destination)},
            )
            return self._fallback(frame, resolution, source_size)

        return OptimizedFrame(
            locator=destination,
            width=width,
            height=height,
            size_bytes=destination.stat().st_size,
            token_estimate=estimate_image_tokens(width, height),
        )

    @staticmethod
    def _fallback(
        frame: Frame, resolution: Resolution, source_size: tuple[int, int] | None = None
    ) -> OptimizedFrame:
        """Describe ``frame`` unchanged, pricing it by ``source_size`` when known."""
        try:
            size_bytes = frame.locator.stat().st_size
        except OSError:
            size_bytes = 0
        if source_size is None:
            width, height = resolution.width, resolution.height
            token_estimate = DEFAULT_IMAGE_TOKEN_ESTIMATE
        else:
            width, height = source_size
            token_estimate = estimate_image_tokens(width, height)
        return OptimizedFrame(
            locator=frame.locator,
            width=width,
            height=height,
            size_bytes=size_bytes,
            token_estimate=token_estimate,
        )


def apply_codec(
    frames: Sequence[ScoredFrame],
    codec: FrameCodec,
    allocation: BudgetAllocation,
) -> list[ScoredFrame]:
    """Optimize every frame and record its new locator and token estimate."""
    optimized: list[ScoredFrame] = []
    for frame in frames:
        result = codec.optimize(frame, allocation.frame_resolution, allocation.frame_quality)
        optimized.append(
            replace(
                frame,
                optimized_locator=result.locator,
                token_estimate=result.token_estimate,
            )
        )
    return optimized
