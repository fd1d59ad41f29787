"""Token estimation heuristics for images and text."""

from __future__ import annotations

import math
from typing import Final

IMAGE_BASE_TOKENS: Final[int] = 85
IMAGE_TOKENS_PER_KILOPIXEL: Final[float] = 1.5
CHARS_PER_TOKEN: Final[int] = 4
DEFAULT_IMAGE_TOKEN_ESTIMATE: Final[int] = 1200


def round_half_up(value: float) -> int:
    """Round to the nearest integer with halves going up, so ``2.5`` becomes ``3``."""
    return math.floor(value + 0.5)


def estimate_image_tokens(width: int, height: int) -> int:
    """Estimate the tokens consumed by an image of ``width`` x ``height`` pixels.

    Roughly 85 tokens of fixed overhead plus 1.5 tokens per thousand pixels,
    so a 1024x576 frame costs about 970 tokens.
    """
    pixels = width * height
    return math.ceil(IMAGE_BASE_TOKENS + (pixels / 1000) * IMAGE_TOKENS_PER_KILOPIXEL)


def estimate_text_tokens(text: str | None) -> int:
    """Estimate tokens for ``text`` at four characters per token."""
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def format_token_estimate(tokens: int | float) -> str:
    """Return a compact display form such as ``~1.2k`` or ``~850``."""
    if tokens >= 1000:
        return f"~{tokens / 1000:.1f}k"
    return f"~{int(tokens)}"


__all__ = [
    "CHARS_PER_TOKEN",
    "DEFAULT_IMAGE_TOKEN_ESTIMATE",
    "estimate_image_tokens",
    "estimate_text_tokens",
    "format_token_estimate",
    "round_half_up",
]
