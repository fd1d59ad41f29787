"""Entropy and reasoning-value heuristics for model-aware selection."""

from __future__ import annotations

from enum import Enum
from typing import Final

from ..models import CausalFocus, Frame, ModelProfile
from .diff import MAX_DIFF, DiffFunction, get_diff_function

__all__ = [
    "FramePosition",
    "drop_priority",
    "entropy_from_diff",
    "entropy_score",
    "position_of",
    "reasoning_value",
]

BASE_ENTROPY: Final[float] = 0.5
BOUNDARY_BONUS: Final[float] = 0.2
MIDPOINT_BONUS: Final[float] = 0.1
MAX_CHANGE_BONUS: Final[float] = 0.3
CAUSAL_MIDDLE_BOOST: Final[float] = 1.2


class FramePosition(str, Enum):
    """Coarse location of a frame within a capture."""

    START = "start"
    MIDDLE = "middle"
    END = "end"


def position_of(position: int, total: int) -> FramePosition:
    """Classify the frame at ``position`` among ``total`` frames."""
    if position == 0:
        return FramePosition.START
    if position == total - 1:
        return FramePosition.END
    return FramePosition.MIDDLE


def _clamp(value: float) -> float:
    return min(1.0, max(0.0, value))


def entropy_from_diff(index: int, total_frames: int, diff_score: float | None) -> float:
    """Score information content from temporal position and change magnitude.

    Frames in the first or last tenth of the capture gain 0.2, frames around the
    midpoint gain 0.1, and a change from the previous frame adds up to 0.3.
    ``diff_score`` is ``None`` for a frame without predecessor.
    """
    score = BASE_ENTROPY
    relative = index / total_frames if total_frames > 0 else 0.0
    if relative < 0.1:
        score += BOUNDARY_BONUS
    if relative > 0.9:
        score += BOUNDARY_BONUS
    if 0.4 < relative < 0.6:
        score += MIDPOINT_BONUS
    if diff_score is not None:
        score += min(diff_score / MAX_DIFF, MAX_CHANGE_BONUS)
    return _clamp(score)


def entropy_score(
    frame: Frame,
    prev_frame: Frame | None,
    total_frames: int,
    *,
    diff: DiffFunction | None = None,
) -> float:
    """Return the entropy score of ``frame`` in ``[0, 1]``."""
    diff_score = None
    if prev_frame is not None:
        diff_score = (diff or get_diff_function())(prev_frame, frame)
    return entropy_from_diff(frame.index, total_frames, diff_score)


def reasoning_value(entropy: float, position: FramePosition, profile: ModelProfile) -> float:
    """Adjust ``entropy`` for the target model's visual bias and causal focus."""
    value = entropy * (0.5 + profile.context_bias.visual)
    if (
        position == FramePosition.MIDDLE
        and profile.prompt_style.causal_focus_level == CausalFocus.HIGH
    ):
        value *= CAUSAL_MIDDLE_BOOST
    return _clamp(value)


def drop_priority(value: float, *, anchor: bool = False) -> float:
    """Return the eviction priority for a frame; anchors are never evicted."""
    if anchor:
        return 0.0
    return _clamp(1.0 - value)
