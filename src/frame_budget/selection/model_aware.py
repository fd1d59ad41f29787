"""Model-aligned frame selection and budget-driven eviction.

Frames are ranked by their expected reasoning value for the target model rather
than by raw visual change alone:

- early frames establish the baseline state,
- mid-sequence frames capture divergence,
- late frames capture the stabilised failure,
- low-value frames are the first to go under budget pressure.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Final

from ..models import Frame, ModelProfile, ScoredFrame
from ..tokens import round_half_up
from .diff import MAX_DIFF, DiffFunction, consecutive_diffs
from .scoring import (
    FramePosition,
    drop_priority,
    entropy_from_diff,
    position_of,
    reasoning_value,
)

__all__ = [
    "BASELINE_REASON",
    "FINAL_STATE_REASON",
    "GAP_FILL_REASON",
    "MAX_GAP_FRACTION",
    "drop_frames_for_budget",
    "ensure_temporal_coverage",
    "select_model_aligned_frames",
]

_LOGGER = logging.getLogger(__name__)

MAX_GAP_FRACTION: Final[float] = 0.25
HIGH_VALUE_THRESHOLD: Final[float] = 0.7
STATE_CHANGE_THRESHOLD: Final[float] = 0.5

BASELINE_REASON: Final = "Start of capture - baseline state"
FINAL_STATE_REASON: Final = "End of capture - final failure state"
GAP_FILL_REASON: Final = "Coverage frame - filling temporal gap"


@dataclass(frozen=True, slots=True)
class _Score:
    diff_score: float
    entropy: float
    value: float
    position: FramePosition


def _candidate_reason(score: _Score) -> str:
    if score.value > HIGH_VALUE_THRESHOLD:
        density = round_half_up(score.entropy * 100)
        return f"High-entropy transition - {density}% information density"
    if score.entropy > STATE_CHANGE_THRESHOLD:
        return "State change detected - temporal divergence point"
    return "Coverage frame - maintains temporal continuity"


def ensure_temporal_coverage(
    selected: Sequence[int], total_frames: int, max_count: int
) -> list[int]:
    """Insert frames into gaps wider than a quarter of the capture.

    Args:
        selected: Chosen frame positions.
        total_frames: Number of frames in the capture.
        max_count: Ceiling on the number of positions returned.

    Returns:
        Sorted positions, including the gap fillers. Each filler is the unselected
        position closest to the midpoint of the oversized gap.
    """
    result = sorted(set(selected))
    max_gap = total_frames * MAX_GAP_FRACTION

    while len(result) < max_count:
        filler: int | None = None
        for left, right in zip(result, result[1:], strict=False):
            if right - left > max_gap and right - left > 1:
                midpoint = (left + right) / 2
                filler = min(
                    range(left + 1, right),
                    key=lambda position, mid=midpoint: (abs(position - mid), position),
                )
                break
        if filler is None:
            break
        result.append(filler)
        result.sort()

    return result


def select_model_aligned_frames(
    frames: Sequence[Frame],
    profile: ModelProfile,
    target_count: int,
    *,
    diff: DiffFunction | None = None,
    max_workers: int = 1,
) -> list[ScoredFrame]:
    """Select the frames with the highest reasoning value for ``profile``.

    Args:
        frames: Extracted frames in chronological order.
        profile: Target model profile.
        target_count: Maximum number of frames to return.
        diff: Pairwise difference function; defaults to the pixel metric.
        max_workers: Thread pool size used while diffing.

    Returns:
        Chronologically ordered frames, anchored by the first and last frame,
        never longer than ``target_count`` and free of duplicates.

    Raises:
        ValueError: If ``frames`` is empty or ``target_count`` cannot hold both anchors.
    """
    total = len(frames)
    if total == 0:
        raise ValueError("At least one frame is required for model-aligned selection")
    if total == 1:
        return [
            ScoredFrame.from_frame(
                frames[0],
                reason=BASELINE_REASON,
                entropy_score=entropy_from_diff(frames[0].index, 1, None),
                token_estimate=profile.image_token_estimate,
                drop_priority=0.0,
                is_anchor=True,
            )
        ]
    if target_count < 2:
        raise ValueError("target_count must be at least 2 to keep both anchor frames")

    diffs = consecutive_diffs(frames, diff, max_workers=max_workers)
    scores: list[_Score] = []
    for position, frame in enumerate(frames):
        diff_score = diffs[position] if position > 0 else None
        entropy = entropy_from_diff(frame.index, total, diff_score)
        location = position_of(position, total)
        scores.append(
            _Score(
                diff_score=min(MAX_DIFF, max(0.0, diff_score or 0.0)),
                entropy=entropy,
                value=reasoning_value(entropy, location, profile),
                position=location,
            )
        )

    last = total - 1
    interior = sorted(range(1, last), key=lambda position: scores[position].value, reverse=True)
    candidates = interior[: target_count - 2]
    reasons: dict[int, str] = {0: BASELINE_REASON, last: FINAL_STATE_REASON}
    for position in candidates:
        reasons[position] = _candidate_reason(scores[position])

    chosen = ensure_temporal_coverage([0, *candidates, last], total, target_count)

    selected: list[ScoredFrame] = []
    for position in chosen:
        score = scores[position]
        anchor = score.position is not FramePosition.MIDDLE
        selected.append(
            ScoredFrame.from_frame(
                frames[position],
                diff_score=score.diff_score,
                reason=reasons.get(position, GAP_FILL_REASON),
                entropy_score=score.entropy,
                reasoning_value=score.value,
                drop_priority=drop_priority(score.value, anchor=anchor),
                token_estimate=profile.image_token_estimate,
                is_anchor=anchor,
            )
        )

    _LOGGER.info(
        "selection.model_aligned_complete",
        extra={
            "profile": profile.name,
            "extracted": total,
            "selected": len(selected),
            "gap_fills": len(chosen) - len(candidates) - 2,
        },
    )
    return selected


def drop_frames_for_budget(frames: Sequence[ScoredFrame], target_count: int) -> list[ScoredFrame]:
    """Evict the highest drop-priority frames until ``target_count`` remain.

    Anchor frames sort ahead of everything else, so they survive whenever
    ``target_count`` is at least two.
    """
    if len(frames) <= target_count:
        return list(frames)
    ranked = sorted(
        frames,
        key=lambda frame: (not frame.is_anchor, frame.drop_priority, frame.index),
    )
    kept = ranked[: max(0, target_count)]
    return sorted(kept, key=lambda frame: frame.index)
