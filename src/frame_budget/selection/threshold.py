"""Greedy key-frame selection driven by a visual-change threshold."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Final

from ..models import Frame, FrameSelectionResult, ScoredFrame
from ..tokens import round_half_up
from .diff import MAX_DIFF, DiffFunction, consecutive_diffs

__all__ = [
    "DEFAULT_DIFF_THRESHOLD",
    "DEFAULT_TARGET_COUNT",
    "select_evenly_spaced_frames",
    "select_key_frames",
    "selection_reason",
]

_LOGGER = logging.getLogger(__name__)

DEFAULT_TARGET_COUNT: Final[int] = 6
DEFAULT_DIFF_THRESHOLD: Final[float] = 3.0
MIN_ANCHORED_COUNT: Final[int] = 2

START_REASON: Final = "Start of capture"
END_REASON: Final = "End of capture"

_REASON_BUCKETS: Final[tuple[tuple[float, str], ...]] = (
    (20.0, "major UI update"),
    (10.0, "significant change"),
    (5.0, "content update"),
)


def selection_reason(diff_score: float, *, is_first: bool = False, is_last: bool = False) -> str:
    """Describe why a frame with ``diff_score`` was selected."""
    if is_first:
        return START_REASON
    if is_last:
        return END_REASON
    label = "minor change"
    for floor, bucket in _REASON_BUCKETS:
        if diff_score >= floor:
            label = bucket
            break
    return f"{diff_score:.1f}% visual change - {label}"


def _result(key_frames: list[ScoredFrame], total: int) -> FrameSelectionResult:
    return FrameSelectionResult(
        key_frames=tuple(key_frames),
        total_extracted=total,
        selection_reasons=tuple(frame.reason for frame in key_frames),
    )


def _boundary_frame(frame: Frame, reason: str, diff_score: float = 0.0) -> ScoredFrame:
    return ScoredFrame.from_frame(
        frame,
        diff_score=diff_score,
        reason=reason,
        drop_priority=0.0,
        is_anchor=True,
    )


def _passthrough(frames: Sequence[Frame], middle_reason: str) -> list[ScoredFrame]:
    """Keep every frame, labelling the boundaries as anchors."""
    last = len(frames) - 1
    key_frames: list[ScoredFrame] = []
    for position, frame in enumerate(frames):
        if position == 0:
            key_frames.append(_boundary_frame(frame, START_REASON))
        elif position == last:
            key_frames.append(_boundary_frame(frame, END_REASON))
        else:
            key_frames.append(ScoredFrame.from_frame(frame, reason=middle_reason))
    return key_frames


def select_key_frames(
    frames: Sequence[Frame],
    target_count: int = DEFAULT_TARGET_COUNT,
    diff_threshold: float = DEFAULT_DIFF_THRESHOLD,
    *,
    diff: DiffFunction | None = None,
    max_workers: int = 1,
) -> FrameSelectionResult:
    """Select key frames using perceptual differences between neighbours.

    The first and last frames are always kept. Interior frames whose difference
    from their predecessor reaches ``diff_threshold`` compete on the size of
    that difference for the remaining ``target_count - 2`` slots, and any
    shortfall is filled with evenly spaced interior frames.

    Args:
        frames: Extracted frames in chronological order.
        target_count: Number of frames to return.
        diff_threshold: Minimum change percentage for an interior candidate.
        diff: Pairwise difference function; defaults to the pixel metric.
        max_workers: Thread pool size used while diffing.

    Returns:
        The selection in chronological order with per-frame reasons.

    Raises:
        ValueError: If ``target_count`` cannot hold both anchors.
    """
    total = len(frames)
    if total == 0:
        return _result([], 0)

    if total <= target_count:
        return _result(_passthrough(frames, "Selected frame"), total)

    if target_count < MIN_ANCHORED_COUNT:
        raise ValueError("target_count must be at least 2 to keep both anchor frames")

    scores = consecutive_diffs(frames, diff, max_workers=max_workers)
    last = total - 1

    chosen: list[int] = [0, last]
    interior = [position for position in range(1, last) if scores[position] >= diff_threshold]
    interior.sort(key=lambda position: scores[position], reverse=True)
    chosen.extend(interior[: target_count - MIN_ANCHORED_COUNT])

    if len(chosen) < target_count:
        remaining = target_count - len(chosen)
        taken = set(chosen)
        step = total // (remaining + 1)
        for slot in range(1, remaining + 1):
            position = slot * step
            if 0 < position < last and position not in taken:
                chosen.append(position)
                taken.add(position)

    chosen.sort()

    key_frames: list[ScoredFrame] = []
    for position in chosen:
        frame = frames[position]
        score = min(MAX_DIFF, max(0.0, scores[position]))
        if position == 0:
            key_frames.append(_boundary_frame(frame, START_REASON, score))
        elif position == last:
            key_frames.append(_boundary_frame(frame, END_REASON, score))
        else:
            key_frames.append(
                ScoredFrame.from_frame(
                    frame,
                    diff_score=score,
                    reason=selection_reason(score),
                    drop_priority=1.0 - score / MAX_DIFF,
                )
            )

    _LOGGER.info(
        "selection.threshold_complete",
        extra={
            "extracted": total,
            "selected": len(key_frames),
            "above_threshold": len(interior),
            "diff_threshold": diff_threshold,
        },
    )
    return _result(key_frames, total)


def select_evenly_spaced_frames(
    frames: Sequence[Frame], target_count: int
) -> FrameSelectionResult:
    """Select ``target_count`` frames spread evenly across the capture.

    Used when every frame looks alike and diff scores carry no signal.
    """
    total = len(frames)
    if total == 0:
        return _result([], 0)
    if total <= target_count:
        return _result(_passthrough(frames, "Evenly-spaced frame"), total)
    if target_count < MIN_ANCHORED_COUNT:
        raise ValueError("target_count must be at least 2 to keep both anchor frames")

    last = total - 1
    step = last / (target_count - 1)
    positions = sorted({round_half_up(slot * step) for slot in range(target_count)})
    key_frames: list[ScoredFrame] = []
    for position in positions:
        frame = frames[position]
        if position == 0:
            key_frames.append(_boundary_frame(frame, START_REASON))
        elif position == last:
            key_frames.append(_boundary_frame(frame, END_REASON))
        else:
            key_frames.append(ScoredFrame.from_frame(frame, reason="Evenly-spaced frame"))
    return _result(key_frames, total)
