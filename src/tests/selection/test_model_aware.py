from __future__ import annotations

from pathlib import Path

import pytest

from frame_budget.models import Frame, ScoredFrame
from frame_budget.profiles import ProfileRepository
from frame_budget.selection.model_aware import (
    BASELINE_REASON,
    FINAL_STATE_REASON,
    drop_frames_for_budget,
    ensure_temporal_coverage,
    select_model_aligned_frames,
)


def _frames(count: int) -> list[Frame]:
    return [
        Frame(index=i, locator=Path(f"frame_{i:03d}.png"), timestamp_sec=round(i * 0.5, 1))
        for i in range(count)
    ]


def _diffs(scores: dict[int, float]):
    return lambda previous, current: scores.get(current.index, 0.0)


@pytest.fixture
def profile():
    return ProfileRepository().get("claude-code")


def test_selection_is_anchored_and_bounded(profile) -> None:
    selected = select_model_aligned_frames(
        _frames(20), profile, 6, diff=_diffs({3: 30.0, 11: 15.0, 17: 45.0})
    )

    indices = [frame.index for frame in selected]
    assert len(selected) <= 6
    assert indices == sorted(set(indices))
    assert indices[0] == 0
    assert indices[-1] == 19
    assert selected[0].reason == BASELINE_REASON
    assert selected[-1].reason == FINAL_STATE_REASON
    assert selected[0].is_anchor and selected[-1].is_anchor
    assert selected[0].drop_priority == 0.0 and selected[-1].drop_priority == 0.0


def test_high_change_frames_are_preferred(profile) -> None:
    selected = select_model_aligned_frames(
        _frames(20), profile, 4, diff=_diffs({7: 30.0, 13: 25.0})
    )

    assert [frame.index for frame in selected] == [0, 7, 13, 19]
    assert selected[1].reason.startswith("High-entropy transition - ")
    assert selected[1].diff_score == pytest.approx(30.0)
    assert not selected[1].is_anchor
    assert selected[1].drop_priority == pytest.approx(1.0 - selected[1].reasoning_value)


def test_reason_labels_follow_value_and_entropy(profile) -> None:
    haiku = ProfileRepository().get("claude-haiku")
    selected = select_model_aligned_frames(_frames(20), haiku, 3, diff=_diffs({}))

    # Early frames gain the boundary bonus: entropy 0.7, value 0.7.
    assert [frame.index for frame in selected] == [0, 1, 19]
    assert selected[1].reason == "State change detected - temporal divergence point"

    wider = select_model_aligned_frames(_frames(20), haiku, 7, diff=_diffs({}))

    assert [frame.index for frame in wider] == [0, 1, 2, 9, 10, 11, 19]
    assert wider[2].reason == "Coverage frame - maintains temporal continuity"


def test_frames_carry_profile_token_estimate(profile) -> None:
    selected = select_model_aligned_frames(_frames(8), profile, 4, diff=_diffs({}))

    assert {frame.token_estimate for frame in selected} == {profile.image_token_estimate}


def test_selected_frames_are_independent_copies(profile) -> None:
    frames = _frames(10)
    selected = select_model_aligned_frames(frames, profile, 4, diff=_diffs({}))

    assert all(isinstance(frame, ScoredFrame) for frame in selected)
    assert all(not isinstance(frame, ScoredFrame) for frame in frames)
    assert selected[0] is not frames[0]


def test_single_frame_is_an_anchor(profile) -> None:
    selected = select_model_aligned_frames(_frames(1), profile, 6)

    assert len(selected) == 1
    assert selected[0].is_anchor
    assert selected[0].drop_priority == 0.0


def test_short_capture_keeps_every_frame(profile) -> None:
    selected = select_model_aligned_frames(_frames(4), profile, 6, diff=_diffs({}))

    assert [frame.index for frame in selected] == [0, 1, 2, 3]


def test_invalid_requests_are_rejected(profile) -> None:
    with pytest.raises(ValueError):
        select_model_aligned_frames([], profile, 6)
    with pytest.raises(ValueError):
        select_model_aligned_frames(_frames(5), profile, 1, diff=_diffs({}))


def test_temporal_coverage_fills_oversized_gaps() -> None:
    assert ensure_temporal_coverage([0, 19], 20, 6) == [0, 4, 9, 14, 19]


def test_temporal_coverage_respects_count_ceiling() -> None:
    assert ensure_temporal_coverage([0, 19], 20, 3) == [0, 9, 19]
    assert ensure_temporal_coverage([0, 19], 20, 2) == [0, 19]


def test_temporal_coverage_leaves_dense_selection_alone() -> None:
    assert ensure_temporal_coverage([0, 2, 4, 6, 8, 9], 10, 8) == [0, 2, 4, 6, 8, 9]


def _scored(index: int, priority: float, *, anchor: bool = False) -> ScoredFrame:
    return ScoredFrame(
        index=index,
        locator=Path(f"{index}.png"),
        timestamp_sec=float(index),
        drop_priority=priority,
        is_anchor=anchor,
    )


def test_drop_frames_for_budget_evicts_highest_priority_first() -> None:
    frames = [
        _scored(0, 0.0, anchor=True),
        _scored(3, 0.9),
        _scored(5, 0.2),
        _scored(7, 0.5),
        _scored(9, 0.0, anchor=True),
    ]

    kept = drop_frames_for_budget(frames, 3)

    assert [frame.index for frame in kept] == [0, 5, 9]
    assert drop_frames_for_budget(frames, 10) == frames


def test_drop_frames_for_budget_never_outranks_anchors() -> None:
    frames = [
        _scored(0, 0.0, anchor=True),
        _scored(4, 0.0),
        _scored(8, 0.0, anchor=True),
    ]

    kept = drop_frames_for_budget(frames, 2)

    assert [frame.index for frame in kept] == [0, 8]
