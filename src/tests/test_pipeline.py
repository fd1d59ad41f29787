from __future__ import annotations

from pathlib import Path

import cv2
import numpy as np
import pytest

from frame_budget.codec import JpegFrameCodec
from frame_budget.config import SelectionConfig, SelectionStrategy
from frame_budget.context import build_git_context, build_terminal_context
from frame_budget.models import CaptureContext, ContextBias, Frame, ModelProfile
from frame_budget.pipeline import plan_capture
from frame_budget.profiles import ProfileRepository
from frame_budget.tokens import estimate_image_tokens


def _frames(count: int) -> list[Frame]:
    return [
        Frame(index=i, locator=Path(f"frame_{i:03d}.png"), timestamp_sec=round(i * 0.5 + 0.2, 1))
        for i in range(count)
    ]


def _diffs(scores: dict[int, float]):
    return lambda previous, current: scores.get(current.index, 0.0)


def _profile(max_tokens: int) -> ModelProfile:
    return ModelProfile(
        name="tight",
        max_tokens=max_tokens,
        image_token_estimate=1200,
        preferred_frames=6,
        max_frames=10,
        context_bias=ContextBias(visual=0.5, code=0.3, execution=0.2),
    )


@pytest.fixture
def context() -> CaptureContext:
    return CaptureContext(
        terminal=build_terminal_context(["npm run dev", "TypeError: cannot read 'id' of null"]),
        git=build_git_context("main", ["abc123 Refactor header"], "diff --git a/a b/a\n+x"),
    )


def test_threshold_plan_fits_the_default_profile(context: CaptureContext) -> None:
    profile = ProfileRepository().get("claude-code")

    plan = plan_capture(_frames(20), context, profile, diff=_diffs({4: 25.0, 13: 8.0}))

    indices = [frame.index for frame in plan.frames]
    assert plan.strategy is SelectionStrategy.THRESHOLD
    assert plan.within_budget
    assert plan.total_extracted == 20
    assert len(plan.frames) == 6
    assert indices == [0, 4, 6, 12, 13, 19]
    assert {frame.token_estimate for frame in plan.frames} == {1200}
    assert "6 key frames" in plan.prompt
    assert plan.shrink_attempts == 1
    assert plan.utilization.visual == 6 * 1200


def test_model_strategy_uses_reasoning_value(context: CaptureContext) -> None:
    profile = ProfileRepository().get("claude-sonnet")
    config = SelectionConfig(strategy=SelectionStrategy.MODEL)

    plan = plan_capture(_frames(30), context, profile, config=config, diff=_diffs({15: 40.0}))

    assert len(plan.frames) == 8
    assert plan.frames[0].is_anchor and plan.frames[-1].is_anchor
    assert 15 in [frame.index for frame in plan.frames]
    assert plan.to_dict()["strategy"] == "model"


def test_even_strategy_and_target_override(context: CaptureContext) -> None:
    config = SelectionConfig(strategy="even", target_frames=4)  # type: ignore[arg-type]

    plan = plan_capture(_frames(10), context, ProfileRepository().get("claude-code"), config=config)

    assert [frame.index for frame in plan.frames] == [0, 3, 6, 9]


def test_tight_profile_charges_reduced_quality_cost(context: CaptureContext) -> None:
    plan = plan_capture(_frames(12), context, _profile(5_000), diff=_diffs({}))

    assert plan.allocation.frame_quality == 75
    assert len(plan.frames) == 2
    assert {frame.token_estimate for frame in plan.frames} == {1020}
    assert "Reduced image quality to 75% to fit 2 frames" in plan.allocation.adjustments


def test_over_budget_plan_is_returned_unresolved(context: CaptureContext) -> None:
    plan = plan_capture(_frames(12), context, _profile(2_000), diff=_diffs({}))

    assert not plan.within_budget
    assert [frame.index for frame in plan.frames] == [0, 11]
    assert plan.shrink_attempts == 1
    assert plan.allocation.frame_count == 0


def test_codec_measures_real_frame_cost(tmp_path: Path) -> None:
    frames: list[Frame] = []
    for index in range(5):
        image = np.full((48, 64, 3), index * 50, dtype=np.uint8)
        path = tmp_path / f"frame_{index:03d}.png"
        assert cv2.imwrite(str(path), image)
        frames.append(Frame(index=index, locator=path, timestamp_sec=index * 0.5))
    codec = JpegFrameCodec(tmp_path / "optimized")

    plan = plan_capture(
        frames,
        CaptureContext(),
        ProfileRepository().get("claude-haiku"),
        codec=codec,
    )

    assert len(plan.frames) == 4
    locators = [frame.optimized_locator for frame in plan.frames]
    assert all(locator is not None and locator.exists() for locator in locators)
    assert {frame.token_estimate for frame in plan.frames} == {estimate_image_tokens(64, 48)}


def test_context_is_trimmed_to_allocation() -> None:
    diff = "\n".join(["diff --git a/a.py b/a.py"] + [f"+line {i}" for i in range(399)])
    context = CaptureContext(
        terminal=build_terminal_context([f"log {i}" for i in range(200)], max_lines=200),
        git=build_git_context("main", [], diff),
    )

    profile = ProfileRepository().get("claude-code")

    plan = plan_capture(_frames(8), context, profile, diff=_diffs({}))

    assert len(plan.context.terminal.recent_output) == 150
    assert plan.context.git.diff is not None
    assert plan.context.git.diff.endswith("... 250 more lines")


def test_empty_capture_is_rejected(context: CaptureContext) -> None:
    with pytest.raises(ValueError):
        plan_capture([], context, ProfileRepository().get("claude-code"))
