"""End-to-end planning of the frames and context sent to a reasoning model."""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from dataclasses import dataclass, replace
from typing import Any

from .budget import REDUCED_QUALITY, REDUCED_QUALITY_COST, allocate_budget, shrink_to_budget
from .codec import FrameCodec, apply_codec
from .config import SelectionConfig, SelectionStrategy
from .context import trim_capture_context
from .models import (
    BudgetAllocation,
    BudgetValidation,
    CaptureContext,
    Frame,
    ModelProfile,
    ScoredFrame,
    TokenUtilization,
)
from .prompt import estimate_prompt_tokens, generate_prompt
from .selection.diff import DiffFunction, get_diff_function
from .selection.model_aware import select_model_aligned_frames
from .selection.threshold import select_evenly_spaced_frames, select_key_frames

_LOGGER = logging.getLogger(__name__)

MIN_TARGET_FRAMES = 2


@dataclass(frozen=True, slots=True)
class CapturePlan:
    """Frames, context and accounting produced for one capture request."""

    strategy: SelectionStrategy
    profile_name: str
    total_extracted: int
    frames: tuple[ScoredFrame, ...]
    context: CaptureContext
    allocation: BudgetAllocation
    utilization: TokenUtilization
    validation: BudgetValidation
    prompt: str
    shrink_attempts: int

    @property
    def within_budget(self) -> bool:
        """``True`` when the final payload passed validation."""
        return self.validation.valid

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON friendly representation."""
        return {
            "strategy": self.strategy.value,
            "profile": self.profile_name,
            "total_extracted": self.total_extracted,
            "frames": [frame.to_dict() for frame in self.frames],
            "context": self.context.to_dict(),
            "allocation": self.allocation.to_dict(),
            "utilization": self.utilization.to_dict(),
            "validation": {
                "valid": self.validation.valid,
                "suggestions": list(self.validation.suggestions),
            },
            "prompt": self.prompt,
            "shrink_attempts": self.shrink_attempts,
        }


def _select(
    frames: Sequence[Frame],
    profile: ModelProfile,
    target: int,
    config: SelectionConfig,
    diff: DiffFunction,
) -> list[ScoredFrame]:
    if config.strategy is SelectionStrategy.MODEL:
        return select_model_aligned_frames(
            frames, profile, target, diff=diff, max_workers=config.max_workers
        )
    if config.strategy is SelectionStrategy.EVEN:
        return list(select_evenly_spaced_frames(frames, target).key_frames)
    result = select_key_frames(
        frames,
        target,
        config.diff_threshold,
        diff=diff,
        max_workers=config.max_workers,
    )
    return list(result.key_frames)


def _estimate_without_codec(
    frames: Sequence[ScoredFrame], profile: ModelProfile, allocation: BudgetAllocation
) -> list[ScoredFrame]:
    per_frame = profile.image_token_estimate
    if allocation.frame_quality <= REDUCED_QUALITY:
        per_frame = math.ceil(per_frame * REDUCED_QUALITY_COST)
    return [replace(frame, token_estimate=per_frame) for frame in frames]


def plan_capture(
    frames: Sequence[Frame],
    context: CaptureContext,
    profile: ModelProfile,
    *,
    config: SelectionConfig | None = None,
    codec: FrameCodec | None = None,
    diff: DiffFunction | None = None,
) -> CapturePlan:
    """Select, size and account for the frames and context of one capture.

    Args:
        frames: Extracted frames in chronological order.
        context: Gathered terminal and git context.
        profile: Target model profile.
        config: Selection settings; defaults to ``SelectionConfig()``.
        codec: Optional codec used to produce optimized frames. Without one each
            frame is charged the profile's per-image estimate.
        diff: Pairwise difference function overriding ``config.diff_method``.

    Returns:
        The capture plan. Plans that remain over budget after the bounded shrink
        loop are returned with ``validation.valid`` set to ``False``.

    Raises:
        ValueError: If ``frames`` is empty.
    """
    if not frames:
        raise ValueError("At least one frame is required to plan a capture")
    cfg = config or SelectionConfig()
    scorer = diff or get_diff_function(cfg.diff_method, channel_threshold=cfg.channel_threshold)

    allocation = allocate_budget(profile, len(frames), context)
    target = cfg.target_frames or max(MIN_TARGET_FRAMES, allocation.frame_count)

    selected = _select(frames, profile, target, cfg, scorer)
    if codec is not None:
        selected = apply_codec(selected, codec, allocation)
    else:
        selected = _estimate_without_codec(selected, profile, allocation)

    trimmed = trim_capture_context(context, allocation)
    duration = frames[-1].timestamp_sec - frames[0].timestamp_sec
    prompt = generate_prompt(
        profile,
        frame_count=len(selected),
        duration_sec=round(duration, 1),
        has_diff=bool(trimmed.git.diff),
    )
    shrink = shrink_to_budget(
        profile,
        selected,
        trimmed,
        estimate_prompt_tokens(prompt),
        target_count=len(selected),
        max_attempts=cfg.max_shrink_attempts,
    )
    if len(shrink.frames) != len(selected):
        prompt = generate_prompt(
            profile,
            frame_count=len(shrink.frames),
            duration_sec=round(duration, 1),
            has_diff=bool(trimmed.git.diff),
        )

    _LOGGER.info(
        "pipeline.plan_complete",
        extra={
            "profile": profile.name,
            "strategy": cfg.strategy.value,
            "extracted": len(frames),
            "selected": len(selected),
            "kept": len(shrink.frames),
            "utilization": round(shrink.utilization.utilization, 2),
            "within_budget": shrink.validation.valid,
        },
    )
    return CapturePlan(
        strategy=cfg.strategy,
        profile_name=profile.name,
        total_extracted=len(frames),
        frames=shrink.frames,
        context=trimmed,
        allocation=allocation,
        utilization=shrink.utilization,
        validation=shrink.validation,
        prompt=prompt,
        shrink_attempts=shrink.attempts,
    )


__all__ = ["CapturePlan", "plan_capture"]
