"""Token budget allocation, utilization accounting and the shrink loop.

The budget of a model profile is split across visual, code and execution
signals according to the profile's context bias. Frames are sized to the
visual share, text limits to the other two, and a bounded eviction loop keeps
the final payload under 95% of the model's context window where it can.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Final

from .models import (
    BudgetAllocation,
    BudgetValidation,
    CaptureContext,
    FramesUsage,
    GitUsage,
    ModelProfile,
    Resolution,
    ScoredFrame,
    SignalBudgets,
    TerminalUsage,
    TokenUtilization,
    UtilizationBreakdown,
)
from .selection.model_aware import drop_frames_for_budget

_LOGGER = logging.getLogger(__name__)

SAFETY_MARGIN: Final[float] = 0.95
STRUCTURE_RESERVE: Final[int] = 500
REPORT_STRUCTURE_TOKENS: Final[int] = 100
DEFAULT_RESOLUTION: Final = Resolution(width=1024, height=576)
DEFAULT_QUALITY: Final[int] = 85
REDUCED_QUALITY: Final[int] = 75
REDUCED_QUALITY_COST: Final[float] = 0.85
CHARS_PER_LINE_TOKEN: Final[int] = 4
MAX_TERMINAL_LINES: Final[int] = 100
MAX_GIT_DIFF_LINES: Final[int] = 150
COMMITS_MIN_BUDGET: Final[int] = 200
FULL_DIFF_MIN_BUDGET: Final[int] = 500
MAX_UTILIZATION_PCT: Final[float] = 95.0
MIN_FRAMES_FOR_DROP_SUGGESTION: Final[int] = 4
TEXT_TRUNCATION_TOKENS: Final[int] = 500
DIFF_SUMMARY_LINES: Final[int] = 50
MAX_SHRINK_ATTEMPTS: Final[int] = 5
ANCHOR_FLOOR: Final[int] = 2


@dataclass(frozen=True, slots=True)
class ShrinkResult:
    """Outcome of the bounded eviction loop."""

    frames: tuple[ScoredFrame, ...]
    utilization: TokenUtilization
    validation: BudgetValidation
    attempts: int


def split_budget(profile: ModelProfile) -> SignalBudgets:
    """Split ``profile``'s context window across the three signal categories."""
    available = profile.max_tokens * SAFETY_MARGIN
    working = available - STRUCTURE_RESERVE
    bias = profile.context_bias
    return SignalBudgets(
        available=available,
        working=working,
        visual=working * bias.visual,
        code=working * bias.code,
        execution=working * bias.execution,
        structure_reserve=STRUCTURE_RESERVE,
    )


def _frames_for(visual_budget: float, per_frame_tokens: float) -> int:
    return max(0, math.floor(visual_budget / per_frame_tokens))


def allocate_budget(
    profile: ModelProfile,
    available_frame_count: int,
    context: CaptureContext | None = None,
) -> BudgetAllocation:
    """Compute frame and text limits for one capture.

    Args:
        profile: Target model profile.
        available_frame_count: Number of extracted frames to choose from.
        context: Gathered context. Limits depend only on the profile, the
            context is accepted so callers can pass the full request.

    Returns:
        The derived allocation. When the preferred frame count does not fit,
        a single step down to JPEG quality 75 (about 15% fewer tokens per
        frame) is tried before settling for fewer frames.
    """
    budgets = split_budget(profile)
    base_tokens = profile.image_token_estimate
    available = max(0, available_frame_count)

    frame_count = min(
        _frames_for(budgets.visual, base_tokens),
        profile.preferred_frames,
        available,
    )
    quality = DEFAULT_QUALITY

    if frame_count < profile.preferred_frames and frame_count < available:
        reduced_count = _frames_for(budgets.visual, base_tokens * REDUCED_QUALITY_COST)
        if reduced_count > frame_count:
            quality = REDUCED_QUALITY
            frame_count = min(reduced_count, profile.preferred_frames, available)

    adjustments: list[str] = []
    if quality < DEFAULT_QUALITY:
        adjustments.append(f"Reduced image quality to {quality}% to fit {frame_count} frames")
    if frame_count < profile.preferred_frames:
        adjustments.append(
            f"Limited to {frame_count} frames (preferred: {profile.preferred_frames})"
        )

    allocation = BudgetAllocation(
        frame_count=frame_count,
        frame_resolution=DEFAULT_RESOLUTION,
        frame_quality=quality,
        terminal_lines=max(
            0, min(math.floor(budgets.execution / CHARS_PER_LINE_TOKEN), MAX_TERMINAL_LINES)
        ),
        git_diff_lines=max(
            0, min(math.floor(budgets.code / CHARS_PER_LINE_TOKEN), MAX_GIT_DIFF_LINES)
        ),
        include_commits=budgets.code > COMMITS_MIN_BUDGET,
        include_full_diff=budgets.code > FULL_DIFF_MIN_BUDGET,
        adjustments=tuple(adjustments),
        budgets=budgets,
    )
    _LOGGER.debug(
        "budget.allocated",
        extra={
            "profile": profile.name,
            "frame_count": allocation.frame_count,
            "frame_quality": allocation.frame_quality,
            "terminal_lines": allocation.terminal_lines,
            "git_diff_lines": allocation.git_diff_lines,
        },
    )
    return allocation


def calculate_utilization(
    profile: ModelProfile,
    frames: Sequence[ScoredFrame],
    context: CaptureContext,
    prompt_tokens: int,
) -> TokenUtilization:
    """Measure the tokens a capture consumes against ``profile``'s budget."""
    visual = sum(frame.token_estimate for frame in frames)
    text = context.terminal.token_estimate + context.git.token_estimate
    total = visual + text + REPORT_STRUCTURE_TOKENS + prompt_tokens
    return TokenUtilization(
        visual=visual,
        text=text,
        prompt=prompt_tokens,
        total=total,
        budget=profile.max_tokens,
        utilization=total / profile.max_tokens * 100.0,
        breakdown=UtilizationBreakdown(
            frames=FramesUsage(count=len(frames), tokens=visual),
            terminal_context=TerminalUsage(
                lines=len(context.terminal.recent_output),
                tokens=context.terminal.token_estimate,
            ),
            git_context=GitUsage(
                diff_lines=context.git.diff_line_count,
                tokens=context.git.token_estimate,
            ),
            report_structure=REPORT_STRUCTURE_TOKENS,
            suggested_prompt=prompt_tokens,
        ),
    )


def validate_budget(utilization: TokenUtilization) -> BudgetValidation:
    """Check ``utilization`` against the 95% ceiling and suggest reductions.

    Suggestions are advisory; the caller decides whether to act on them.
    """
    if utilization.utilization <= MAX_UTILIZATION_PCT:
        return BudgetValidation(valid=True)

    suggestions: list[str] = []
    overage = utilization.total - utilization.budget * SAFETY_MARGIN
    frame_count = utilization.breakdown.frames.count

    if frame_count > MIN_FRAMES_FOR_DROP_SUGGESTION:
        per_frame = utilization.visual / frame_count
        if per_frame > 0:
            to_drop = math.ceil(overage / per_frame)
        else:
            to_drop = frame_count - ANCHOR_FLOOR
        suggestions.append(f"Remove {to_drop} lowest-entropy frames")

    if utilization.text > TEXT_TRUNCATION_TOKENS:
        suggestions.append("Truncate terminal context to error lines only")
    if utilization.breakdown.git_context.diff_lines > DIFF_SUMMARY_LINES:
        suggestions.append("Use diff summary instead of full diff")

    return BudgetValidation(valid=False, suggestions=tuple(suggestions))


def shrink_to_budget(
    profile: ModelProfile,
    frames: Sequence[ScoredFrame],
    context: CaptureContext,
    prompt_tokens: int,
    *,
    target_count: int,
    max_attempts: int = MAX_SHRINK_ATTEMPTS,
) -> ShrinkResult:
    """Evict frames until the capture validates or the attempts run out.

    The first pass evicts down to ``target_count``; each further pass drops one
    more frame while more than the two anchors remain. A capture that is still
    over budget after ``max_attempts`` passes is returned as is.
    """
    kept = drop_frames_for_budget(frames, target_count)
    attempts = 1
    utilization = calculate_utilization(profile, kept, context, prompt_tokens)
    validation = validate_budget(utilization)

    while not validation.valid and len(kept) > ANCHOR_FLOOR and attempts < max_attempts:
        kept = drop_frames_for_budget(kept, len(kept) - 1)
        attempts += 1
        utilization = calculate_utilization(profile, kept, context, prompt_tokens)
        validation = validate_budget(utilization)

    if not validation.valid:
        _LOGGER.warning(
            "budget.over_budget",
            extra={
                "profile": profile.name,
                "utilization": round(utilization.utilization, 2),
                "frames": len(kept),
                "attempts": attempts,
                "suggestions": list(validation.suggestions),
            },
        )
    return ShrinkResult(
        frames=tuple(kept),
        utilization=utilization,
        validation=validation,
        attempts=attempts,
    )


__all__ = [
    "DEFAULT_QUALITY",
    "DEFAULT_RESOLUTION",
    "MAX_SHRINK_ATTEMPTS",
    "REDUCED_QUALITY",
    "REPORT_STRUCTURE_TOKENS",
    "STRUCTURE_RESERVE",
    "ShrinkResult",
    "allocate_budget",
    "calculate_utilization",
    "drop_frames_for_budget",
    "shrink_to_budget",
    "split_budget",
    "validate_budget",
]
