"""Model-aligned debugging prompt attached to a capture."""

from __future__ import annotations

from .models import CausalFocus, ModelProfile, Verbosity
from .tokens import estimate_text_tokens


def generate_prompt(
    profile: ModelProfile,
    *,
    frame_count: int,
    duration_sec: float,
    has_diff: bool,
) -> str:
    """Build the analysis prompt for ``profile``.

    Sections are included according to ``profile.prompt_style`` so that the
    model spends its tokens on reasoning rather than on interpreting the report.
    """
    style = profile.prompt_style
    parts = ["Analyze this visual bug capture and identify the root cause."]

    if style.include_timeline_refs:
        parts += [
            "",
            "## Timeline Analysis",
            f"The capture contains {frame_count} key frames spanning {duration_sec:g}s.",
            "- Frame 1 shows the baseline/initial state",
            "- Intermediate frames show state transitions",
            f"- Frame {frame_count} shows the final failure state",
            "",
            "Identify which frame first shows incorrect behavior and why.",
        ]

    if style.include_diff_correlation and has_diff:
        parts += [
            "",
            "## Code Correlation",
            "The git diff shows recent uncommitted changes.",
            "Assume the bug is causally linked to these changes"
            " unless evidence suggests otherwise.",
            "Cross-reference visual symptoms with code modifications.",
        ]

    if style.causal_focus_level == CausalFocus.HIGH:
        parts += [
            "",
            "## Causal Analysis",
            "Focus on root cause, not symptoms:",
            "- What state change caused the visual failure?",
            "- Which code path is responsible?",
            "- What is the minimal fix?",
        ]

    if style.include_uncertainty_guidance:
        parts += [
            "",
            "## Uncertainty Handling",
            "If information is insufficient:",
            "- State what additional signal would help (logs, state, network)",
            "- Rank hypotheses by probability",
            "- Indicate confidence level for each conclusion",
        ]

    parts += [
        "",
        "## Expected Output",
        "1. **Root Cause**: Most likely cause of the bug",
        "2. **Visual Evidence**: Which frames support this conclusion",
        "3. **Code Link**: Connection to recent changes (if applicable)",
        "4. **Fix**: Minimal, testable fix",
    ]
    if style.verbosity == Verbosity.DETAILED:
        parts += [
            "5. **Alternatives**: Other possible causes if primary is uncertain",
            "6. **Confidence**: Assessment of diagnostic confidence",
        ]

    return "\n".join(parts)


def estimate_prompt_tokens(prompt: str) -> int:
    """Estimate the token cost of ``prompt``."""
    return estimate_text_tokens(prompt)


__all__ = ["estimate_prompt_tokens", "generate_prompt"]
