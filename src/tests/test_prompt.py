from __future__ import annotations

import math

from frame_budget.profiles import ProfileRepository
from frame_budget.prompt import estimate_prompt_tokens, generate_prompt


def test_causal_profile_prompt_sections() -> None:
    profile = ProfileRepository().get("claude-code")

    prompt = generate_prompt(profile, frame_count=6, duration_sec=12.5, has_diff=True)

    assert prompt.startswith("Analyze this visual bug capture")
    assert "The capture contains 6 key frames spanning 12.5s." in prompt
    assert "- Frame 6 shows the final failure state" in prompt
    assert "## Code Correlation" in prompt
    assert "## Causal Analysis" in prompt
    assert "## Uncertainty Handling" in prompt
    assert "5. **Alternatives**" not in prompt


def test_code_correlation_requires_a_diff() -> None:
    profile = ProfileRepository().get("claude-code")

    prompt = generate_prompt(profile, frame_count=4, duration_sec=3.0, has_diff=False)

    assert "## Code Correlation" not in prompt


def test_detailed_profile_requests_alternatives() -> None:
    prompt = generate_prompt(
        ProfileRepository().get("claude-opus"), frame_count=10, duration_sec=20.0, has_diff=True
    )

    assert "5. **Alternatives**" in prompt
    assert "6. **Confidence**" in prompt


def test_minimal_profile_omits_optional_sections() -> None:
    prompt = generate_prompt(
        ProfileRepository().get("claude-haiku"), frame_count=4, duration_sec=8.0, has_diff=True
    )

    assert "## Code Correlation" not in prompt
    assert "## Uncertainty Handling" not in prompt
    assert "## Causal Analysis" not in prompt
    assert "## Timeline Analysis" in prompt
    assert prompt.rstrip().endswith("4. **Fix**: Minimal, testable fix")


def test_estimate_prompt_tokens() -> None:
    prompt = generate_prompt(
        ProfileRepository().get("claude-sonnet"), frame_count=8, duration_sec=9.0, has_diff=False
    )

    assert estimate_prompt_tokens(prompt) == math.ceil(len(prompt) / 4)
    assert estimate_prompt_tokens("") == 0
