"""Typed value objects shared by frame selection and token budgeting."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

JsonMapping = Mapping[str, Any]

BIAS_SUM_TOLERANCE = 0.05


class ModelValidationError(ValueError):
    """Raised when a value object or profile payload is invalid."""


def _lookup(payload: JsonMapping, snake: str, camel: str | None = None) -> Any:
    """Return ``payload[snake]`` falling back to the camelCase spelling."""
    if snake in payload:
        return payload[snake]
    if camel is not None and camel in payload:
        return payload[camel]
    raise ModelValidationError(f"Missing required field '{snake}' in payload")


def _ensure_fraction(name: str, value: float) -> None:
    if not 0.0 <= value <= 1.0:
        raise ModelValidationError(f"{name} must be between 0.0 and 1.0 inclusive")


class CausalFocus(str, Enum):
    """How strongly a target model is steered toward root-cause reasoning."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Verbosity(str, Enum):
    """Requested prompt verbosity for a target model."""

    MINIMAL = "minimal"
    STANDARD = "standard"
    DETAILED = "detailed"


@dataclass(frozen=True, slots=True)
class Frame:
    """A raw frame produced by the capture step.

    Attributes:
        index: Zero-based position of the frame in the extracted sequence.
        locator: Path to the encoded frame image.
        timestamp_sec: Offset of the frame from the start of the capture.
    """

    index: int
    locator: Path
    timestamp_sec: float

    def __post_init__(self) -> None:
        """Validate frame metadata."""
        if self.index < 0:
            raise ModelValidationError("Frame.index must be non-negative")
        if self.timestamp_sec < 0:
            raise ModelValidationError("Frame.timestamp_sec must be non-negative")
        if not isinstance(self.locator, Path):
            object.__setattr__(self, "locator", Path(os.fspath(self.locator)))


@dataclass(frozen=True, slots=True)
class ScoredFrame(Frame):
    """A frame annotated with selection scores and budget metadata.

    Attributes:
        diff_score: Percentage of pixels that changed relative to the previous frame.
        reason: Human readable explanation of why the frame was kept.
        entropy_score: Heuristic information content in ``[0, 1]``.
        reasoning_value: Entropy adjusted for the target model in ``[0, 1]``.
        drop_priority: Eviction order under budget pressure; lower is kept longer.
        token_estimate: Estimated image tokens once the frame is optimized.
        optimized_locator: Path of the resized frame, when available.
        is_anchor: ``True`` for the first and last frame, which are never evicted.
    """

    diff_score: float = 0.0
    reason: str = ""
    entropy_score: float = 0.0
    reasoning_value: float = 0.0
    drop_priority: float = 1.0
    token_estimate: int = 0
    optimized_locator: Path | None = None
    is_anchor: bool = False

    def __post_init__(self) -> None:
        """Validate score ranges."""
        Frame.__post_init__(self)
        if not 0.0 <= self.diff_score <= 100.0:
            raise ModelValidationError("ScoredFrame.diff_score must be within [0, 100]")
        _ensure_fraction("ScoredFrame.entropy_score", self.entropy_score)
        _ensure_fraction("ScoredFrame.reasoning_value", self.reasoning_value)
        _ensure_fraction("ScoredFrame.drop_priority", self.drop_priority)
        if self.token_estimate < 0:
            raise ModelValidationError("ScoredFrame.token_estimate must be non-negative")
        if self.is_anchor and self.drop_priority != 0.0:
            raise ModelValidationError("Anchor frames must carry drop_priority 0")

    @classmethod
    def from_frame(cls, frame: Frame, **scores: Any) -> ScoredFrame:
        """Create a ``ScoredFrame`` carrying ``frame``'s identity and ``scores``."""
        return cls(
            index=frame.index,
            locator=frame.locator,
            timestamp_sec=frame.timestamp_sec,
            **scores,
        )

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON friendly representation."""
        return {
            "index": self.index,
            "locator": str(self.locator),
            "timestamp_sec": self.timestamp_sec,
            "diff_score": round(self.diff_score, 3),
            "reason": self.reason,
            "entropy_score": round(self.entropy_score, 4),
            "reasoning_value": round(self.reasoning_value, 4),
            "drop_priority": round(self.drop_priority, 4),
            "token_estimate": self.token_estimate,
            "optimized_locator": str(self.optimized_locator) if self.optimized_locator else None,
            "is_anchor": self.is_anchor,
        }


@dataclass(frozen=True, slots=True)
class ContextBias:
    """Weighting of the token budget across signal categories."""

    visual: float
    code: float
    execution: float

    def __post_init__(self) -> None:
        """Ensure each weight is a fraction and the weights sum to roughly one."""
        for name, value in (
            ("visual", self.visual),
            ("code", self.code),
            ("execution", self.execution),
        ):
            _ensure_fraction(f"ContextBias.{name}", value)
        total = self.visual + self.code + self.execution
        if abs(total - 1.0) > BIAS_SUM_TOLERANCE:
            raise ModelValidationError(f"ContextBias weights must sum to 1.0, got {total:.3f}")


@dataclass(frozen=True, slots=True)
class PromptStyle:
    """Prompt shaping preferences of a target model."""

    verbosity: Verbosity = Verbosity.STANDARD
    include_timeline_refs: bool = True
    include_diff_correlation: bool = True
    include_uncertainty_guidance: bool = True
    causal_focus_level: CausalFocus = CausalFocus.MEDIUM


@dataclass(frozen=True, slots=True)
class ModelProfile:
    """Token and prompt characteristics of a downstream reasoning model.

    Attributes:
        name: Registry key of the profile.
        max_tokens: Context window of the model.
        image_token_estimate: Expected token cost of one frame at default quality.
        preferred_frames: Frame count the model reasons best with.
        max_frames: Hard ceiling on frames for the model.
        context_bias: Split of the budget across visual, code and execution signals.
        prompt_style: Prompt shaping preferences.
    """

    name: str
    max_tokens: int
    image_token_estimate: int
    preferred_frames: int
    max_frames: int
    context_bias: ContextBias
    prompt_style: PromptStyle = field(default_factory=PromptStyle)

    def __post_init__(self) -> None:
        """Validate numeric limits."""
        if not self.name:
            raise ModelValidationError("ModelProfile.name must be populated")
        if self.max_tokens <= 0:
            raise ModelValidationError("ModelProfile.max_tokens must be greater than 0")
        if self.image_token_estimate <= 0:
            raise ModelValidationError("ModelProfile.image_token_estimate must be greater than 0")
        if self.preferred_frames <= 0:
            raise ModelValidationError("ModelProfile.preferred_frames must be greater than 0")
        if self.max_frames < self.preferred_frames:
            raise ModelValidationError("ModelProfile.max_frames must be >= preferred_frames")

    @classmethod
    def from_mapping(cls, payload: JsonMapping) -> ModelProfile:
        """Build a profile from a snake_case or camelCase mapping.

        Args:
            payload: Decoded JSON object describing the profile.

        Returns:
            The validated ``ModelProfile``.

        Raises:
            ModelValidationError: If required fields are missing or invalid.
        """
        if not isinstance(payload, Mapping):
            raise ModelValidationError("Model profile payload must be a JSON object")
        bias_payload = _lookup(payload, "context_bias", "contextBias")
        style_payload = payload.get("prompt_style") or payload.get("promptStyle") or {}
        if not isinstance(bias_payload, Mapping) or not isinstance(style_payload, Mapping):
            raise ModelValidationError(
                "Model profile context_bias and prompt_style must be JSON objects"
            )
        try:
            bias = ContextBias(
                visual=float(_lookup(bias_payload, "visual")),
                code=float(_lookup(bias_payload, "code")),
                execution=float(_lookup(bias_payload, "execution")),
            )
            style = PromptStyle(
                verbosity=Verbosity(style_payload.get("verbosity", Verbosity.STANDARD.value)),
                include_timeline_refs=bool(
                    style_payload.get(
                        "include_timeline_refs", style_payload.get("includeTimelineRefs", True)
                    )
                ),
                include_diff_correlation=bool(
                    style_payload.get(
                        "include_diff_correlation",
                        style_payload.get("includeDiffCorrelation", True),
                    )
                ),
                include_uncertainty_guidance=bool(
                    style_payload.get(
                        "include_uncertainty_guidance",
                        style_payload.get("includeUncertaintyGuidance", True),
                    )
                ),
                causal_focus_level=CausalFocus(
                    style_payload.get(
                        "causal_focus_level",
                        style_payload.get("causalFocusLevel", CausalFocus.MEDIUM.value),
                    )
                ),
            )
            return cls(
                name=str(_lookup(payload, "name")),
                max_tokens=int(_lookup(payload, "max_tokens", "maxTokens")),
                image_token_estimate=int(
                    _lookup(payload, "image_token_estimate", "imageTokenEstimate")
                ),
                preferred_frames=int(_lookup(payload, "preferred_frames", "preferredFrames")),
                max_frames=int(_lookup(payload, "max_frames", "maxFrames")),
                context_bias=bias,
                prompt_style=style,
            )
        except ModelValidationError:
            raise
        except (AttributeError, TypeError, ValueError) as exc:
            raise ModelValidationError(f"Invalid model profile payload: {exc}") from exc


@dataclass(frozen=True, slots=True)
class TerminalContext:
    """Recent terminal output gathered around the capture."""

    recent_output: tuple[str, ...] = ()
    errors: tuple[str, ...] = ()
    token_estimate: int = 0


@dataclass(frozen=True, slots=True)
class GitContext:
    """Repository state gathered around the capture."""

    branch: str = ""
    recent_commits: tuple[str, ...] = ()
    diff: str | None = None
    token_estimate: int = 0

    @property
    def diff_line_count(self) -> int:
        """Number of lines in :attr:`diff`, ``0`` when absent."""
        if not self.diff:
            return 0
        return len(self.diff.split("\n"))


@dataclass(frozen=True, slots=True)
class CaptureContext:
    """Textual context attached to a capture."""

    terminal: TerminalContext = field(default_factory=TerminalContext)
    git: GitContext = field(default_factory=GitContext)

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON friendly representation."""
        return {
            "terminal": {
                "recent_output": list(self.terminal.recent_output),
                "errors": list(self.terminal.errors),
                "token_estimate": self.terminal.token_estimate,
            },
            "git": {
                "branch": self.git.branch,
                "recent_commits": list(self.git.recent_commits),
                "diff": self.git.diff,
                "token_estimate": self.git.token_estimate,
            },
        }


@dataclass(frozen=True, slots=True)
class Resolution:
    """Target pixel dimensions for optimized frames."""

    width: int
    height: int

    def __post_init__(self) -> None:
        """Validate dimensions."""
        if self.width <= 0 or self.height <= 0:
            raise ModelValidationError("Resolution dimensions must be greater than 0")


@dataclass(frozen=True, slots=True)
class SignalBudgets:
    """Intermediate token split computed from a model profile."""

    available: float
    working: float
    visual: float
    code: float
    execution: float
    structure_reserve: int


@dataclass(frozen=True, slots=True)
class BudgetAllocation:
    """Per-request limits derived from a model profile."""

    frame_count: int
    frame_resolution: Resolution
    frame_quality: int
    terminal_lines: int
    git_diff_lines: int
    include_commits: bool
    include_full_diff: bool
    adjustments: tuple[str, ...] = ()
    budgets: SignalBudgets | None = None

    def __post_init__(self) -> None:
        """Validate the derived limits."""
        if self.frame_count < 0:
            raise ModelValidationError("BudgetAllocation.frame_count must be non-negative")
        if not 0 <= self.frame_quality <= 100:
            raise ModelValidationError("BudgetAllocation.frame_quality must be within [0, 100]")

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON friendly representation."""
        return {
            "frame_count": self.frame_count,
            "frame_resolution": {
                "width": self.frame_resolution.width,
                "height": self.frame_resolution.height,
            },
            "frame_quality": self.frame_quality,
            "terminal_lines": self.terminal_lines,
            "git_diff_lines": self.git_diff_lines,
            "include_commits": self.include_commits,
            "include_full_diff": self.include_full_diff,
            "adjustments": list(self.adjustments),
        }


@dataclass(frozen=True, slots=True)
class FramesUsage:
    count: int
    tokens: int


@dataclass(frozen=True, slots=True)
class TerminalUsage:
    lines: int
    tokens: int


@dataclass(frozen=True, slots=True)
class GitUsage:
    diff_lines: int
    tokens: int


@dataclass(frozen=True, slots=True)
class UtilizationBreakdown:
    """Per-component token consumption."""

    frames: FramesUsage
    terminal_context: TerminalUsage
    git_context: GitUsage
    report_structure: int
    suggested_prompt: int


@dataclass(frozen=True, slots=True)
class TokenUtilization:
    """Snapshot of token consumption against a profile's budget."""

    visual: int
    text: int
    prompt: int
    total: int
    budget: int
    utilization: float
    breakdown: UtilizationBreakdown

    def rows(self) -> list[tuple[str, int]]:
        """Return ``(component, tokens)`` rows ready for tabular rendering."""
        breakdown = self.breakdown
        return [
            (f"Images ({breakdown.frames.count} frames)", breakdown.frames.tokens),
            ("Terminal context", breakdown.terminal_context.tokens),
            ("Git context", breakdown.git_context.tokens),
            ("Report structure", breakdown.report_structure),
            ("Suggested prompt", breakdown.suggested_prompt),
            ("Total", self.total),
        ]

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON friendly representation."""
        breakdown = self.breakdown
        return {
            "visual": self.visual,
            "text": self.text,
            "prompt": self.prompt,
            "total": self.total,
            "budget": self.budget,
            "utilization": round(self.utilization, 2),
            "breakdown": {
                "frames": {"count": breakdown.frames.count, "tokens": breakdown.frames.tokens},
                "terminal_context": {
                    "lines": breakdown.terminal_context.lines,
                    "tokens": breakdown.terminal_context.tokens,
                },
                "git_context": {
                    "diff_lines": breakdown.git_context.diff_lines,
                    "tokens": breakdown.git_context.tokens,
                },
                "report_structure": breakdown.report_structure,
                "suggested_prompt": breakdown.suggested_prompt,
            },
        }


@dataclass(frozen=True, slots=True)
class BudgetValidation:
    """Outcome of checking a utilization snapshot against the budget."""

    valid: bool
    suggestions: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class FrameSelectionResult:
    """Frames chosen by a selector in chronological order."""

    key_frames: tuple[ScoredFrame, ...]
    total_extracted: int
    selection_reasons: tuple[str, ...]


__all__ = [
    "BudgetAllocation",
    "BudgetValidation",
    "CaptureContext",
    "CausalFocus",
    "ContextBias",
    "Frame",
    "FrameSelectionResult",
    "FramesUsage",
    "GitContext",
    "GitUsage",
    "ModelProfile",
    "ModelValidationError",
    "PromptStyle",
    "Resolution",
    "ScoredFrame",
    "SignalBudgets",
    "TerminalContext",
    "TerminalUsage",
    "TokenUtilization",
    "UtilizationBreakdown",
    "Verbosity",
]
