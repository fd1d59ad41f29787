"""Builders and budget trimmers for terminal and git context."""

from __future__ import annotations

import logging
import math
import re
from collections.abc import Iterable, Sequence
from dataclasses import replace
from typing import Final

from .models import BudgetAllocation, CaptureContext, GitContext, TerminalContext
from .tokens import estimate_text_tokens

_LOGGER = logging.getLogger(__name__)

TERMINAL_TOKEN_CAP: Final[int] = 400
GIT_TOKEN_CAP: Final[int] = 200
MAX_ERROR_LINES: Final[int] = 20
FALLBACK_OUTPUT_LINES: Final[int] = 20
OUTPUT_LINE_FACTOR: Final[float] = 1.5
STAT_BAR_WIDTH: Final[int] = 40

ERROR_PATTERNS: Final[tuple[re.Pattern[str], ...]] = tuple(
    re.compile(pattern)
    for pattern in (
        r"(?i)error",
        r"ERR",
        r"(?i)failed",
        r"(?i)exception",
        r"(?i)warning",
        r"WARN",
        r"ENOENT",
        r"EACCES",
        r"ECONNREFUSED",
        r"Cannot find",
        r"(?i)not found",
        r"undefined",
        r"(?i)null pointer",
        r"(?i)stack trace",
        r"Traceback",
        r"(?i)segmentation fault",
        r"(?i)permission denied",
        r"(?i)panic",
    )
)

_DIFF_HEADER = re.compile(r"^diff --git a/(?P<old>.+?) b/(?P<new>.+)$")


class ContextError(ValueError):
    """Raised when context trimming receives invalid limits."""


def filter_error_lines(lines: Iterable[str]) -> list[str]:
    """Return the non-blank lines that look like errors or warnings."""
    matches: list[str] = []
    for line in lines:
        stripped = line.strip()
        if stripped and any(pattern.search(stripped) for pattern in ERROR_PATTERNS):
            matches.append(line)
    return matches


def _tail(lines: Sequence[str], count: int) -> tuple[str, ...]:
    if count <= 0:
        return ()
    return tuple(lines[-count:])


def _terminal_tokens(errors: Sequence[str], recent_output: Sequence[str]) -> int:
    if errors:
        text = "\n".join(errors)
    else:
        text = "\n".join(recent_output[-FALLBACK_OUTPUT_LINES:])
    return min(estimate_text_tokens(text), TERMINAL_TOKEN_CAP)


def _git_tokens(branch: str, recent_commits: Sequence[str], diff: str | None) -> int:
    text = f"Branch: {branch}\n" + "\n".join(recent_commits) + "\n"
    if diff:
        text += diff
    return min(estimate_text_tokens(text), GIT_TOKEN_CAP)


def build_terminal_context(lines: Iterable[str], max_lines: int = 50) -> TerminalContext:
    """Assemble terminal context from raw output lines.

    Keeps the last ``max_lines`` non-blank lines, the last twenty error lines
    among them, and a token estimate capped at 400.
    """
    recent = _tail([line for line in lines if line.strip()], max_lines)
    errors = _tail(filter_error_lines(recent), MAX_ERROR_LINES)
    return TerminalContext(
        recent_output=recent,
        errors=errors,
        token_estimate=_terminal_tokens(errors, recent),
    )


def build_git_context(
    branch: str = "",
    recent_commits: Iterable[str] = (),
    diff: str | None = None,
) -> GitContext:
    """Assemble git context with a token estimate capped at 200."""
    commits = tuple(commit for commit in recent_commits if commit.strip())
    normalized = diff if diff and diff.strip() else None
    return GitContext(
        branch=branch,
        recent_commits=commits,
        diff=normalized,
        token_estimate=_git_tokens(branch, commits, normalized),
    )


def summarize_diff(diff: str) -> str:
    """Return a ``git diff --stat`` style summary of a unified diff."""
    stats: dict[str, list[int]] = {}
    current: str | None = None
    lines = diff.split("\n")
    for line in lines:
        header = _DIFF_HEADER.match(line)
        if header:
            current = header.group("new")
            stats.setdefault(current, [0, 0])
            continue
        if current is None or line.startswith(("+++", "---")):
            continue
        if line.startswith("+"):
            stats[current][0] += 1
        elif line.startswith("-"):
            stats[current][1] += 1

    if not stats:
        return f" {len(lines)} lines changed"

    widest = max(len(path) for path in stats)
    largest = max(sum(counts) for counts in stats.values()) or 1
    scale = min(1.0, STAT_BAR_WIDTH / largest)
    rows: list[str] = []
    for path, (added, removed) in stats.items():
        bar = "+" * math.ceil(added * scale) + "-" * math.ceil(removed * scale)
        rows.append(f" {path.ljust(widest)} | {added + removed} {bar}".rstrip())

    insertions = sum(counts[0] for counts in stats.values())
    deletions = sum(counts[1] for counts in stats.values())
    noun = "file" if len(stats) == 1 else "files"
    rows.append(
        f" {len(stats)} {noun} changed, {insertions} insertions(+), {deletions} deletions(-)"
    )
    return "\n".join(rows)


def trim_terminal_context(terminal: TerminalContext, max_lines: int) -> TerminalContext:
    """Shrink terminal context to ``max_lines``, keeping error lines first.

    Returns ``terminal`` unchanged when it already fits. Otherwise keeps up to
    ``max_lines`` of the most recent errors and up to ``ceil(max_lines * 1.5)``
    of the most recent output lines.
    """
    if max_lines < 0:
        raise ContextError("max_lines must be non-negative")
    if len(terminal.recent_output) <= max_lines and len(terminal.errors) <= max_lines:
        return terminal

    errors = _tail(terminal.errors, max_lines)
    recent = _tail(terminal.recent_output, math.ceil(max_lines * OUTPUT_LINE_FACTOR))
    trimmed = TerminalContext(
        recent_output=recent,
        errors=errors,
        token_estimate=_terminal_tokens(errors, recent),
    )
    _LOGGER.debug(
        "context.terminal_trimmed",
        extra={
            "max_lines": max_lines,
            "errors_before": len(terminal.errors),
            "errors_after": len(errors),
            "tokens": trimmed.token_estimate,
        },
    )
    return trimmed


def trim_git_context(git: GitContext, max_diff_lines: int, include_full_diff: bool) -> GitContext:
    """Shrink the git diff to fit the code budget.

    With ``include_full_diff`` a diff longer than ``max_diff_lines`` is cut and
    marked with the number of dropped lines; without it the diff is replaced by
    a stat summary.
    """
    if max_diff_lines < 0:
        raise ContextError("max_diff_lines must be non-negative")
    if not git.diff:
        return git

    lines = git.diff.split("\n")
    line_count = len(lines)
    if include_full_diff:
        if line_count <= max_diff_lines:
            return git
        diff = "\n".join(lines[:max_diff_lines])
        diff += f"\n... {line_count - max_diff_lines} more lines"
    else:
        diff = f"{summarize_diff(git.diff)}\n\n(Full diff omitted — {line_count} lines)"

    _LOGGER.debug(
        "context.git_trimmed",
        extra={
            "diff_lines": line_count,
            "max_diff_lines": max_diff_lines,
            "include_full_diff": include_full_diff,
        },
    )
    return replace(
        git,
        diff=diff,
        token_estimate=_git_tokens(git.branch, git.recent_commits, diff),
    )


def trim_capture_context(context: CaptureContext, allocation: BudgetAllocation) -> CaptureContext:
    """Apply the allocation's text limits to both halves of ``context``."""
    terminal = trim_terminal_context(context.terminal, allocation.terminal_lines)
    git = trim_git_context(context.git, allocation.git_diff_lines, allocation.include_full_diff)
    if not allocation.include_commits and git.recent_commits:
        git = replace(
            git,
            recent_commits=(),
            token_estimate=_git_tokens(git.branch, (), git.diff),
        )
    return CaptureContext(terminal=terminal, git=git)


__all__ = [
    "ContextError",
    "ERROR_PATTERNS",
    "GIT_TOKEN_CAP",
    "TERMINAL_TOKEN_CAP",
    "build_git_context",
    "build_terminal_context",
    "filter_error_lines",
    "summarize_diff",
    "trim_capture_context",
    "trim_git_context",
    "trim_terminal_context",
]
