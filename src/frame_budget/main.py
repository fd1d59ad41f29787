"""Command-line interface for frame budgeting."""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import Sequence
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Final, cast

import click

from .codec import JpegFrameCodec
from .config import (
    LOG_FORMATS,
    LOG_LEVELS,
    Config,
    ConfigurationError,
    LoggingConfig,
    SelectionConfig,
    SelectionStrategy,
    load_config,
)
from .context import build_git_context, build_terminal_context
from .models import CaptureContext, Frame, ModelValidationError
from .pipeline import plan_capture
from .profiles import ProfileRepository
from .selection.diff import DiffMethod, frame_diff, ssim_diff
from .tokens import format_token_estimate, round_half_up

FRAME_SUFFIXES: Final[frozenset[str]] = frozenset({".png", ".jpg", ".jpeg"})
DEFAULT_FPS: Final[float] = 2.0

RESERVED_LOG_RECORD_ATTRS: Final[set[str]] = {
    "name",
    "msg",
    "args",
    "levelname",
    "levelno",
    "pathname",
    "filename",
    "module",
    "exc_info",
    "exc_text",
    "stack_info",
    "lineno",
    "funcName",
    "created",
    "msecs",
    "relativeCreated",
    "thread",
    "threadName",
    "processName",
    "process",
    "taskName",
}


class JsonFormatter(logging.Formatter):
    """Serialize log records to JSON, preserving custom ``extra`` fields."""

    def format(self, record: logging.LogRecord) -> str:
        """Return a JSON-encoded representation of ``record``."""
        payload: dict[str, object] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key in RESERVED_LOG_RECORD_ATTRS or key.startswith("_"):
                continue
            payload[key] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str, ensure_ascii=False)


def configure_logging(config: LoggingConfig) -> logging.Logger:
    """Configure the ``frame_budget`` logger hierarchy.

    Args:
        config: Logging configuration settings.

    Returns:
        logging.Logger: Root logger for the frame budget namespace.
    """
    resolved_level = getattr(logging, config.level.upper(), logging.INFO)
    handler = logging.StreamHandler()
    resolved_format = config.format.lower()
    if resolved_format == "auto":
        stream = getattr(handler, "stream", sys.stderr)
        is_tty = bool(getattr(stream, "isatty", lambda: False)())
        resolved_format = "text" if is_tty else "json"

    if resolved_format == "json":
        formatter: logging.Formatter = JsonFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    handler.setFormatter(formatter)
    logger = logging.getLogger("frame_budget")
    logger.handlers.clear()
    logger.setLevel(resolved_level)
    logger.propagate = False
    logger.addHandler(handler)
    logging.captureWarnings(True)
    return logger


def collect_frames(directory: Path, fps: float = DEFAULT_FPS) -> list[Frame]:
    """Return the images in ``directory`` as frames sampled at ``fps``.

    Files are ordered by name. Each timestamp sits at the centre of its sampling
    interval, rounded to a tenth of a second.
    """
    paths = sorted(
        path
        for path in directory.iterdir()
        if path.is_file() and path.suffix.lower() in FRAME_SUFFIXES
    )
    return [
        Frame(
            index=index,
            locator=path,
            timestamp_sec=round_half_up((index + 0.5) / fps * 10) / 10,
        )
        for index, path in enumerate(paths)
    ]


def build_context(
    *,
    terminal_log: Path | None,
    git_diff: Path | None,
    branch: str,
    commits: Sequence[str],
) -> CaptureContext:
    """Assemble capture context from optional text files."""
    terminal_lines: list[str] = []
    if terminal_log is not None:
        terminal_lines = terminal_log.read_text(encoding="utf-8", errors="replace").splitlines()
    diff_text = None
    if git_diff is not None:
        diff_text = git_diff.read_text(encoding="utf-8", errors="replace")
    return CaptureContext(
        terminal=build_terminal_context(terminal_lines),
        git=build_git_context(branch, commits, diff_text),
    )


def build_repository(profile_file: Path | None) -> ProfileRepository:
    """Create a profile repository, registering any profiles in ``profile_file``."""
    repository = ProfileRepository()
    if profile_file is not None:
        repository.load_file(profile_file)
    return repository


def build_config(base: Config, **options: Any) -> Config:
    """Overlay explicitly passed CLI ``options`` on the environment ``base`` config."""

    def pick(key: str, fallback: Any) -> Any:
        value = options.get(key)
        return fallback if value is None else value

    current = base.selection
    selection = SelectionConfig(
        strategy=SelectionStrategy(pick("strategy", current.strategy)),
        target_frames=pick("target_frames", current.target_frames),
        diff_threshold=cast(float, pick("diff_threshold", current.diff_threshold)),
        channel_threshold=cast(int, pick("channel_threshold", current.channel_threshold)),
        diff_method=DiffMethod(pick("diff_method", current.diff_method)),
        max_workers=cast(int, pick("workers", current.max_workers)),
        max_shrink_attempts=current.max_shrink_attempts,
    )
    return Config(
        model=cast(str, pick("model", base.model)),
        profile_file=cast(Path | None, pick("profile_file", base.profile_file)),
        logging=LoggingConfig(
            level=cast(str, pick("log_level", base.logging.level)),
            format=cast(str, pick("log_format", base.logging.format)),
        ),
        selection=selection,
    )


def _load_base_config() -> Config:
    try:
        return load_config()
    except ConfigurationError as exc:
        raise click.ClickException(str(exc)) from exc


@click.group()
def cli() -> None:
    """Select frames and context that fit a model's token budget."""


@cli.command("plan")
@click.argument(
    "frames_dir", type=click.Path(path_type=Path, exists=True, file_okay=False)
)
@click.option(
    "--fps", type=float, default=DEFAULT_FPS, show_default=True, help="Frame sampling rate"
)
@click.option("--model", default=None, help="Target model profile name")
@click.option(
    "--profile-file",
    type=click.Path(path_type=Path, exists=True, dir_okay=False),
    default=None,
    help="JSON file with custom model profiles",
)
@click.option(
    "--strategy",
    type=click.Choice([item.value for item in SelectionStrategy], case_sensitive=False),
    default=None,
    help="Frame selection strategy",
)
@click.option("--target-frames", type=int, default=None, help="Override the allocated frame count")
@click.option(
    "--diff-threshold", type=float, default=None, help="Minimum change (%) for threshold picks"
)
@click.option(
    "--channel-threshold", type=int, default=None, help="Per-channel delta marking a changed pixel"
)
@click.option(
    "--diff-method",
    type=click.Choice([item.value for item in DiffMethod], case_sensitive=False),
    default=None,
    help="Frame difference metric",
)
@click.option("--workers", type=int, default=None, help="Threads used for frame diffing")
@click.option(
    "--terminal-log",
    type=click.Path(path_type=Path, exists=True, dir_okay=False),
    default=None,
    help="Terminal output to include as execution context",
)
@click.option(
    "--git-diff",
    type=click.Path(path_type=Path, exists=True, dir_okay=False),
    default=None,
    help="Unified diff to include as code context",
)
@click.option("--branch", default="", help="Git branch name for the code context")
@click.option("--commit", "commits", multiple=True, help="Recent commit line (repeatable)")
@click.option(
    "--optimize-dir",
    type=click.Path(path_type=Path, file_okay=False),
    default=None,
    help="Write optimized JPEG frames here and measure their real token cost",
)
@click.option(
    "--output",
    type=click.Path(path_type=Path, dir_okay=False),
    default=None,
    help="Optional destination file for the plan JSON",
)
@click.option(
    "--log-level",
    type=click.Choice(list(LOG_LEVELS), case_sensitive=False),
    default=None,
    help="Logging verbosity",
)
@click.option(
    "--log-format",
    type=click.Choice(list(LOG_FORMATS), case_sensitive=False),
    default=None,
    help="Logging output format",
)
def plan_command(**options: Any) -> None:
    """Plan the key frames and context for the frames in FRAMES_DIR."""
    try:
        config = build_config(_load_base_config(), **options)
    except ValueError as exc:
        raise click.BadParameter(str(exc)) from exc
    logger = configure_logging(config.logging)

    frames_dir = cast(Path, options["frames_dir"])
    frames = collect_frames(frames_dir, cast(float, options["fps"]))
    if not frames:
        raise click.ClickException(f"No frame images found in {frames_dir}")

    try:
        repository = build_repository(config.profile_file)
        context = build_context(
            terminal_log=cast(Path | None, options["terminal_log"]),
            git_diff=cast(Path | None, options["git_diff"]),
            branch=cast(str, options["branch"]),
            commits=cast(Sequence[str], options["commits"]),
        )
        optimize_dir = cast(Path | None, options["optimize_dir"])
        codec = JpegFrameCodec(optimize_dir) if optimize_dir else None
        profile = repository.get(config.model)
        plan = plan_capture(frames, context, profile, config=config.selection, codec=codec)
    except (ModelValidationError, ValueError, OSError) as exc:
        raise click.ClickException(str(exc)) from exc

    logger.info(
        "cli.plan",
        extra={
            "frames_dir": str(frames_dir),
            "profile": profile.name,
            "selected": len(plan.frames),
            "total_tokens": plan.utilization.total,
        },
    )

    rendered = json.dumps(plan.to_dict(), indent=2, ensure_ascii=False)
    output = cast(Path | None, options["output"])
    if output:
        try:
            output.parent.mkdir(parents=True, exist_ok=True)
            output.write_text(rendered + "\n", encoding="utf-8")
        except OSError as exc:  # pragma: no cover - filesystem dependent
            raise click.ClickException(f"Failed to write plan to {output}: {exc}") from exc
        click.echo(
            f"Plan written to {output} ({len(plan.frames)} frames, "
            f"{format_token_estimate(plan.utilization.total)} tokens)"
        )
    else:
        click.echo(rendered)

    if not plan.within_budget:
        for suggestion in plan.validation.suggestions:
            click.echo(f"Suggestion: {suggestion}", err=True)


@cli.command("profiles")
@click.option(
    "--profile-file",
    type=click.Path(path_type=Path, exists=True, dir_okay=False),
    default=None,
    help="JSON file with custom model profiles",
)
def profiles_command(profile_file: Path | None) -> None:
    """List the available model profiles."""
    try:
        repository = build_repository(profile_file)
    except ModelValidationError as exc:
        raise click.ClickException(str(exc)) from exc
    for name in repository.names():
        profile = repository.get(name)
        bias = profile.context_bias
        click.echo(
            f"{profile.name}: {format_token_estimate(profile.max_tokens)} tokens, "
            f"{profile.preferred_frames}/{profile.max_frames} frames, "
            f"bias visual={bias.visual:g} code={bias.code:g} execution={bias.execution:g}"
        )


@cli.command("diff")
@click.argument("first", type=click.Path(path_type=Path, exists=True, dir_okay=False))
@click.argument("second", type=click.Path(path_type=Path, exists=True, dir_okay=False))
@click.option(
    "--method",
    type=click.Choice([item.value for item in DiffMethod], case_sensitive=False),
    default=DiffMethod.PIXEL.value,
    show_default=True,
    help="Frame difference metric",
)
@click.option(
    "--channel-threshold",
    type=click.IntRange(0, 255),
    default=25,
    show_default=True,
    help="Per-channel delta marking a changed pixel",
)
def diff_command(first: Path, second: Path, method: str, channel_threshold: int) -> None:
    """Print the percentage difference between two frame images."""
    if DiffMethod(method) is DiffMethod.SSIM:
        value = ssim_diff(first, second)
    else:
        value = frame_diff(first, second, channel_threshold=channel_threshold)
    click.echo(f"{value:.2f}")


if __name__ == "__main__":
    cli()
