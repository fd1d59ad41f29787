"""Configuration models and utilities for frame budgeting."""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping, MutableMapping
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Final, cast

from dotenv import find_dotenv, load_dotenv

from .budget import MAX_SHRINK_ATTEMPTS
from .profiles import DEFAULT_PROFILE_NAME
from .selection.diff import DEFAULT_CHANNEL_THRESHOLD, DiffMethod
from .selection.threshold import DEFAULT_DIFF_THRESHOLD

_LOGGER = logging.getLogger(__name__)

ENV_MODEL: Final = "FRAME_BUDGET_MODEL"
ENV_PROFILE_FILE: Final = "FRAME_BUDGET_PROFILE_FILE"
ENV_STRATEGY: Final = "FRAME_BUDGET_STRATEGY"
ENV_TARGET_FRAMES: Final = "FRAME_BUDGET_TARGET_FRAMES"
ENV_DIFF_THRESHOLD: Final = "FRAME_BUDGET_DIFF_THRESHOLD"
ENV_CHANNEL_THRESHOLD: Final = "FRAME_BUDGET_CHANNEL_THRESHOLD"
ENV_DIFF_METHOD: Final = "FRAME_BUDGET_DIFF_METHOD"
ENV_MAX_WORKERS: Final = "FRAME_BUDGET_MAX_WORKERS"
ENV_LOG_LEVEL: Final = "FRAME_BUDGET_LOG_LEVEL"
ENV_LOG_FORMAT: Final = "FRAME_BUDGET_LOG_FORMAT"

LOG_LEVELS: Final[tuple[str, ...]] = ("debug", "info", "warning", "error", "critical")
LOG_FORMATS: Final[tuple[str, ...]] = ("auto", "json", "text")


class ConfigurationError(RuntimeError):
    """Raised when frame budget configuration is missing or invalid."""


class SelectionStrategy(str, Enum):
    """Frame selection strategies offered by the planner."""

    THRESHOLD = "threshold"
    MODEL = "model"
    EVEN = "even"


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    """Structured logging configuration."""

    level: str = "info"
    format: str = "auto"


@dataclass(frozen=True, slots=True)
class SelectionConfig:
    """Configuration for frame selection and budget enforcement.

    Args:
        strategy: Selection strategy (default ``threshold``).
        target_frames: Optional frame count overriding the budget allocation.
        diff_threshold: Minimum change percentage for threshold candidates
            (default 3.0).
        channel_threshold: Per-channel intensity delta marking a pixel as changed
            (default 25).
        diff_method: ``pixel`` or ``ssim`` difference metric.
        max_workers: Threads used to diff frame pairs (default 1).
        max_shrink_attempts: Eviction passes before accepting an over-budget
            capture (default 5).

    Raises:
        ValueError: If any provided parameter violates constraints.
    """

    strategy: SelectionStrategy = SelectionStrategy.THRESHOLD
    target_frames: int | None = None
    diff_threshold: float = DEFAULT_DIFF_THRESHOLD
    channel_threshold: int = DEFAULT_CHANNEL_THRESHOLD
    diff_method: DiffMethod = DiffMethod.PIXEL
    max_workers: int = 1
    max_shrink_attempts: int = MAX_SHRINK_ATTEMPTS

    def __post_init__(self) -> None:
        """Validate configuration values."""
        object.__setattr__(self, "strategy", SelectionStrategy(self.strategy))
        object.__setattr__(self, "diff_method", DiffMethod(self.diff_method))
        if self.target_frames is not None and self.target_frames < 2:
            raise ValueError("target_frames must be at least 2")
        if not 0.0 <= self.diff_threshold <= 100.0:
            raise ValueError("diff_threshold must be between 0 and 100")
        if not 0 <= self.channel_threshold <= 255:
            raise ValueError("channel_threshold must be between 0 and 255")
        if self.max_workers <= 0:
            raise ValueError("max_workers must be greater than 0")
        if self.max_shrink_attempts <= 0:
            raise ValueError("max_shrink_attempts must be greater than 0")


@dataclass(frozen=True, slots=True)
class Config:
    """Unified application configuration."""

    model: str = DEFAULT_PROFILE_NAME
    profile_file: Path | None = None
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    selection: SelectionConfig = field(default_factory=SelectionConfig)


def _parse(env: Mapping[str, str | None], name: str, kind: type[int] | type[float]) -> float | None:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return None
    try:
        return kind(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be a {kind.__name__}, got {raw!r}") from exc


def _choice(
    env: Mapping[str, str | None], name: str, choices: tuple[str, ...], default: str
) -> str:
    raw = (env.get(name) or default).strip().lower()
    if raw not in choices:
        joined = ", ".join(choices)
        raise ConfigurationError(f"{name} must be one of: {joined}")
    return raw


def load_config(
    *,
    dotenv_path: str | os.PathLike[str] | None = None,
    environ: Mapping[str, str | None] | None = None,
) -> Config:
    """Load configuration from the environment and an optional ``.env`` file.

    Args:
        dotenv_path: Optional path to a dotenv file. When supplied, the file is
            loaded before reading environment variables. The default behaviour
            mirrors :func:`dotenv.find_dotenv`.
        environ: Optional mapping used instead of :data:`os.environ`. Primarily
            intended for testing.

    Returns:
        Loaded :class:`Config` with validated values.

    Raises:
        ConfigurationError: When any variable is malformed.
    """
    env: MutableMapping[str, str | None]
    if environ is not None:
        env = dict(environ)
    else:
        env = cast(MutableMapping[str, str | None], os.environ)
        if dotenv_path:
            resolved_path = find_dotenv(str(dotenv_path), raise_error_if_not_found=False)
        else:
            resolved_path = find_dotenv(usecwd=True)
        if resolved_path:
            _LOGGER.debug("config.load_dotenv", extra={"path": resolved_path})
            load_dotenv(resolved_path, override=False)

    strategy = _choice(
        env,
        ENV_STRATEGY,
        tuple(item.value for item in SelectionStrategy),
        SelectionStrategy.THRESHOLD.value,
    )
    diff_method = _choice(
        env, ENV_DIFF_METHOD, tuple(item.value for item in DiffMethod), DiffMethod.PIXEL.value
    )
    target_frames = _parse(env, ENV_TARGET_FRAMES, int)
    diff_threshold = _parse(env, ENV_DIFF_THRESHOLD, float)
    channel_threshold = _parse(env, ENV_CHANNEL_THRESHOLD, int)
    max_workers = _parse(env, ENV_MAX_WORKERS, int)
    profile_file = env.get(ENV_PROFILE_FILE)

    try:
        selection = SelectionConfig(
            strategy=SelectionStrategy(strategy),
            target_frames=int(target_frames) if target_frames is not None else None,
            diff_threshold=(
                diff_threshold if diff_threshold is not None else DEFAULT_DIFF_THRESHOLD
            ),
            channel_threshold=(
                int(channel_threshold)
                if channel_threshold is not None
                else DEFAULT_CHANNEL_THRESHOLD
            ),
            diff_method=DiffMethod(diff_method),
            max_workers=int(max_workers) if max_workers is not None else 1,
        )
    except ValueError as exc:
        raise ConfigurationError(str(exc)) from exc

    return Config(
        model=(env.get(ENV_MODEL) or DEFAULT_PROFILE_NAME).strip(),
        profile_file=Path(profile_file) if profile_file else None,
        logging=LoggingConfig(
            level=_choice(env, ENV_LOG_LEVEL, LOG_LEVELS, "info"),
            format=_choice(env, ENV_LOG_FORMAT, LOG_FORMATS, "auto"),
        ),
        selection=selection,
    )


__all__ = [
    "ENV_DIFF_METHOD",
    "ENV_DIFF_THRESHOLD",
    "ENV_MODEL",
    "ENV_STRATEGY",
    "ENV_TARGET_FRAMES",
    "Config",
    "ConfigurationError",
    "LoggingConfig",
    "SelectionConfig",
    "SelectionStrategy",
    "load_config",
]
