"""Registry of model profiles that shape frame and context budgets."""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Iterable
from pathlib import Path
from typing import Final

from .models import (
    CausalFocus,
    ContextBias,
    ModelProfile,
    ModelValidationError,
    PromptStyle,
    Verbosity,
)

_LOGGER = logging.getLogger(__name__)

DEFAULT_PROFILE_NAME: Final = "claude-code"
_NON_LETTERS = re.compile(r"[^a-z]")

BUILTIN_PROFILES: Final[tuple[ModelProfile, ...]] = (
    ModelProfile(
        name="claude-code",
        max_tokens=100_000,
        image_token_estimate=1200,
        preferred_frames=6,
        max_frames=10,
        context_bias=ContextBias(visual=0.4, code=0.4, execution=0.2),
        prompt_style=PromptStyle(
            verbosity=Verbosity.MINIMAL,
            causal_focus_level=CausalFocus.HIGH,
        ),
    ),
    ModelProfile(
        name="claude-sonnet",
        max_tokens=200_000,
        image_token_estimate=1200,
        preferred_frames=8,
        max_frames=12,
        context_bias=ContextBias(visual=0.5, code=0.3, execution=0.2),
        prompt_style=PromptStyle(
            verbosity=Verbosity.STANDARD,
            causal_focus_level=CausalFocus.HIGH,
        ),
    ),
    ModelProfile(
        name="claude-opus",
        max_tokens=200_000,
        image_token_estimate=1200,
        preferred_frames=10,
        max_frames=15,
        context_bias=ContextBias(visual=0.45, code=0.35, execution=0.2),
        prompt_style=PromptStyle(
            verbosity=Verbosity.DETAILED,
            causal_focus_level=CausalFocus.HIGH,
        ),
    ),
    ModelProfile(
        name="claude-haiku",
        max_tokens=200_000,
        image_token_estimate=1200,
        preferred_frames=4,
        max_frames=6,
        context_bias=ContextBias(visual=0.5, code=0.3, execution=0.2),
        prompt_style=PromptStyle(
            verbosity=Verbosity.MINIMAL,
            include_diff_correlation=False,
            include_uncertainty_guidance=False,
            causal_focus_level=CausalFocus.MEDIUM,
        ),
    ),
)


def normalize_profile_name(name: str) -> str:
    """Lower-case ``name`` and replace anything but letters with dashes."""
    return _NON_LETTERS.sub("-", name.strip().lower())


class ProfileRepository:
    """Per-request collection of model profiles.

    Each repository starts from its own copy of the built-in profiles, so
    registering a custom profile never leaks into other repositories.
    """

    def __init__(
        self,
        profiles: Iterable[ModelProfile] = BUILTIN_PROFILES,
        *,
        default_name: str = DEFAULT_PROFILE_NAME,
    ) -> None:
        """Seed the repository with ``profiles`` and pick the fallback profile."""
        self._profiles: dict[str, ModelProfile] = {}
        for profile in profiles:
            self.register(profile)
        if default_name.lower() not in self._profiles:
            raise ModelValidationError(f"Default profile '{default_name}' is not registered")
        self._default_name = default_name.lower()

    def __contains__(self, name: object) -> bool:  # noqa: D105
        return isinstance(name, str) and self._key(name) in self._profiles

    @property
    def default(self) -> ModelProfile:
        """Profile returned for unknown names."""
        return self._profiles[self._default_name]

    def register(self, profile: ModelProfile) -> None:
        """Add or replace ``profile`` under its lower-cased name."""
        self._profiles[profile.name.lower()] = profile

    def get(self, name: str | None) -> ModelProfile:
        """Return the profile registered as ``name`` or the default profile."""
        if not name:
            return self.default
        profile = self._profiles.get(self._key(name))
        if profile is None:
            _LOGGER.warning(
                "profiles.unknown_profile",
                extra={"requested": name, "fallback": self._default_name},
            )
            return self.default
        return profile

    def names(self) -> list[str]:
        """Return the registered profile names in registration order."""
        return list(self._profiles)

    def load_file(self, path: Path) -> list[ModelProfile]:
        """Register every profile described in the JSON file at ``path``.

        The file may hold a single profile object or a list of them.

        Raises:
            ModelValidationError: If the file cannot be read or a profile is invalid.
        """
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise ModelValidationError(f"Cannot load profiles from {path}: {exc}") from exc
        entries = payload if isinstance(payload, list) else [payload]
        loaded = [ModelProfile.from_mapping(entry) for entry in entries]
        for profile in loaded:
            self.register(profile)
        _LOGGER.debug(
            "profiles.loaded",
            extra={"path": str(path), "profiles": [profile.name for profile in loaded]},
        )
        return loaded

    def _key(self, name: str) -> str:
        lowered = name.strip().lower()
        if lowered in self._profiles:
            return lowered
        return normalize_profile_name(name)


__all__ = [
    "BUILTIN_PROFILES",
    "DEFAULT_PROFILE_NAME",
    "ProfileRepository",
    "normalize_profile_name",
]
