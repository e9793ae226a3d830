"""
Per-view session settings.

Read-only inputs to an exchange: the controller snapshots them when an
exchange starts and never mutates them mid-exchange. They are not part of
SessionState.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Mapping

from constants import AVATAR_VARIANTS
from config import AppConfig


class InvalidSettings(ValueError):
    """Client supplied a settings value outside the allowed set."""


@dataclass(frozen=True)
class SessionSettings:
    recognition_language: str
    synthesis_language: str
    voice: str | None
    avatar_variant: str

    @staticmethod
    def from_config(config: AppConfig) -> SessionSettings:
        return SessionSettings(
            recognition_language=config.recognition_language,
            synthesis_language=config.synthesis_language,
            voice=config.synthesis_voice,
            avatar_variant=config.avatar_variant,
        )

    def with_overrides(self, overrides: Mapping[str, Any]) -> SessionSettings:
        """
        Apply client overrides.

        Keys: "language" (recognition and synthesis), "recognition_language",
        "synthesis_language", "voice", "avatar". Unknown keys are ignored.
        """
        changes: dict[str, Any] = {}

        language = overrides.get("language")
        if language is not None:
            changes["recognition_language"] = _tag(language, "language")
            changes["synthesis_language"] = changes["recognition_language"]

        for key in ("recognition_language", "synthesis_language"):
            if overrides.get(key) is not None:
                changes[key] = _tag(overrides[key], key)

        if "voice" in overrides:
            voice = overrides["voice"]
            changes["voice"] = (str(voice).strip() or None) if voice is not None else None

        avatar = overrides.get("avatar")
        if avatar is not None:
            if avatar not in AVATAR_VARIANTS:
                raise InvalidSettings(f"unknown avatar variant: {avatar!r}")
            changes["avatar_variant"] = avatar

        return replace(self, **changes) if changes else self

    def to_message(self) -> dict[str, Any]:
        return {
            "recognition_language": self.recognition_language,
            "synthesis_language": self.synthesis_language,
            "voice": self.voice,
            "avatar": self.avatar_variant,
        }


def _tag(value: Any, name: str) -> str:
    tag = str(value).strip()
    if not tag:
        raise InvalidSettings(f"{name} must be a non-empty language tag")
    return tag
