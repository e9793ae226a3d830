"""
Voice selection for speech synthesis.

Rule, in order:
1. the first candidate whose language tag exactly matches the requested one
2. the configured session voice, if the engine has it
3. None: let the engine use its default voice

Selection never fails the session.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Sequence


@dataclass(frozen=True)
class VoiceInfo:
    """Engine-neutral view of one installed voice."""
    voice_id: str
    name: str
    languages: tuple[str, ...] = ()


def normalize_language_tag(raw: Any) -> str:
    """
    Canonical lower-case BCP-47 form ("en_US" -> "en-us").

    espeak reports languages as bytes with a leading priority byte
    (b"\\x05en-us"); anything non-printable is stripped.
    """
    if isinstance(raw, (bytes, bytearray)):
        raw = bytes(raw).decode("utf-8", errors="ignore")
    text = "".join(ch for ch in str(raw) if ch.isprintable()).strip()
    return text.replace("_", "-").lower()


def voice_info_from_engine(voice: Any) -> VoiceInfo:
    """Adapt a pyttsx3 Voice object (id / name / languages)."""
    languages = getattr(voice, "languages", None) or ()
    if isinstance(languages, (str, bytes, bytearray)):
        languages = (languages,)
    return VoiceInfo(
        voice_id=str(getattr(voice, "id", "")),
        name=str(getattr(voice, "name", "") or ""),
        languages=tuple(
            tag for tag in (normalize_language_tag(x) for x in languages) if tag
        ),
    )


def select_voice(
    voices: Sequence[VoiceInfo],
    language: str | None,
    default_voice: str | None = None,
) -> str | None:
    """Return the voice_id to use, or None for the engine default."""
    wanted = normalize_language_tag(language) if language else ""
    if wanted:
        for voice in voices:
            if wanted in voice.languages:
                return voice.voice_id

    if default_voice:
        needle = default_voice.strip().lower()
        for voice in voices:
            if needle in (voice.voice_id.lower(), voice.name.lower()):
                return voice.voice_id

    return None

