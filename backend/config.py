"""
Application configuration.

Responsibilities:
- Load deployment-specific configuration
- Read environment variables
- Provide a typed, immutable config object

Non-responsibilities:
- No orchestration logic
- No behavioral constants (see constants.py)
- No runtime mutation
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from constants import (
    AVATAR_VARIANT_DEFAULT,
    RECOGNITION_LANGUAGE_DEFAULT,
    REPLY_TIMEOUT_S_DEFAULT,
    SYNTHESIS_LANGUAGE_DEFAULT,
)


@dataclass(frozen=True)
class AppConfig:
    """
    Immutable application configuration.

    Constructed once at process startup.
    Passed downward to the gateway, which builds adapters per view.
    """

    # ------------------------------------------------------------------
    # Environment
    # ------------------------------------------------------------------

    env: str
    log_level: str

    # ------------------------------------------------------------------
    # Remote reply endpoint
    # ------------------------------------------------------------------

    reply_endpoint_url: str
    reply_timeout_s: float

    # ------------------------------------------------------------------
    # Recognition
    # ------------------------------------------------------------------

    recognition_language: str
    whisper_model: str
    whisper_device: str | None
    whisper_compute_type: str | None
    whisper_preload: bool

    # ------------------------------------------------------------------
    # Synthesis
    # ------------------------------------------------------------------

    synthesis_provider: str
    synthesis_language: str
    synthesis_voice: str | None
    elevenlabs_api_key: str | None
    elevenlabs_voice_id: str | None
    elevenlabs_model_id: str | None

    # ------------------------------------------------------------------
    # Presentation
    # ------------------------------------------------------------------

    avatar_variant: str

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    enable_json_logs: bool

    # ------------------------------------------------------------------
    # Server
    # ------------------------------------------------------------------

    server_host: str
    server_port: int

    # ------------------------------------------------------------------
    # Factory
    # ------------------------------------------------------------------

    @staticmethod
    def load_from_env() -> AppConfig:
        """
        Load configuration from environment variables.

        Raises:
            ValueError if a numeric variable cannot be parsed.
        """
        return AppConfig(
            env=os.environ.get("ENV", "dev"),
            log_level=os.environ.get("LOG_LEVEL", "INFO"),

            reply_endpoint_url=os.environ.get(
                "REPLY_ENDPOINT_URL",
                "https://kevansoon-tts-endpoint.hf.space/gemini",
            ),
            reply_timeout_s=float(
                os.environ.get("REPLY_TIMEOUT_S", str(REPLY_TIMEOUT_S_DEFAULT))
            ),

            recognition_language=os.environ.get(
                "RECOGNITION_LANGUAGE", RECOGNITION_LANGUAGE_DEFAULT
            ),
            whisper_model=os.environ.get("WHISPER_MODEL", "base"),
            whisper_device=os.environ.get("WHISPER_DEVICE"),
            whisper_compute_type=os.environ.get("WHISPER_COMPUTE_TYPE"),
            whisper_preload=os.environ.get("WHISPER_PRELOAD", "1") == "1",

            synthesis_provider=os.environ.get("SYNTHESIS_PROVIDER", "local"),
            synthesis_language=os.environ.get(
                "SYNTHESIS_LANGUAGE", SYNTHESIS_LANGUAGE_DEFAULT
            ),
            synthesis_voice=os.environ.get("SYNTHESIS_VOICE"),
            elevenlabs_api_key=os.environ.get("ELEVENLABS_API_KEY"),
            elevenlabs_voice_id=os.environ.get("ELEVENLABS_VOICE_ID", "21m00Tcm4TlvDq8ikWAM"),
            elevenlabs_model_id=os.environ.get("ELEVENLABS_MODEL_ID", "eleven_turbo_v2"),

            avatar_variant=os.environ.get("AVATAR_VARIANT", AVATAR_VARIANT_DEFAULT),

            enable_json_logs=os.environ.get("ENABLE_JSON_LOGS", "1") == "1",

            server_host=os.environ.get("SERVER_HOST", "127.0.0.1"),
            server_port=int(os.environ.get("SERVER_PORT", "8000")),
        )
