"""
Application configuration.

Responsibilities:
- Load deployment-specific configuration
- Read environment variables
- Provide a typed, immutable config object

Non-responsibilities:
- No pipeline logic
- No audio format constants (see constants.py)
- No runtime mutation
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from constants import STREAM_QUEUE_CAPACITY


@dataclass(frozen=True)
class AppConfig:
    """
    Immutable application configuration.

    Constructed once at process startup.
    Passed downward to the router, playback pipeline and HTTP app.
    """

    # ------------------------------------------------------------------
    # Environment
    # ------------------------------------------------------------------

    env: str = "dev"
    log_level: str = "INFO"

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    enable_json_logs: bool = True

    # ------------------------------------------------------------------
    # Inbound streams
    # ------------------------------------------------------------------

    stream_queue_capacity: int = STREAM_QUEUE_CAPACITY
    recognition_locales: tuple[str, ...] = ()

    # UDP RTP listener; None disables it
    rtp_host: str = "0.0.0.0"
    rtp_port: int | None = None
    rtp_call_id: str = "default"
    rtp_channel_id: str = "default"

    # ------------------------------------------------------------------
    # Playback
    # ------------------------------------------------------------------

    ffmpeg_path: str = "ffmpeg"
    openai_api_key: str | None = None
    tts_model: str = "tts-1"
    tts_voice: str = "alloy"

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    http_host: str = "0.0.0.0"
    http_port: int = 8000

    # ------------------------------------------------------------------
    # Factory
    # ------------------------------------------------------------------

    @staticmethod
    def load_from_env() -> AppConfig:
        """
        Load configuration from environment variables.

        Raises:
            ValueError if a numeric variable is not an integer.
        """
        locales = os.environ.get("RECOGNITION_LOCALES", "")
        rtp_port = os.environ.get("RTP_PORT")
        return AppConfig(
            env=os.environ.get("ENV", "dev"),
            log_level=os.environ.get("LOG_LEVEL", "INFO"),

            enable_json_logs=os.environ.get("ENABLE_JSON_LOGS", "1") == "1",

            stream_queue_capacity=int(
                os.environ.get("STREAM_QUEUE_CAPACITY", str(STREAM_QUEUE_CAPACITY))
            ),
            recognition_locales=tuple(
                loc.strip() for loc in locales.split(",") if loc.strip()
            ),
            rtp_host=os.environ.get("RTP_HOST", "0.0.0.0"),
            rtp_port=int(rtp_port) if rtp_port else None,
            rtp_call_id=os.environ.get("RTP_CALL_ID", "default"),
            rtp_channel_id=os.environ.get("RTP_CHANNEL_ID", "default"),

            ffmpeg_path=os.environ.get("FFMPEG_PATH", "ffmpeg"),
            openai_api_key=os.environ.get("OPENAI_API_KEY"),
            tts_model=os.environ.get("TTS_MODEL", "tts-1"),
            tts_voice=os.environ.get("TTS_VOICE", "alloy"),

            http_host=os.environ.get("HTTP_HOST", "0.0.0.0"),
            http_port=int(os.environ.get("HTTP_PORT", "8000")),
        )
