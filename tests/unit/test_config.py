# pylint: disable=missing-module-docstring,missing-function-docstring

import pytest

from config import AppConfig
from constants import STREAM_QUEUE_CAPACITY


def test_defaults(monkeypatch: pytest.MonkeyPatch):
    for name in ["LOG_LEVEL", "STREAM_QUEUE_CAPACITY", "RECOGNITION_LOCALES", "FFMPEG_PATH", "HTTP_PORT"]:
        monkeypatch.delenv(name, raising=False)

    config = AppConfig.load_from_env()

    assert config.log_level == "INFO"
    assert config.stream_queue_capacity == STREAM_QUEUE_CAPACITY
    assert config.recognition_locales == ()
    assert config.ffmpeg_path == "ffmpeg"
    assert config.http_port == 8000


def test_environment_overrides(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("LOG_LEVEL", "DEBUG")
    monkeypatch.setenv("STREAM_QUEUE_CAPACITY", "25")
    monkeypatch.setenv("RECOGNITION_LOCALES", "en-US, de-DE,,")
    monkeypatch.setenv("FFMPEG_PATH", "/opt/ffmpeg/bin/ffmpeg")
    monkeypatch.setenv("TTS_VOICE", "nova")

    config = AppConfig.load_from_env()

    assert config.log_level == "DEBUG"
    assert config.stream_queue_capacity == 25
    assert config.recognition_locales == ("en-US", "de-DE")
    assert config.ffmpeg_path == "/opt/ffmpeg/bin/ffmpeg"
    assert config.tts_voice == "nova"


def test_invalid_integer(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("HTTP_PORT", "eighty")
    with pytest.raises(ValueError):
        AppConfig.load_from_env()


def test_rtp_listener_settings(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.delenv("RTP_PORT", raising=False)
    assert AppConfig.load_from_env().rtp_port is None

    monkeypatch.setenv("RTP_PORT", "5004")
    monkeypatch.setenv("RTP_CALL_ID", "standup")
    config = AppConfig.load_from_env()

    assert config.rtp_port == 5004
    assert config.rtp_call_id == "standup"
    assert config.rtp_channel_id == "default"
