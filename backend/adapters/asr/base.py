"""
Speech-recognition backend contract.

This module defines the *interface only*: provider clients (streaming
websocket services, batch APIs) are external collaborators and live
outside this package.

Key invariants:
- A backend is a capability: start(locale) opens one recognition session.
- The router may hold zero or more sessions per logical stream (for
  example one per locale); each session receives every frame of its stream
  in FIFO order.
- Sessions receive opaque compressed payloads plus their sample index;
  they never see container framing or silence fill.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


class RecognitionSession(ABC):
    """
    One open recognition stream for a single locale.

    Implementations are responsible for:
    - Forwarding audio to the provider
    - Delivering transcripts to their own sink

    Non-responsibilities:
    - No stream routing, queueing or backpressure
    - No retries (callers decide)
    """

    @abstractmethod
    async def send_audio(self, payload: bytes, sample_index: int) -> None:
        """
        Provide one compressed frame.

        Args:
            payload: Opaque Opus bytes for one 20ms frame.
            sample_index: Frame position on the stream's 48kHz timeline.

        Contract:
        - Must not block the caller indefinitely.
        - Errors are raised to the caller, which logs them and keeps
          feeding the remaining sessions.
        """
        raise NotImplementedError

    @abstractmethod
    async def close(self) -> None:
        """
        Finish the session and release provider resources.

        Contract:
        - close() MUST be idempotent.
        """
        raise NotImplementedError


class RecognitionBackend(ABC):
    """
    Factory for recognition sessions of one provider.
    """

    @abstractmethod
    async def start(self, locale: str) -> RecognitionSession:
        """
        Open a new session for the given locale (e.g. "en-US").

        Raises:
            Any provider error; the router logs it and continues without
            that session.
        """
        raise NotImplementedError
