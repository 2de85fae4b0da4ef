"""
Playback bookkeeping for barge-in truncation.

Twilio reports a running millisecond timestamp on every inbound media frame.
Remembering that timestamp when the first audio delta of an assistant response
goes out gives a clock for how much of the response the caller has heard.
Every forwarded delta is followed by a mark; Twilio echoes the mark once the
audio before it has played, so a non-empty mark queue means assistant audio is
still buffered for playback and is worth truncating.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

import structlog

logger = structlog.get_logger(__name__)


class PlaybackState(str, Enum):
    IDLE = "idle"
    PLAYING = "playing"


@dataclass(frozen=True)
class Truncation:
    item_id: str
    audio_end_ms: int
    content_index: int = 0


@dataclass
class PlaybackTracker:
    latest_media_timestamp: int = 0
    response_start_timestamp: Optional[int] = None
    last_assistant_item: Optional[str] = None
    mark_queue: deque[str] = field(default_factory=deque)

    @property
    def state(self) -> PlaybackState:
        if self.response_start_timestamp is None:
            return PlaybackState.IDLE
        return PlaybackState.PLAYING

    def reset_stream(self) -> None:
        """Start of a new Twilio stream: clock back to zero, nothing playing."""
        self.latest_media_timestamp = 0
        self._reset_playback()

    def update_timestamp(self, timestamp: Optional[int]) -> None:
        """Record the timestamp of an inbound media frame; never moves backwards."""
        if timestamp is None:
            return
        if timestamp > self.latest_media_timestamp:
            self.latest_media_timestamp = timestamp

    def audio_delta(self, item_id: Optional[str]) -> None:
        """An assistant audio delta was forwarded to the caller."""
        if self.response_start_timestamp is None:
            self.response_start_timestamp = self.latest_media_timestamp
            logger.debug(
                "Assistant playback started",
                response_start_timestamp=self.response_start_timestamp,
                item_id=item_id,
            )
        if item_id:
            self.last_assistant_item = item_id

    def push_mark(self, name: str) -> None:
        self.mark_queue.append(name)

    def ack_mark(self) -> Optional[str]:
        if not self.mark_queue:
            return None
        return self.mark_queue.popleft()

    def speech_started(self) -> Optional[Truncation]:
        """
        The caller started talking.

        Returns the truncation to send if assistant audio is still queued for
        playback, otherwise None. Either way nothing is truncated twice.
        """
        if not self.mark_queue or self.response_start_timestamp is None:
            return None
        if not self.last_assistant_item:
            return None

        elapsed = max(0, self.latest_media_timestamp - self.response_start_timestamp)
        item_id = self.last_assistant_item
        self._reset_playback()

        return Truncation(item_id=item_id, audio_end_ms=elapsed)

    def _reset_playback(self) -> None:
        self.mark_queue.clear()
        self.last_assistant_item = None
        self.response_start_timestamp = None
