"""
Tests for barge-in playback bookkeeping.
"""

from src.intake.playback import PlaybackState, PlaybackTracker, Truncation


def _playing_tracker(start_ts: int = 100, item_id: str = "I1") -> PlaybackTracker:
    tracker = PlaybackTracker()
    tracker.update_timestamp(start_ts)
    tracker.audio_delta(item_id)
    tracker.push_mark("responsePart")
    return tracker


class TestTimestamps:
    def test_timestamp_never_decreases(self):
        tracker = PlaybackTracker()
        for ts in (20, 40, 30, 60, None, 60):
            tracker.update_timestamp(ts)
        assert tracker.latest_media_timestamp == 60

    def test_reset_stream_zeroes_clock_and_playback(self):
        tracker = _playing_tracker(start_ts=500)
        tracker.reset_stream()

        assert tracker.latest_media_timestamp == 0
        assert tracker.state == PlaybackState.IDLE
        assert tracker.last_assistant_item is None
        assert not tracker.mark_queue


class TestPlayback:
    def test_first_delta_records_start(self):
        tracker = PlaybackTracker()
        tracker.update_timestamp(100)
        assert tracker.state == PlaybackState.IDLE

        tracker.audio_delta("I1")
        tracker.update_timestamp(180)
        tracker.audio_delta("I1")

        assert tracker.state == PlaybackState.PLAYING
        assert tracker.response_start_timestamp == 100
        assert tracker.last_assistant_item == "I1"

    def test_later_delta_updates_item(self):
        tracker = _playing_tracker()
        tracker.audio_delta("I2")
        assert tracker.last_assistant_item == "I2"
        assert tracker.response_start_timestamp == 100

    def test_ack_mark_is_fifo_and_noop_when_empty(self):
        tracker = PlaybackTracker()
        assert tracker.ack_mark() is None

        tracker.push_mark("a")
        tracker.push_mark("b")
        assert tracker.ack_mark() == "a"
        assert list(tracker.mark_queue) == ["b"]


class TestTruncation:
    def test_truncates_with_elapsed_time(self):
        tracker = _playing_tracker(start_ts=100)
        tracker.update_timestamp(350)

        assert tracker.speech_started() == Truncation(item_id="I1", audio_end_ms=250)

    def test_truncation_clears_state(self):
        tracker = _playing_tracker()
        tracker.update_timestamp(400)
        tracker.speech_started()

        assert not tracker.mark_queue
        assert tracker.last_assistant_item is None
        assert tracker.response_start_timestamp is None
        assert tracker.state == PlaybackState.IDLE

    def test_second_speech_started_does_not_retrigger(self):
        tracker = _playing_tracker()
        tracker.update_timestamp(400)

        assert tracker.speech_started() is not None
        assert tracker.speech_started() is None

    def test_no_truncation_when_all_marks_acknowledged(self):
        tracker = _playing_tracker()
        tracker.ack_mark()
        tracker.update_timestamp(400)

        assert tracker.speech_started() is None
        # Playback bookkeeping is kept; the next response still starts from here.
        assert tracker.last_assistant_item == "I1"

    def test_no_truncation_without_playback(self):
        tracker = PlaybackTracker()
        tracker.push_mark("responsePart")

        assert tracker.speech_started() is None

    def test_elapsed_is_zero_when_caller_speaks_immediately(self):
        tracker = _playing_tracker(start_ts=100)

        assert tracker.speech_started().audio_end_ms == 0

    def test_no_truncation_without_active_item_keeps_bookkeeping(self):
        tracker = PlaybackTracker()
        tracker.update_timestamp(100)
        tracker.audio_delta(None)
        tracker.push_mark("responsePart")
        tracker.update_timestamp(300)

        assert tracker.speech_started() is None
        assert tracker.response_start_timestamp == 100
        assert list(tracker.mark_queue) == ["responsePart"]
        assert tracker.state == PlaybackState.PLAYING
