"""
Twilio Media Streams <-> OpenAI Realtime bridge for help-desk intake calls.

Twilio (g711_ulaw 8kHz) -> OpenAI Realtime -> Twilio (g711_ulaw 8kHz)

One `CallBridge` per `/media-stream` connection. Caller frames arrive through
`handle_message()` (driven by the server's receive loop); OpenAI events arrive
through `handle_realtime_event()` (driven by the bridge's own receive task).
Both run on the same event loop and share the per-call state below.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Optional

import structlog
import websockets
from websockets.protocol import State

from src.intake.config import Config, get_config
from src.intake.extract import FieldExtractor, IntakeRecord
from src.intake.handoff import HandoffController
from src.intake.notify import Notifier, SlackNotifier
from src.intake.playback import PlaybackTracker
from src.intake.prompts import resolve_instructions
from src.intake.realtime_protocol import (
    RealtimeEvent,
    RealtimeEventType,
    build_audio_append,
    build_session_update,
    build_truncate,
    encode_event,
    parse_realtime_event,
)
from src.intake.twilio_protocol import (
    RESPONSE_PART_MARK,
    TwilioEventType,
    TwilioMarkEvent,
    TwilioMediaEvent,
    TwilioStartEvent,
    UnknownEventError,
    create_clear_message,
    create_mark_message,
    create_media_message,
    parse_twilio_message,
)

logger = structlog.get_logger(__name__)

Connector = Callable[[str, dict[str, str]], Awaitable[Any]]


async def _connect_openai_ws(url: str, headers: dict[str, str]) -> Any:
    return await websockets.connect(url, additional_headers=headers, open_timeout=10)


class CallBridge:
    """
    Relays one phone call to one OpenAI Realtime session.

    Interface used by `server/app.py`:
    - `start()`
    - `stop()`
    - `handle_message(raw_message)`
    """

    def __init__(
        self,
        send_message: Callable[[str], Awaitable[None]],
        close_caller: Callable[[], Awaitable[None]],
        *,
        config: Optional[Config] = None,
        notifier: Optional[Notifier] = None,
        connect: Optional[Connector] = None,
    ):
        self.config = config or get_config()
        self._send_message = send_message
        self._connect = connect or _connect_openai_ws

        self._stream_sid: str = ""
        self._call_sid: str = ""
        self._is_running: bool = False

        self._openai_ws: Optional[Any] = None
        self._openai_recv_task: Optional[asyncio.Task] = None
        self._session_update_task: Optional[asyncio.Task] = None

        self.playback = PlaybackTracker()
        self.record = IntakeRecord()
        self._extractor = FieldExtractor(self.record)
        self.handoff = HandoffController(
            notifier or SlackNotifier(self.config),
            self._send_to_caller,
            close_caller,
            farewell_text=self.config.farewell_text,
            close_delay_ms=self.config.farewell_close_delay_ms,
        )

    @property
    def stream_sid(self) -> str:
        return self._stream_sid

    @property
    def call_sid(self) -> str:
        return self._call_sid

    @property
    def openai_connected(self) -> bool:
        ws = self._openai_ws
        return ws is not None and getattr(ws, "state", None) is State.OPEN

    async def start(self) -> None:
        self._is_running = True
        try:
            await self._connect_openai()
        except Exception as e:
            # The call just won't progress; Twilio hangs up eventually.
            logger.error("Failed to connect to OpenAI Realtime", error=str(e))
            return
        logger.info("Call bridge started")

    async def stop(self) -> None:
        """Caller connection closed. Safe to call more than once."""
        if not self._is_running:
            return
        self._is_running = False

        for task in (self._session_update_task, self._openai_recv_task):
            if task and not task.done():
                task.cancel()
        self.handoff.cancel_pending_close()

        await asyncio.gather(
            *[t for t in (self._session_update_task, self._openai_recv_task) if t],
            return_exceptions=True,
        )

        if self.openai_connected:
            try:
                await self._openai_ws.close()
            except Exception as e:
                logger.warning("Error closing OpenAI Realtime socket", error=str(e))

        self._openai_ws = None
        self._openai_recv_task = None
        self._session_update_task = None

        self.handoff.on_caller_disconnect(self.record)
        await self.handoff.drain()

        logger.info("Call bridge stopped", stream_sid=self._stream_sid)

    # ------------------------------------------------------------------
    # OpenAI side
    # ------------------------------------------------------------------

    async def _connect_openai(self) -> None:
        if self._openai_ws:
            return

        headers = {"Authorization": f"Bearer {self.config.openai_api_key}"}
        self._openai_ws = await self._connect(self.config.realtime_url, headers)
        logger.info(
            "Connected to OpenAI Realtime API",
            model=self.config.openai_realtime_model,
            voice=self.config.openai_realtime_voice,
        )

        self._openai_recv_task = asyncio.create_task(self._openai_receive_loop())
        self._session_update_task = asyncio.create_task(self._send_session_update())

    async def _send_session_update(self) -> None:
        delay_ms = self.config.session_update_delay_ms
        try:
            if delay_ms > 0:
                await asyncio.sleep(delay_ms / 1000.0)
        except asyncio.CancelledError:
            return

        instructions = resolve_instructions(self.config)
        await self._openai_send(build_session_update(self.config, instructions))
        logger.info(
            "Initialized OpenAI session",
            output_modalities=list(self.config.openai_output_modalities),
            audio_format=self.config.openai_audio_format,
        )

    async def _openai_send(self, message: dict) -> None:
        if not self.openai_connected:
            return
        try:
            await self._openai_ws.send(encode_event(message))
        except Exception as e:
            logger.error("OpenAI send failed", error=str(e), type=message.get("type"))

    async def _openai_receive_loop(self) -> None:
        ws = self._openai_ws
        if not ws:
            return

        try:
            async for raw in ws:
                if not self._is_running:
                    break
                await self.handle_realtime_event(raw)
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.error("OpenAI Realtime connection error", error=str(e))
        finally:
            # The caller side is left alone; Twilio closes it on its own account.
            logger.info("OpenAI Realtime API disconnected", stream_sid=self._stream_sid)

    async def handle_realtime_event(self, raw_message: str | bytes) -> None:
        try:
            event = parse_realtime_event(raw_message)
        except ValueError as e:
            logger.warning("Failed to parse OpenAI Realtime event", error=str(e))
            return

        try:
            await self._dispatch_realtime_event(event)
        except Exception as e:
            logger.error("Error processing OpenAI Realtime event", type=event.type, error=str(e))

    async def _dispatch_realtime_event(self, event: RealtimeEvent) -> None:
        kind = event.kind

        if kind == RealtimeEventType.AUDIO_DELTA:
            await self._handle_audio_delta(event)
        elif kind == RealtimeEventType.SPEECH_STARTED:
            await self._handle_speech_started()
        elif kind == RealtimeEventType.TEXT_DELTA:
            self._extractor.feed(event.delta)
        elif kind == RealtimeEventType.RESPONSE_DONE:
            await self.handoff.check_and_handoff(self.record, self._stream_sid)
        elif kind == RealtimeEventType.ERROR:
            logger.error("OpenAI Realtime error", details=event.raw)
        elif kind in (RealtimeEventType.SESSION_CREATED, RealtimeEventType.SESSION_UPDATED):
            logger.info("OpenAI Realtime session event", type=event.type)
        else:
            logger.debug("Ignoring OpenAI Realtime event", type=event.type)

    async def _handle_audio_delta(self, event: RealtimeEvent) -> None:
        if not event.delta:
            return

        await self._send_to_caller(create_media_message(self._stream_sid, event.delta))
        self.playback.audio_delta(event.item_id)

        if self._stream_sid:
            await self._send_to_caller(create_mark_message(self._stream_sid, RESPONSE_PART_MARK))
            self.playback.push_mark(RESPONSE_PART_MARK)

    async def _handle_speech_started(self) -> None:
        truncation = self.playback.speech_started()
        if truncation is None:
            return

        logger.info(
            "Caller interrupted, truncating assistant audio",
            item_id=truncation.item_id,
            audio_end_ms=truncation.audio_end_ms,
        )
        await self._openai_send(
            build_truncate(truncation.item_id, truncation.audio_end_ms, truncation.content_index)
        )
        if self._stream_sid:
            await self._send_to_caller(create_clear_message(self._stream_sid))

    # ------------------------------------------------------------------
    # Twilio side
    # ------------------------------------------------------------------

    async def handle_message(self, raw_message: str) -> None:
        try:
            event_type, event = parse_twilio_message(raw_message)
        except UnknownEventError as e:
            logger.info("Ignoring unknown Twilio event", event_type=e.event_type)
            return
        except ValueError as e:
            logger.warning("Failed to parse Twilio message", error=str(e))
            return

        try:
            await self._dispatch_twilio_event(event_type, event)
        except Exception as e:
            logger.error("Error handling Twilio event", event_type=event_type.value, error=str(e))

    async def _dispatch_twilio_event(self, event_type: TwilioEventType, event: Any) -> None:
        if event_type == TwilioEventType.MEDIA:
            await self._handle_media(event)
        elif event_type == TwilioEventType.START:
            self._handle_start(event)
        elif event_type == TwilioEventType.MARK:
            self._handle_mark(event)
        elif event_type == TwilioEventType.STOP:
            logger.info("Twilio stream stopped", stream_sid=self._stream_sid)
        elif event_type == TwilioEventType.CONNECTED:
            logger.debug("Twilio media stream connected")
        else:
            logger.debug("Ignoring Twilio event", event_type=event_type.value)

    def _handle_start(self, event: TwilioStartEvent) -> None:
        self._stream_sid = event.stream_sid
        self._call_sid = event.call_sid
        self.playback.reset_stream()
        logger.info("Incoming stream has started", stream_sid=event.stream_sid, call_sid=event.call_sid)

    async def _handle_media(self, event: TwilioMediaEvent) -> None:
        self.playback.update_timestamp(event.timestamp)
        if not event.payload or not self.openai_connected:
            return
        await self._openai_send(build_audio_append(event.payload))

    def _handle_mark(self, event: TwilioMarkEvent) -> None:
        self.playback.ack_mark()

    async def _send_to_caller(self, message: str) -> None:
        try:
            await self._send_message(message)
        except Exception as e:
            logger.error("Failed to send message to caller", error=str(e))


async def create_bridge(
    send_message: Callable[[str], Awaitable[None]],
    close_caller: Callable[[], Awaitable[None]],
    **kwargs: Any,
) -> CallBridge:
    """
    Create and start a new call bridge.

    Args:
        send_message: Function to send messages to the Twilio WebSocket
        close_caller: Function that closes the Twilio WebSocket

    Returns:
        Started CallBridge
    """
    bridge = CallBridge(send_message, close_caller, **kwargs)
    await bridge.start()
    return bridge
