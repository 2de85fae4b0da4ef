"""
Completion and handoff of the intake record.

The record is handed to the notifier exactly once per call: either when it
becomes complete (followed by a farewell and a delayed hang-up), or as a
partial "incomplete session" notice when the caller disconnects first.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional

import structlog

from src.intake.extract import IntakeRecord
from src.intake.notify import Notifier
from src.intake.twilio_protocol import create_text_media_message

logger = structlog.get_logger(__name__)


class HandoffController:
    def __init__(
        self,
        notifier: Notifier,
        send_to_caller: Callable[[str], Awaitable[None]],
        close_caller: Callable[[], Awaitable[None]],
        *,
        farewell_text: str,
        close_delay_ms: int = 2000,
    ):
        self._notifier = notifier
        self._send_to_caller = send_to_caller
        self._close_caller = close_caller
        self._farewell_text = farewell_text
        self._close_delay_ms = max(0, close_delay_ms)

        self._completed: bool = False
        self._notify_tasks: set[asyncio.Task] = set()
        self._close_task: Optional[asyncio.Task] = None

    @property
    def completed(self) -> bool:
        return self._completed

    async def check_and_handoff(self, record: IntakeRecord, stream_sid: str) -> bool:
        """
        Hand off the record if it is complete.

        Returns True only for the call that performed the handoff.
        """
        if self._completed:
            return False
        if not record.is_complete():
            logger.debug("Intake record not complete yet", missing=record.missing_fields())
            return False

        self._completed = True
        logger.info("Intake record complete, handing off", stream_sid=stream_sid)

        self._submit(record, complete=True)

        try:
            await self._send_to_caller(create_text_media_message(stream_sid, self._farewell_text))
        except Exception as e:
            logger.warning("Failed to send farewell", error=str(e))

        self._close_task = asyncio.create_task(self._close_after_delay())
        return True

    def on_caller_disconnect(self, record: IntakeRecord) -> bool:
        """
        Caller hung up. Sends a partial record if anything was collected.

        Returns True if a notification was submitted.
        """
        if self._completed:
            return False
        self._completed = True

        if not record.has_any():
            logger.info("Caller disconnected before any intake fields were collected")
            return False

        logger.info(
            "Caller disconnected before handoff",
            missing=record.missing_fields(),
        )
        # A record can be complete here if the response never finished.
        self._submit(record, complete=record.is_complete())
        return True

    def cancel_pending_close(self) -> None:
        if self._close_task and not self._close_task.done():
            self._close_task.cancel()
        self._close_task = None

    async def drain(self) -> None:
        """Wait for in-flight notifications."""
        if not self._notify_tasks:
            return
        await asyncio.gather(*list(self._notify_tasks), return_exceptions=True)

    def _submit(self, record: IntakeRecord, *, complete: bool) -> None:
        snapshot = record.model_copy()
        task = asyncio.create_task(self._notify(snapshot, complete))
        self._notify_tasks.add(task)
        task.add_done_callback(self._notify_tasks.discard)

    async def _notify(self, record: IntakeRecord, complete: bool) -> None:
        try:
            delivered = await self._notifier(record, complete)
        except Exception as e:
            logger.error("Notification failed", error=str(e), complete=complete)
            return
        if not delivered:
            logger.warning("Notification not delivered", complete=complete)

    async def _close_after_delay(self) -> None:
        try:
            await asyncio.sleep(self._close_delay_ms / 1000.0)
            logger.info("Closing call after farewell")
            await self._close_caller()
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.warning("Failed to close caller connection", error=str(e))
