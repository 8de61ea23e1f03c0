"""
services/workflow/inbox.py
Per-subscriber event inbox.

Each listener owns a bounded queue of typed items (change events and local
mark-read commands). A single consumer takes one item at a time, runs the
pure reducer to completion and hands the resulting effects to a sink, so
the reducer never needs locking. When the queue is full the oldest item is
dropped.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Union

from pydantic import ValidationError

from config.settings import settings
from services.workflow.transitions import Effect, WorkflowState, apply_event, mark_read
from shared.schemas.schemas import ChangeEvent

logger = logging.getLogger(__name__)

EffectSink = Callable[[list[Effect]], Awaitable[None]]


@dataclass(frozen=True)
class MarkRead:
    counter: str


InboxItem = Union[ChangeEvent, MarkRead]


class WorkflowInbox:
    def __init__(self, state: WorkflowState, sink: EffectSink, maxsize: int = None):
        self.state = state
        self.dropped = 0
        self._sink = sink
        self._queue: asyncio.Queue[InboxItem] = asyncio.Queue(maxsize or settings.INBOX_MAX_EVENTS)

    def __len__(self) -> int:
        return self._queue.qsize()

    def _enqueue(self, item: InboxItem) -> None:
        if self._queue.full():
            self._queue.get_nowait()
            self._queue.task_done()
            self.dropped += 1
            logger.warning(f"Inbox for {self.state.viewer.user_id} full, dropped oldest item")
        self._queue.put_nowait(item)

    def put(self, raw: dict) -> bool:
        """Validate a raw change payload and enqueue it. False if rejected."""
        try:
            event = ChangeEvent.model_validate(raw)
        except ValidationError as e:
            logger.warning(f"Rejected change event for table {raw.get('table')!r}: {e.error_count()} error(s)")
            return False
        self._enqueue(event)
        return True

    def put_mark_read(self, counter: str) -> None:
        self._enqueue(MarkRead(counter=counter))

    async def process_one(self) -> list[Effect]:
        item = await self._queue.get()
        try:
            if isinstance(item, MarkRead):
                try:
                    self.state, effects = mark_read(self.state, item.counter)
                except ValueError as e:
                    logger.warning(str(e))
                    effects = []
            else:
                self.state, effects = apply_event(self.state, item)
            if effects:
                await self._sink(effects)
            return effects
        finally:
            self._queue.task_done()

    async def drain(self) -> list[Effect]:
        """Process everything currently queued. Used by tests and shutdown."""
        effects: list[Effect] = []
        while not self._queue.empty():
            effects.extend(await self.process_one())
        return effects

    async def run(self) -> None:
        while True:
            await self.process_one()
