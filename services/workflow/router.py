"""
services/workflow/router.py
WebSocket that streams workflow notices, refresh hints and badge counts.

    ws://<host>/ws/workflow?token=<access_token>

Server frames:  {"type": "notice" | "refresh" | "counts", ...}
Client frames:  {"action": "mark_read", "counter": "invoices" | "requests"}
"""

import asyncio
import logging
from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException, Query, WebSocket, WebSocketDisconnect
from sqlalchemy import select

from config.database import get_db_context
from config.redis_client import get_redis
from services.notification.counters import count_recent_invoices
from services.realtime.change_feed import RowFilter, Subscription, listen
from services.workflow.inbox import WorkflowInbox
from services.workflow.transitions import CountsChanged, Effect, Notice, Refresh, Viewer, WorkflowState
from shared.middleware.auth import authenticate_token
from shared.models.models import TalentProfile, UserRole

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Workflow"])

_FRAME_TYPES = {Notice: "notice", Refresh: "refresh", CountsChanged: "counts"}


def effect_frame(effect: Effect) -> dict:
    return {"type": _FRAME_TYPES[type(effect)], **asdict(effect)}


def viewer_subscriptions(viewer: Viewer) -> list[Subscription]:
    """Rows the viewer takes part in, as booker and (if any) as talent."""
    subscriptions = [
        Subscription("bookings", row_filter=RowFilter("user_id", viewer.user_id)),
        Subscription("payments", row_filter=RowFilter("booker_id", viewer.user_id)),
    ]
    if viewer.talent_id:
        subscriptions += [
            Subscription("bookings", row_filter=RowFilter("talent_id", viewer.talent_id)),
            Subscription("payments", row_filter=RowFilter("talent_id", viewer.talent_id)),
            Subscription("gig_applications", row_filter=RowFilter("talent_id", viewer.talent_id)),
        ]
    return subscriptions


@router.websocket("/ws/workflow")
async def workflow_socket(
    websocket: WebSocket,
    token: str = Query(None),
    redis=Depends(get_redis),
):
    async with get_db_context() as db:
        try:
            user = await authenticate_token(token, db, redis)
        except HTTPException:
            await websocket.close(code=4401)
            return
        profile = await db.scalar(select(TalentProfile).where(TalentProfile.user_id == user.id))
        seed = 0 if user.role == UserRole.TALENT else await count_recent_invoices(db, user.id)

    viewer = Viewer(user_id=str(user.id), talent_id=str(profile.id) if profile else None)
    await websocket.accept()

    async def sink(effects: list[Effect]) -> None:
        for effect in effects:
            await websocket.send_json(effect_frame(effect))

    state = WorkflowState.initial(viewer, invoice_seed=seed)
    inbox = WorkflowInbox(state, sink)
    await websocket.send_json(effect_frame(state.counts()))

    async def pump_changes() -> None:
        async for raw in listen(redis, viewer_subscriptions(viewer)):
            inbox.put(raw)

    async def read_commands() -> None:
        while True:
            frame = await websocket.receive_json()
            if isinstance(frame, dict) and frame.get("action") == "mark_read":
                inbox.put_mark_read(str(frame.get("counter")))

    tasks = [
        asyncio.create_task(pump_changes()),
        asyncio.create_task(inbox.run()),
        asyncio.create_task(read_commands()),
    ]
    try:
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in done:
            exc = task.exception()
            if exc and not isinstance(exc, WebSocketDisconnect):
                logger.error(f"Workflow socket for {viewer.user_id} failed: {exc}", exc_info=exc)
    finally:
        # Stops delivery; requests already issued by the client are unaffected
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
