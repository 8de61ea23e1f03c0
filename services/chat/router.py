"""
services/chat/router.py
Booking chat: live broadcast channel over WebSocket plus a persisted
message log per booking for participants who were offline.
"""

import asyncio
import json
import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, WebSocket, WebSocketDisconnect
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db, get_db_context
from config.redis_client import get_redis
from services.chat.channel import (
    ChatSession,
    broadcast_frame,
    build_channel_id,
    parse_channel_id,
    redis_publisher,
)
from services.chat.filters import filter_sensitive_content
from services.notification.service import dispatch_emails, notify
from shared.middleware.auth import authenticate_token, get_current_user
from shared.models.models import Booking, ChatMessage, NotificationType, TalentProfile, User
from shared.schemas.schemas import ChatMessageCreate, ChatMessageResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Chat"])


# ── Helpers ───────────────────────────────────────────────────

async def _talent_profile_for(db: AsyncSession, user: User):
    return await db.scalar(select(TalentProfile).where(TalentProfile.user_id == user.id))


async def _participant_booking(db: AsyncSession, booking_id: UUID, user: User) -> Booking:
    booking = await db.scalar(select(Booking).where(Booking.id == booking_id))
    if not booking:
        raise HTTPException(status_code=404, detail="Booking not found")
    if booking.user_id == user.id:
        return booking
    profile = await _talent_profile_for(db, user)
    if profile and booking.talent_id == profile.id:
        return booking
    raise HTTPException(status_code=403, detail="Not a participant of this booking")


# ── Persisted booking messages ────────────────────────────────

@router.get("/chat/bookings/{booking_id}/channel")
async def get_booking_channel(
    booking_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    booking = await _participant_booking(db, booking_id, current_user)
    if booking.talent_id is None:
        raise HTTPException(status_code=400, detail="Booking has no talent assigned yet")
    return {"channel_id": build_channel_id(booking.user_id, booking.talent_id, booking.event_type)}


@router.get("/chat/bookings/{booking_id}/messages", response_model=list[ChatMessageResponse])
async def list_booking_messages(
    booking_id: UUID,
    limit: int = Query(100, ge=1, le=500),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await _participant_booking(db, booking_id, current_user)
    result = await db.execute(
        select(ChatMessage)
        .where(ChatMessage.booking_id == booking_id)
        .order_by(ChatMessage.created_at.asc())
        .limit(limit)
    )
    return [ChatMessageResponse.model_validate(m) for m in result.scalars()]


@router.post(
    "/chat/bookings/{booking_id}/messages",
    response_model=ChatMessageResponse,
    status_code=201,
)
async def post_booking_message(
    booking_id: UUID,
    data: ChatMessageCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    """
    Store a redacted message, notify the other participant and
    broadcast it on the booking's live channel.
    """
    booking = await _participant_booking(db, booking_id, current_user)
    content = filter_sensitive_content(data.content)
    if not content:
        raise HTTPException(status_code=400, detail="Message is empty")

    message = ChatMessage(booking_id=booking.id, sender_id=current_user.id, content=content)
    db.add(message)
    await db.flush()

    if booking.user_id == current_user.id:
        recipient_id = None
        if booking.talent_id:
            recipient_id = await db.scalar(
                select(TalentProfile.user_id).where(TalentProfile.id == booking.talent_id)
            )
    else:
        recipient_id = booking.user_id

    notification = None
    if recipient_id:
        notification = await notify(
            db,
            recipient_id,
            NotificationType.NEW_MESSAGE,
            booking_id=booking.id,
            sender_name=current_user.name,
            event_type=booking.event_type,
        )
    await db.commit()
    dispatch_emails([notification])

    if booking.talent_id:
        channel_id = build_channel_id(booking.user_id, booking.talent_id, booking.event_type)
        try:
            await redis_publisher(redis)(channel_id, broadcast_frame({
                "id": str(message.id),
                "content": message.content,
                "senderId": str(message.sender_id),
                "createdAt": message.created_at.isoformat(),
            }))
        except Exception as e:
            logger.warning(f"Chat broadcast for booking {booking.id} failed: {e}")

    return ChatMessageResponse.model_validate(message)


# ── Live channel ──────────────────────────────────────────────

@router.websocket("/ws/chat/{channel_id}")
async def chat_socket(
    websocket: WebSocket,
    channel_id: str,
    token: str = Query(None),
    redis=Depends(get_redis),
):
    """
    Client frames: {"content": "..."}
    Server frames: broadcast frames for every message not seen before.
    """
    try:
        booker_id, talent_id, _ = parse_channel_id(channel_id)
    except ValueError:
        await websocket.close(code=4400)
        return

    async with get_db_context() as db:
        try:
            user = await authenticate_token(token, db, redis)
        except HTTPException:
            await websocket.close(code=4401)
            return
        profile = await _talent_profile_for(db, user)

    if str(user.id) != booker_id and not (profile and str(profile.id) == talent_id):
        await websocket.close(code=4403)
        return

    await websocket.accept()
    session = ChatSession(str(user.id), redis_publisher(redis))
    session.join(channel_id)
    pubsub = redis.pubsub()
    await pubsub.subscribe(channel_id)

    async def forward_broadcasts() -> None:
        while True:
            raw = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
            if raw is None or raw.get("type") != "message":
                continue
            try:
                frame = json.loads(raw["data"])
            except (TypeError, ValueError):
                continue
            message = session.receive(frame)
            if message is not None:
                await websocket.send_json(broadcast_frame(message))

    async def read_outgoing() -> None:
        while True:
            frame = await websocket.receive_json()
            text = frame.get("content") if isinstance(frame, dict) else None
            if isinstance(text, str):
                message = await session.send(text)
                if message is not None:
                    await websocket.send_json(broadcast_frame(message))

    tasks = [asyncio.create_task(forward_broadcasts()), asyncio.create_task(read_outgoing())]
    try:
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in done:
            exc = task.exception()
            if exc and not isinstance(exc, WebSocketDisconnect):
                logger.error(f"Chat socket {channel_id} failed: {exc}", exc_info=exc)
    finally:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await pubsub.unsubscribe(channel_id)
        await pubsub.aclose()
        session.clear()
