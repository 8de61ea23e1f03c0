"""
tests/test_gigs.py
Gig opportunities: listing, applying, and the owner declining a gig invoice.
"""

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shared.models.models import (
    Booking,
    BookingStatus,
    GigApplication,
    GigApplicationStatus,
    Notification,
    NotificationType,
    TalentProfile,
    User,
)
from tests.conftest import auth_headers, refetch


@pytest.mark.asyncio
async def test_list_open_gigs(client: AsyncClient, talent_user: User, gig: Booking, booking: Booking):
    response = await client.get("/gigs", headers=auth_headers(talent_user))
    assert response.status_code == 200
    assert [g["id"] for g in response.json()] == [str(gig.id)]


@pytest.mark.asyncio
async def test_apply_to_gig_notifies_owner(
    client: AsyncClient,
    db: AsyncSession,
    booker: User,
    talent_user: User,
    talent_profile: TalentProfile,
    gig: Booking,
):
    response = await client.post(
        f"/gigs/{gig.id}/apply",
        headers=auth_headers(talent_user),
        json={"message": "We play covers and originals."},
    )
    assert response.status_code == 201
    assert response.json()["status"] == GigApplicationStatus.INTERESTED.value

    notification = await db.scalar(select(Notification).where(Notification.user_id == booker.id))
    assert notification.type == NotificationType.GIG_APPLICATION.value
    assert notification.message == "The Tal Ents is interested in your Corporate Party gig."


@pytest.mark.asyncio
async def test_duplicate_application_conflicts(
    client: AsyncClient,
    talent_user: User,
    gig_application: GigApplication,
    gig: Booking,
):
    response = await client.post(f"/gigs/{gig.id}/apply", headers=auth_headers(talent_user), json={})
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_only_owner_lists_applications(
    client: AsyncClient,
    booker: User,
    other_booker: User,
    gig: Booking,
    gig_application: GigApplication,
):
    owner = await client.get(f"/gigs/{gig.id}/applications", headers=auth_headers(booker))
    assert [a["id"] for a in owner.json()] == [str(gig_application.id)]

    stranger = await client.get(f"/gigs/{gig.id}/applications", headers=auth_headers(other_booker))
    assert stranger.status_code == 403


@pytest.mark.asyncio
async def test_decline_gig_invoice_reopens_gig(
    client: AsyncClient,
    db: AsyncSession,
    booker: User,
    talent_user: User,
    talent_profile: TalentProfile,
    gig: Booking,
    gig_application: GigApplication,
):
    gig.status = BookingStatus.PENDING_APPROVAL
    gig.talent_id = talent_profile.id
    gig_application.status = GigApplicationStatus.INVOICE_SENT
    await db.commit()

    response = await client.post(
        f"/gigs/applications/{gig_application.id}/decline-invoice",
        headers=auth_headers(booker),
    )
    assert response.status_code == 200

    application = await refetch(db, GigApplication, gig_application.id)
    assert application.status == GigApplicationStatus.INTERESTED

    reopened = await refetch(db, Booking, gig.id)
    assert reopened.status == BookingStatus.PENDING
    assert reopened.talent_id is None
    assert reopened.payment_id is None

    notification = await db.scalar(select(Notification).where(Notification.user_id == talent_user.id))
    assert notification.type == NotificationType.INVOICE_DECLINED.value


@pytest.mark.asyncio
async def test_decline_gig_invoice_without_invoice_conflicts(
    client: AsyncClient,
    booker: User,
    gig_application: GigApplication,
):
    response = await client.post(
        f"/gigs/applications/{gig_application.id}/decline-invoice",
        headers=auth_headers(booker),
    )
    assert response.status_code == 409
