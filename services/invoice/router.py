"""
services/invoice/router.py
Invoice endpoints. Each request is one transaction: validation happens
before any write, and any failure rolls back every write of the request.

Error bodies are {"success": false, "error": "..."} with a 4xx/5xx status.
"""

import logging

from fastapi import APIRouter, Body, Depends
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.redis_client import get_redis
from services.invoice.service import InvoiceError, create_booking_invoice, send_talent_invoice
from services.notification.service import dispatch_emails
from services.realtime.change_feed import publish_changes
from shared.middleware.auth import get_current_user, get_talent_profile
from shared.models.models import TalentProfile, User
from shared.schemas.schemas import (
    InvoiceCreateRequest,
    InvoiceCreateResponse,
    InvoicePaymentSummary,
    ManualInvoiceRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/invoices", tags=["Invoices"])

_FIELD_ERRORS = {
    "bookingId": "Booking ID is required",
    "agreedPrice": "Valid agreed price is required",
}


def _failure(status_code: int, error: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": error})


def _validation_message(exc: ValidationError) -> str:
    first = exc.errors()[0]
    loc = first.get("loc") or ("body",)
    return _FIELD_ERRORS.get(str(loc[0]), f"{'.'.join(str(p) for p in loc)}: {first.get('msg')}")


@router.post("", response_model=InvoiceCreateResponse)
async def create_invoice(
    payload: dict = Body(...),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    """
    Issue an invoice for a booking.

    Commission is 15% for Pro talents and 20% otherwise; any
    `platformCommissionRate` sent by the client is ignored.
    """
    try:
        data = InvoiceCreateRequest.model_validate(payload)
    except ValidationError as e:
        return _failure(400, _validation_message(e))

    try:
        result = await create_booking_invoice(
            db,
            booking_id=data.booking_id,
            agreed_price=data.agreed_price,
            currency=data.currency,
            requested_rate=data.platform_commission_rate,
            caller=current_user,
        )
        await db.commit()
    except InvoiceError as e:
        await db.rollback()
        return _failure(e.status_code, e.message)
    except Exception as e:
        await db.rollback()
        logger.error(f"Invoice for booking {data.booking_id} failed: {e}", exc_info=True)
        return _failure(500, "Failed to create invoice")

    await publish_changes(redis, result.changes)
    dispatch_emails(result.notifications)

    payment = result.payment
    return InvoiceCreateResponse(
        payment=InvoicePaymentSummary(
            id=payment.id,
            total_amount=float(payment.total_amount),
            currency=payment.currency,
            platform_commission=float(payment.platform_commission),
            talent_earnings=float(payment.talent_earnings),
        )
    )


@router.post("/manual")
async def create_manual_invoice(
    data: ManualInvoiceRequest,
    talent: TalentProfile = Depends(get_talent_profile),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    """Talent sends an invoice for a direct booking or one of their gig applications."""
    try:
        result = await send_talent_invoice(
            db,
            talent,
            invoice_type=data.type,
            amount=data.amount,
            currency=data.currency,
            booking_id=data.booking_id,
            gig_application_id=data.gig_application_id,
        )
        await db.commit()
    except InvoiceError as e:
        await db.rollback()
        return _failure(e.status_code, e.message)
    except Exception as e:
        await db.rollback()
        logger.error(f"Manual {data.type} invoice by talent {talent.id} failed: {e}", exc_info=True)
        return _failure(500, "Failed to create invoice")

    await publish_changes(redis, result.changes)
    dispatch_emails(result.notifications)
    return {
        "success": True,
        "payment_id": str(result.payment.id),
        "message": "Invoice created successfully",
    }
