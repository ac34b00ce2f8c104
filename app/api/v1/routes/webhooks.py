import json
import logging

import stripe
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from app.core.config import settings
from app.api.deps import paypal_client
from app.db.session import get_db
from app.services import booking_service, paypal_order_service
from app.services.paypal_client import PayPalError, WEBHOOK_HEADERS
from app.services.cms_sync_service import SIGNATURE_HEADER, handle_webhook, verify_signature

logger = logging.getLogger(__name__)

router = APIRouter(tags=["webhooks"])

_MIRRORED = {
    "payment_intent.canceled": "canceled",
    "payment_intent.payment_failed": "requires_payment_method",
}


@router.post("/webhooks/stripe")
async def stripe_webhook(request: Request, db: Session = Depends(get_db)):
    body = await request.body()
    signature = request.headers.get("stripe-signature")
    if not settings.STRIPE_WEBHOOK_SECRET:
        raise HTTPException(status_code=500, detail="Stripe webhook secret not configured")
    if not signature:
        raise HTTPException(status_code=400, detail="Missing signature")
    try:
        event = stripe.Webhook.construct_event(body, signature, settings.STRIPE_WEBHOOK_SECRET)
    except (ValueError, stripe.SignatureVerificationError):
        logger.warning("Rejected Stripe webhook with bad signature")
        raise HTTPException(status_code=400, detail="Invalid signature")

    intent = event["data"]["object"]
    if event["type"] == "payment_intent.amount_capturable_updated":
        booking_service.mark_payment_authorized(db, intent["id"], intent.get("amount_capturable"))
    elif event["type"] in _MIRRORED:
        booking_service.mirror_payment_status(db, intent["id"], _MIRRORED[event["type"]])
    else:
        logger.debug("Ignoring Stripe event %s", event["type"])
    return {"received": True}


@router.post("/webhooks/sanity")
async def sanity_webhook(request: Request, db: Session = Depends(get_db)):
    body = await request.body()
    if not verify_signature(body, request.headers.get(SIGNATURE_HEADER)):
        logger.warning("Rejected Sanity webhook with missing or bad signature")
        raise HTTPException(status_code=401, detail="Invalid signature")
    try:
        payload = json.loads(body or b"{}")
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Invalid payload")
    # Sanity and the search index are called with blocking HTTP
    result = await run_in_threadpool(handle_webhook, db, payload)
    return result.to_dict()


@router.post("/webhooks/paypal")
async def paypal_webhook(request: Request, db: Session = Depends(get_db), paypal=Depends(paypal_client)):
    headers = {name: request.headers.get(name) for name in WEBHOOK_HEADERS}
    if not all(headers.values()):
        raise HTTPException(status_code=400, detail="Missing required headers")
    if not settings.PAYPAL_WEBHOOK_ID:
        raise HTTPException(status_code=500, detail="PayPal webhook id not configured")
    try:
        event = json.loads(await request.body())
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON")
    if not isinstance(event, dict):
        raise HTTPException(status_code=400, detail="Invalid payload")

    try:
        valid = await run_in_threadpool(paypal.verify_webhook_signature, headers, event, settings.PAYPAL_WEBHOOK_ID)
    except PayPalError as e:
        logger.error("PayPal signature verification call failed: %s", e)
        raise HTTPException(status_code=500, detail="Could not verify webhook")
    if not valid:
        logger.warning("Rejected PayPal webhook %s with bad signature", event.get("id"))
        raise HTTPException(status_code=400, detail="Invalid signature")
    return await run_in_threadpool(paypal_order_service.handle_webhook_event, db, event)
