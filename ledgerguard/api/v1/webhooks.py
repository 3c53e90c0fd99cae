"""Stripe webhooks endpoint."""

import logging

import stripe
from fastapi import APIRouter, HTTPException, Request, status

from ledgerguard.config import get_settings
from ledgerguard.deps import BillingServices

router = APIRouter()
logger = logging.getLogger(__name__)
settings = get_settings()


@router.post("/stripe")
async def stripe_webhook(request: Request, services: BillingServices) -> dict:
    """Handle Stripe webhook events.

    This endpoint receives events from Stripe about:
    - Failed invoice payments (account becomes DUE)
    - Paid invoices (invoice marked PAID, account restored to ACTIVE)
    """
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature")

    if not sig_header:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing Stripe signature",
        )

    try:
        event = stripe.Webhook.construct_event(
            payload, sig_header, settings.stripe_webhook_secret
        )
    except ValueError:
        logger.error("Invalid webhook payload")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid payload",
        )
    except stripe.SignatureVerificationError:
        logger.error("Invalid webhook signature")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid signature",
        )

    logger.info(f"Received Stripe webhook: {event.type}")

    try:
        match event.type:
            case "invoice.payment_failed":
                await services.stripe.handle_payment_failed(event.data.object)
                logger.info("Payment failed processed")

            case "invoice.paid":
                await services.stripe.handle_invoice_paid(event.data.object)
                logger.info("Invoice paid processed")

            case _:
                logger.debug(f"Unhandled event type: {event.type}")

    except Exception as e:
        # Answer 200 anyway; Stripe retries failed deliveries indefinitely.
        logger.error(f"Error processing webhook {event.type}: {e}")

    return {"status": "ok"}
