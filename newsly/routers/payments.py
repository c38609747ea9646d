"""
Router for plan upgrades: PhonePe pay-page checkout (or mock mode) and Stripe webhooks.
"""
import json
import logging
from typing import Optional

import stripe
from fastapi import APIRouter, Depends, Header, HTTPException, Request
from sqlalchemy.orm import Session

from ..config import get_settings
from ..database import get_db
from ..models.subscriber import Subscriber, TIER_FREE, TIER_PRO, TIER_PREMIUM, normalize_tier, tier_rank
from ..models.transaction import (
    Transaction,
    TRANSACTION_STATUS_PENDING,
    TRANSACTION_STATUS_SUCCESS,
    TRANSACTION_STATUS_FAILED,
    PROVIDER_MOCK,
    PROVIDER_PHONEPE,
    PROVIDER_STRIPE,
)
from ..schemas.payment_schema import (
    CheckoutRequest,
    CheckoutResponse,
    MockCompleteRequest,
    PhonePeWebhook,
    StripeCheckoutRequest,
    StripeCheckoutResponse,
    TransactionOut,
)
from ..services.phonepe_service import (
    PaymentVerificationError,
    decode_webhook_payload,
    generate_transaction_id,
    initiate_payment,
)
from ..services.subscription_service import PLAN_PRICES, change_tier

logger = logging.getLogger(__name__)
router = APIRouter(tags=["payments"])

PHONEPE_FAILURE_CODES = ("PAYMENT_ERROR", "PAYMENT_DECLINED")


@router.get("/config-status")
async def check_payment_config():
    """
    Debugging endpoint to check which payment providers are configured
    """
    settings = get_settings()
    return {
        "mock_payment": settings.use_mock_payment,
        "phonepe_configured": bool(settings.phonepe_merchant_id and settings.phonepe_salt_key),
        "stripe_configured": bool(settings.stripe_secret_key),
        "stripe_webhook_configured": bool(settings.stripe_webhook_secret),
    }


def _complete_transaction(db: Session, transaction: Transaction, payload: Optional[dict] = None):
    """Mark a transaction SUCCESS and upgrade its subscriber. Completing twice is a no-op."""
    if transaction.status == TRANSACTION_STATUS_SUCCESS:
        logger.info(f"Transaction {transaction.provider_reference} already completed")
        return

    transaction.status = TRANSACTION_STATUS_SUCCESS
    if payload is not None:
        transaction.raw_payload = json.dumps(payload)

    subscriber = transaction.subscriber
    # Buying a lower plan than the current one never downgrades
    if tier_rank(transaction.plan) >= tier_rank(subscriber.tier or TIER_FREE):
        change_tier(subscriber, transaction.plan)
    db.commit()
    logger.info(f"✅ Payment {transaction.provider_reference} completed: {subscriber.email} -> {transaction.plan}")


def _fail_transaction(db: Session, transaction: Transaction, code: Optional[str], payload: Optional[dict] = None):
    if transaction.status == TRANSACTION_STATUS_SUCCESS:
        logger.warning(f"⚠️ Ignoring failure for completed transaction {transaction.provider_reference}")
        return
    transaction.status = TRANSACTION_STATUS_FAILED
    transaction.provider_code = code
    if payload is not None:
        transaction.raw_payload = json.dumps(payload)
    db.commit()
    logger.warning(f"❌ Payment {transaction.provider_reference} failed ({code})")


def _find_or_create_subscriber(db: Session, email: str) -> Subscriber:
    subscriber = db.query(Subscriber).filter(Subscriber.email == email.lower()).first()
    if not subscriber:
        subscriber = Subscriber(email=email.lower(), tier=TIER_FREE, source="checkout")
        db.add(subscriber)
        db.flush()
    return subscriber


@router.get("/transactions/{order_id}", response_model=TransactionOut)
def get_transaction(order_id: str, db: Session = Depends(get_db)):
    """Status of a checkout, polled by the payment status page."""
    transaction = db.query(Transaction).filter(Transaction.provider_reference == order_id).first()
    if not transaction:
        raise HTTPException(status_code=404, detail="Transaction not found")
    return transaction


@router.post("/phonepe/checkout", response_model=CheckoutResponse)
async def phonepe_checkout(body: CheckoutRequest, db: Session = Depends(get_db)):
    """
    Start a plan upgrade. In mock mode no gateway is called and the returned URL
    points to the app's mock payment page.
    """
    settings = get_settings()
    subscriber = _find_or_create_subscriber(db, body.email)

    order_id = generate_transaction_id()
    transaction = Transaction(
        subscriber_id=subscriber.id,
        provider=PROVIDER_MOCK if settings.use_mock_payment else PROVIDER_PHONEPE,
        provider_reference=order_id,
        plan=body.plan,
        amount=PLAN_PRICES[body.plan],
        currency="INR",
        status=TRANSACTION_STATUS_PENDING,
    )
    db.add(transaction)
    db.commit()
    logger.info(f"💳 Checkout {order_id} for {subscriber.email} ({body.plan}, {transaction.amount} paise)")

    if settings.use_mock_payment:
        return CheckoutResponse(
            success=True,
            redirectUrl=f"{settings.app_url}/payment/mock?orderId={order_id}",
            orderId=order_id,
            mock=True,
        )

    try:
        response = await initiate_payment(
            merchant_transaction_id=order_id,
            amount=transaction.amount,
            merchant_user_id=f"SUB{subscriber.id}",
            redirect_url=f"{settings.app_url}/payment/status?orderId={order_id}",
            callback_url=f"{settings.app_url}/api/payments/phonepe/webhook",
        )
    except Exception as e:
        logger.error(f"❌ Error calling PhonePe: {str(e)}", exc_info=True)
        _fail_transaction(db, transaction, "GATEWAY_UNREACHABLE")
        raise HTTPException(status_code=502, detail="Payment gateway unavailable")

    redirect_url = (
        ((response.get("data") or {}).get("instrumentResponse") or {}).get("redirectInfo", {}).get("url")
    )
    if not response.get("success") or not redirect_url:
        _fail_transaction(db, transaction, response.get("code"), response)
        raise HTTPException(status_code=502, detail=response.get("message") or "Payment initiation failed")

    return CheckoutResponse(success=True, redirectUrl=redirect_url, orderId=order_id, mock=False)


@router.post("/phonepe/webhook")
async def phonepe_webhook(
    body: PhonePeWebhook,
    x_verify: Optional[str] = Header(None, alias="X-VERIFY"),
    db: Session = Depends(get_db),
):
    """
    PhonePe server-to-server callback. The checksum is verified before the payload
    is trusted.
    """
    try:
        payload = decode_webhook_payload(body.response, x_verify)
    except PaymentVerificationError as e:
        logger.warning(f"⚠️ Rejected PhonePe webhook: {str(e)}")
        raise HTTPException(status_code=400, detail=str(e))

    code = payload.get("code")
    order_id = (payload.get("data") or {}).get("merchantTransactionId")
    logger.info(f"🔔 PhonePe webhook {order_id}: {code}")

    transaction = db.query(Transaction).filter(Transaction.provider_reference == order_id).first()
    if not transaction:
        raise HTTPException(status_code=404, detail="Transaction not found")

    if code == "PAYMENT_SUCCESS":
        _complete_transaction(db, transaction, payload)
    elif code in PHONEPE_FAILURE_CODES:
        _fail_transaction(db, transaction, code, payload)
    else:
        transaction.provider_code = code
        db.commit()

    return {"success": True, "status": transaction.status}


@router.post("/mock-complete")
def mock_complete(body: MockCompleteRequest, db: Session = Depends(get_db)):
    """Complete a pending checkout without a gateway. Only available in mock mode."""
    if not get_settings().use_mock_payment:
        raise HTTPException(status_code=403, detail="Mock payments are disabled")

    transaction = db.query(Transaction).filter(Transaction.provider_reference == body.orderId).first()
    if not transaction:
        raise HTTPException(status_code=404, detail="Transaction not found")
    if transaction.status == TRANSACTION_STATUS_FAILED:
        raise HTTPException(status_code=400, detail="Transaction already failed")

    _complete_transaction(db, transaction)
    return {"success": True, "tier": transaction.subscriber.tier, "orderId": body.orderId}


@router.post("/stripe/checkout", response_model=StripeCheckoutResponse)
def stripe_checkout(body: StripeCheckoutRequest, db: Session = Depends(get_db)):
    """
    Create a Stripe subscription checkout session for a plan upgrade.
    The session metadata carries the subscriber id and plan that the webhook
    applies once the payment completes.
    """
    settings = get_settings()
    if not settings.stripe_secret_key:
        raise HTTPException(status_code=500, detail="STRIPE_SECRET_KEY not configured")

    price_ids = {
        TIER_PRO: settings.stripe_pro_price_id,
        TIER_PREMIUM: settings.stripe_premium_price_id,
    }
    price_id = price_ids.get(body.plan)
    if not price_id:
        raise HTTPException(status_code=500, detail=f"Stripe price for {body.plan} not configured")

    subscriber = _find_or_create_subscriber(db, body.email)

    try:
        session = stripe.checkout.Session.create(
            api_key=settings.stripe_secret_key,
            mode="subscription",
            payment_method_types=["card"],
            customer_email=subscriber.email,
            line_items=[{"price": price_id, "quantity": 1}],
            success_url=body.successUrl
            or f"{settings.app_url}/pro/success?session_id={{CHECKOUT_SESSION_ID}}&plan={body.plan.lower()}",
            cancel_url=body.cancelUrl or f"{settings.app_url}/?canceled=true",
            metadata={"subscriberId": str(subscriber.id), "plan": body.plan},
        )
    except stripe.StripeError as e:
        db.rollback()
        logger.error(f"❌ Stripe checkout error for {subscriber.email}: {str(e)}", exc_info=True)
        raise HTTPException(status_code=502, detail="Failed to create checkout session")

    db.add(Transaction(
        subscriber_id=subscriber.id,
        provider=PROVIDER_STRIPE,
        provider_reference=session.id,
        plan=body.plan,
        amount=PLAN_PRICES[body.plan],
        currency="INR",
        status=TRANSACTION_STATUS_PENDING,
    ))
    db.commit()
    logger.info(f"💳 Stripe checkout {session.id} for {subscriber.email} ({body.plan})")

    return StripeCheckoutResponse(url=session.url, sessionId=session.id)


@router.post("/stripe/webhook")
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
    db: Session = Depends(get_db),
):
    """
    Stripe events that change a subscriber's tier.
    - checkout.session.completed: upgrade to metadata.plan (PRO by default)
    - customer.subscription.deleted: back to FREE
    - invoice.payment_failed: logged only
    """
    settings = get_settings()
    if not settings.stripe_webhook_secret:
        raise HTTPException(status_code=500, detail="STRIPE_WEBHOOK_SECRET not configured")

    payload = await request.body()
    try:
        stripe.Webhook.construct_event(payload, stripe_signature, settings.stripe_webhook_secret)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid payload")
    except stripe.SignatureVerificationError:
        logger.warning("⚠️ Rejected Stripe webhook with invalid signature")
        raise HTTPException(status_code=400, detail="Invalid signature")

    event = json.loads(payload)
    event_type = event.get("type")
    data = (event.get("data") or {}).get("object") or {}
    logger.info(f"🔔 Stripe event {event_type}")

    try:
        if event_type == "checkout.session.completed":
            _handle_checkout_completed(db, data)
        elif event_type == "customer.subscription.deleted":
            _handle_subscription_deleted(db, data)
        elif event_type == "invoice.payment_failed":
            logger.warning(f"⚠️ Stripe payment failed for customer {data.get('customer')}")
    except HTTPException:
        raise
    except Exception as e:
        db.rollback()
        logger.error(f"❌ Error handling Stripe event {event_type}: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Webhook handler failed")

    return {"received": True}


def _handle_checkout_completed(db: Session, session: dict):
    metadata = session.get("metadata") or {}
    subscriber_id = metadata.get("subscriberId")
    plan = normalize_tier(metadata.get("plan")) or TIER_PRO

    subscriber = None
    try:
        parsed_id = int(subscriber_id) if subscriber_id else None
    except (TypeError, ValueError):
        logger.warning(f"⚠️ Checkout session {session.get('id')} has a malformed subscriberId {subscriber_id!r}")
        return
    if parsed_id is not None:
        subscriber = db.query(Subscriber).filter(Subscriber.id == parsed_id).first()
    if not subscriber:
        logger.warning(f"⚠️ Checkout session {session.get('id')} has no known subscriber")
        return

    transaction = db.query(Transaction).filter(Transaction.provider_reference == session.get("id")).first()
    if not transaction:
        transaction = Transaction(
            subscriber_id=subscriber.id,
            provider=PROVIDER_STRIPE,
            provider_reference=session.get("id"),
            plan=plan,
            amount=session.get("amount_total"),
            currency=(session.get("currency") or "inr").upper(),
            status=TRANSACTION_STATUS_PENDING,
        )
        db.add(transaction)
        db.flush()

    if session.get("customer"):
        subscriber.stripe_customer_id = session.get("customer")
    _complete_transaction(db, transaction, session)


def _handle_subscription_deleted(db: Session, subscription: dict):
    customer_id = subscription.get("customer")
    subscriber = db.query(Subscriber).filter(Subscriber.stripe_customer_id == customer_id).first()
    if not subscriber:
        logger.warning(f"⚠️ Subscription deleted for unknown customer {customer_id}")
        return
    change_tier(subscriber, TIER_FREE)
    db.commit()
