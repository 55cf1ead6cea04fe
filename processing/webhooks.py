import hashlib
import hmac
import json
import logging

from fastapi import APIRouter, Request, HTTPException
from pydantic import BaseModel, ValidationError

import config
from enums.observation_status import ObservationStatus
from exceptions.order import OrderNotFoundException
from exceptions.payment import PaymentBackendException, PaymentNotFoundException
from models.observation import PaymentObservation
from services.fulfillment import parse_printful_event

logger = logging.getLogger(__name__)

webhook_router = APIRouter(prefix=config.WEBHOOK_PATH)


class PaymentConfirmedDTO(BaseModel):
    """Body of the internal /payment-confirmed hook used by our own wallet watchers."""
    order_id: str
    status: ObservationStatus = ObservationStatus.CONFIRMED
    amount: float | None = None
    transaction_hash: str | None = None
    confirmations: int | None = None


def verify_signature(secret: str, payload: bytes, signature: str | None, prefix: str = "") -> bool:
    """
    Validate an HMAC-SHA256 webhook signature.

    A missing header or an unconfigured secret is an authentication failure.
    """
    if not signature or not secret:
        return False
    expected = prefix + hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature)


def _parse_json(payload: bytes) -> dict:
    try:
        body = json.loads(payload)
    except json.JSONDecodeError:
        raise HTTPException(status_code=400, detail="Invalid JSON")
    if not isinstance(body, dict):
        raise HTTPException(status_code=400, detail="Invalid JSON")
    return body


async def _apply(request: Request, observation: PaymentObservation | None) -> dict:
    if observation is None:
        return {"success": True, "message": "Nothing to report"}
    lifecycle = request.app.state.services.lifecycle
    try:
        result = await lifecycle.apply_observation(observation)
    except (OrderNotFoundException, PaymentNotFoundException):
        logger.warning(f"{observation.source} webhook for unknown order {observation.order_id}")
        return {"success": True, "message": "Order not found"}
    return {"success": True, "outcome": result.outcome.value}


@webhook_router.post("/btcpay")
async def btcpay_webhook(request: Request):
    payload = await request.body()
    if not verify_signature(config.BTCPAY_WEBHOOK_SECRET, payload, request.headers.get("BTCPay-Sig"), "sha256="):
        logger.warning("BTCPay webhook rejected: invalid signature")
        raise HTTPException(status_code=403, detail="Invalid signature")

    event = _parse_json(payload)
    logger.info(f"BTCPay webhook {event.get('type')} for invoice {event.get('invoiceId')}")
    try:
        observation = await request.app.state.services.btcpay_monitor.observe(event)
    except PaymentBackendException as e:
        # Provider redelivers on non-2xx
        logger.error(f"BTCPay invoice lookup failed: {e}")
        raise HTTPException(status_code=502, detail="Invoice lookup failed")
    return await _apply(request, observation)


@webhook_router.post("/coinbase")
async def coinbase_webhook(request: Request):
    payload = await request.body()
    if not verify_signature(config.COINBASE_COMMERCE_WEBHOOK_SECRET, payload,
                            request.headers.get("X-CC-Webhook-Signature")):
        logger.warning("Coinbase webhook rejected: invalid signature")
        raise HTTPException(status_code=403, detail="Invalid signature")

    event = _parse_json(payload).get("event") or {}
    logger.info(f"Coinbase webhook {event.get('type')} for charge {(event.get('data') or {}).get('code')}")
    try:
        observation = await request.app.state.services.coinbase_monitor.observe(event)
    except PaymentBackendException as e:
        logger.error(f"Coinbase charge lookup failed: {e}")
        raise HTTPException(status_code=502, detail="Charge lookup failed")
    return await _apply(request, observation)


@webhook_router.post("/printful")
async def printful_webhook(request: Request):
    payload = await request.body()
    if config.PRINTFUL_WEBHOOK_SECRET and not verify_signature(config.PRINTFUL_WEBHOOK_SECRET, payload,
                                                               request.headers.get("X-Printful-Signature")):
        logger.warning("Printful webhook rejected: invalid signature")
        raise HTTPException(status_code=403, detail="Invalid signature")

    body = _parse_json(payload)
    event = parse_printful_event(body)
    if event is None:
        logger.info(f"Unhandled Printful event {body.get('type')}")
        return {"success": True, "message": "Event ignored"}

    lifecycle = request.app.state.services.lifecycle
    try:
        result = await lifecycle.handle_fulfillment_event(event)
    except (OrderNotFoundException, PaymentNotFoundException):
        logger.warning(f"Printful webhook for unknown order {event.order_id}")
        return {"success": True, "message": "Order not found"}
    return {"success": True, "outcome": result.outcome.value}


@webhook_router.post("/payment-confirmed")
async def payment_confirmed_webhook(request: Request):
    payload = await request.body()
    if not verify_signature(config.INTERNAL_WEBHOOK_SECRET, payload, request.headers.get("X-Webhook-Signature")):
        logger.warning("Internal payment webhook rejected: invalid signature")
        raise HTTPException(status_code=403, detail="Invalid signature")

    try:
        body = PaymentConfirmedDTO.model_validate(_parse_json(payload))
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))

    return await _apply(request, PaymentObservation(
        order_id=body.order_id,
        status=body.status,
        received_amount=body.amount,
        transaction_hash=body.transaction_hash,
        confirmations=body.confirmations,
        source="internal webhook",
    ))
