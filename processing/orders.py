"""
Customer-facing order API.

Only the order snapshot (statuses, totals, tracking) is ever returned;
internal error detail stays in the logs.
"""

import logging

from fastapi import APIRouter, Request, HTTPException, status

from exceptions.order import OrderNotFoundException, InvalidOrderDataException, OrderIdAllocationException
from exceptions.payment import (
    PaymentBackendException,
    UnsupportedCryptocurrencyException,
    InvalidPaymentAmountException,
)
from models.order import OrderCreateDTO, OrderSummaryDTO

logger = logging.getLogger(__name__)

order_router = APIRouter(prefix="/api/orders", tags=["orders"])


@order_router.post("", status_code=status.HTTP_201_CREATED, response_model=OrderSummaryDTO)
async def create_order(request: Request, payload: OrderCreateDTO):
    lifecycle = request.app.state.services.lifecycle
    try:
        order = await lifecycle.create_order(payload)
    except (InvalidOrderDataException, UnsupportedCryptocurrencyException, InvalidPaymentAmountException) as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)
    except PaymentBackendException as e:
        logger.error(f"Order creation failed at payment backend: {e}")
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Payment backend unavailable")
    except OrderIdAllocationException as e:
        logger.error(f"Order creation failed: {e}")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Order could not be created")
    return await lifecycle.get_order_summary(order.order_id)


@order_router.get("/{order_id}", response_model=OrderSummaryDTO)
async def get_order(request: Request, order_id: str):
    try:
        return await request.app.state.services.lifecycle.get_order_summary(order_id)
    except OrderNotFoundException:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")
