import random
import string
from datetime import datetime

from sqlalchemy import select, update, or_
from sqlalchemy.ext.asyncio import AsyncSession

from db import session_execute, session_flush, session_refresh
from enums.order_status import OrderStatus
from exceptions.order import OrderIdAllocationException
from models.order import Order, OrderDTO


class OrderRepository:

    @staticmethod
    async def create(order_dto: OrderDTO, session: AsyncSession) -> OrderDTO:
        order = Order(**order_dto.model_dump(exclude_none=True))
        session.add(order)
        await session_flush(session)
        await session_refresh(session, order)
        return OrderDTO.model_validate(order, from_attributes=True)

    @staticmethod
    async def exists(order_id: str, session: AsyncSession) -> bool:
        stmt = select(Order.id).where(Order.order_id == order_id)
        result = await session_execute(stmt, session)
        return result.scalar() is not None

    @staticmethod
    async def get_by_order_id(order_id: str, session: AsyncSession) -> OrderDTO | None:
        stmt = select(Order).where(Order.order_id == order_id)
        result = await session_execute(stmt, session)
        order = result.scalar_one_or_none()
        if order is not None:
            return OrderDTO.model_validate(order, from_attributes=True)
        return None

    @staticmethod
    async def get_by_payment_address(address: str, session: AsyncSession) -> OrderDTO | None:
        stmt = select(Order).where(Order.payment_address == address)
        result = await session_execute(stmt, session)
        order = result.scalar_one_or_none()
        if order is not None:
            return OrderDTO.model_validate(order, from_attributes=True)
        return None

    @staticmethod
    async def compare_and_set(order_id: str,
                              expected_version: int,
                              changes: dict,
                              session: AsyncSession) -> bool:
        """
        Conditional update keyed on the order's version column.

        Applies `changes` and bumps the version only if nobody else wrote the
        row since it was read. Returns False when the row moved on, the caller
        then re-reads and re-decides.
        """
        stmt = (
            update(Order)
            .where(Order.order_id == order_id, Order.version == expected_version)
            .values(**changes, version=expected_version + 1)
            .execution_options(synchronize_session=False)
        )
        result = await session_execute(stmt, session)
        return result.rowcount == 1

    @staticmethod
    async def claim_fulfillment(order_id: str,
                                claimed_at: datetime,
                                stale_before: datetime,
                                session: AsyncSession) -> bool:
        """
        Atomically reserve the right to submit the fulfillment order.

        Succeeds only for a paid order without a fulfillment reference and
        without a live claim. Claims older than `stale_before` are considered
        abandoned (worker died mid-call) and may be taken over.
        """
        stmt = (
            update(Order)
            .where(
                Order.order_id == order_id,
                Order.order_status == OrderStatus.PAID,
                Order.fulfillment_order_id.is_(None),
                or_(Order.fulfillment_claimed_at.is_(None), Order.fulfillment_claimed_at < stale_before),
            )
            .values(fulfillment_claimed_at=claimed_at, version=Order.version + 1)
            .execution_options(synchronize_session=False)
        )
        result = await session_execute(stmt, session)
        return result.rowcount == 1

    @staticmethod
    async def record_fulfillment(order_id: str,
                                 claimed_at: datetime,
                                 fulfillment_order_id: str,
                                 session: AsyncSession) -> bool:
        stmt = (
            update(Order)
            .where(
                Order.order_id == order_id,
                Order.order_status == OrderStatus.PAID,
                Order.fulfillment_claimed_at == claimed_at,
            )
            .values(
                fulfillment_order_id=fulfillment_order_id,
                fulfillment_claimed_at=None,
                last_fulfillment_error=None,
                order_status=OrderStatus.PRODUCTION,
                version=Order.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        result = await session_execute(stmt, session)
        return result.rowcount == 1

    @staticmethod
    async def release_fulfillment_claim(order_id: str,
                                        claimed_at: datetime,
                                        error: str,
                                        session: AsyncSession) -> bool:
        stmt = (
            update(Order)
            .where(Order.order_id == order_id, Order.fulfillment_claimed_at == claimed_at)
            .values(
                fulfillment_claimed_at=None,
                fulfillment_attempts=Order.fulfillment_attempts + 1,
                last_fulfillment_error=error,
                version=Order.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        result = await session_execute(stmt, session)
        return result.rowcount == 1

    @staticmethod
    async def get_unfulfilled_paid_orders(max_attempts: int,
                                          stale_before: datetime,
                                          session: AsyncSession) -> list[OrderDTO]:
        """Paid orders still waiting for a fulfillment reference, oldest first."""
        stmt = (
            select(Order)
            .where(
                Order.order_status == OrderStatus.PAID,
                Order.fulfillment_order_id.is_(None),
                Order.fulfillment_attempts < max_attempts,
                or_(Order.fulfillment_claimed_at.is_(None), Order.fulfillment_claimed_at < stale_before),
            )
            .order_by(Order.paid_at)
        )
        result = await session_execute(stmt, session)
        return [OrderDTO.model_validate(order, from_attributes=True) for order in result.scalars().all()]

    @staticmethod
    async def get_next_order_id(prefix: str, session: AsyncSession) -> str:
        """
        Generates a unique order id in the format PREFIX-YYYY-XXXXXX
        Example: AA-2024-004817

        Six random digits; collisions are retried against the table.
        """
        year = datetime.utcnow().year

        for _ in range(10):
            code = ''.join(random.choices(string.digits, k=6))
            order_id = f"{prefix}-{year}-{code}"
            if not await OrderRepository.exists(order_id, session):
                return order_id

        # 10^6 ids per prefix and year
        raise OrderIdAllocationException(prefix, year, attempts=10)
