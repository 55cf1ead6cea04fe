from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from db import session_execute, session_flush, session_refresh
from enums.payment_status import PaymentStatus
from models.payment import Payment, PaymentDTO


class PaymentRepository:

    @staticmethod
    async def create(payment_dto: PaymentDTO, session: AsyncSession) -> PaymentDTO:
        payment = Payment(**payment_dto.model_dump(exclude_none=True))
        session.add(payment)
        await session_flush(session)
        await session_refresh(session, payment)
        return PaymentDTO.model_validate(payment, from_attributes=True)

    @staticmethod
    async def get_by_order_id(order_id: str, session: AsyncSession) -> PaymentDTO | None:
        """
        Latest payment attempt for an order.

        The schema allows several attempts per order; only the newest one
        is ever live.
        """
        stmt = select(Payment).where(Payment.order_id == order_id).order_by(Payment.id.desc()).limit(1)
        result = await session_execute(stmt, session)
        payment = result.scalar_one_or_none()
        if payment is not None:
            return PaymentDTO.model_validate(payment, from_attributes=True)
        return None

    @staticmethod
    async def get_by_payment_address(address: str, session: AsyncSession) -> PaymentDTO | None:
        stmt = select(Payment).where(Payment.payment_address == address).order_by(Payment.id.desc()).limit(1)
        result = await session_execute(stmt, session)
        payment = result.scalar_one_or_none()
        if payment is not None:
            return PaymentDTO.model_validate(payment, from_attributes=True)
        return None

    @staticmethod
    async def get_by_provider_reference(reference: str, session: AsyncSession) -> PaymentDTO | None:
        stmt = select(Payment).where(Payment.provider_reference == reference)
        result = await session_execute(stmt, session)
        payment = result.scalar_one_or_none()
        if payment is not None:
            return PaymentDTO.model_validate(payment, from_attributes=True)
        return None

    @staticmethod
    async def update(payment_id: int, changes: dict, session: AsyncSession) -> None:
        if not changes:
            return
        stmt = (
            update(Payment)
            .where(Payment.id == payment_id)
            .values(**changes)
            .execution_options(synchronize_session=False)
        )
        await session_execute(stmt, session)

    @staticmethod
    async def get_expired_open_payments(now: datetime, session: AsyncSession) -> list[PaymentDTO]:
        """Payments still open for automatic observations whose deadline has passed."""
        stmt = (
            select(Payment)
            .where(
                Payment.status.in_(list(PaymentStatus.open())),
                Payment.expires_at <= now,
            )
            .order_by(Payment.expires_at)
        )
        result = await session_execute(stmt, session)
        return [PaymentDTO.model_validate(payment, from_attributes=True) for payment in result.scalars().all()]

    @staticmethod
    async def get_open_payments(now: datetime, session: AsyncSession) -> list[PaymentDTO]:
        """Payments still inside their payment window; used to resume monitors after a restart."""
        stmt = (
            select(Payment)
            .where(
                Payment.status.in_(list(PaymentStatus.open())),
                Payment.expires_at > now,
            )
            .order_by(Payment.expires_at)
        )
        result = await session_execute(stmt, session)
        return [PaymentDTO.model_validate(payment, from_attributes=True) for payment in result.scalars().all()]
