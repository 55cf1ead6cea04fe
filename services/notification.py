import logging
from abc import ABC, abstractmethod

from aiogram.exceptions import TelegramAPIError

import config
from bot_instance import get_bot
from models.order import OrderDTO
from models.payment import PaymentDTO
from utils.html_escape import safe_html, safe_url

logger = logging.getLogger(__name__)


class Notifier(ABC):
    """
    Fire-and-forget notifications about order progress.

    Implementations must never raise: a failed send is logged and the
    state transition that triggered it stands.
    """

    @abstractmethod
    async def payment_pending(self, order: OrderDTO, payment: PaymentDTO) -> None: ...

    @abstractmethod
    async def payment_confirmed(self, order: OrderDTO) -> None: ...

    @abstractmethod
    async def payment_underpaid(self, order: OrderDTO, payment: PaymentDTO) -> None: ...

    @abstractmethod
    async def order_cancelled(self, order: OrderDTO, reason: str) -> None: ...

    @abstractmethod
    async def order_shipped(self, order: OrderDTO) -> None: ...

    @abstractmethod
    async def operator_alert(self, order_id: str, message: str) -> None: ...


class TelegramNotifier(Notifier):
    """Sends order events to the operators listed in ADMIN_ID_LIST."""

    def __init__(self, admin_ids: list[int] | None = None):
        self.admin_ids = admin_ids if admin_ids is not None else config.ADMIN_ID_LIST

    async def send_to_admins(self, message: str) -> None:
        bot = get_bot()
        for admin_id in self.admin_ids:
            try:
                await bot.send_message(admin_id, message)
            except TelegramAPIError as e:
                logger.error(f"Failed to notify admin {admin_id}: {e}")

    async def payment_pending(self, order: OrderDTO, payment: PaymentDTO) -> None:
        await self.send_to_admins(
            f"🧾 <b>New order {order.order_id}</b>\n"
            f"Total: ${order.total_usd:.2f} = {payment.expected_amount} {payment.cryptocurrency.value}\n"
            f"Backend: {payment.backend.value}, expires {payment.expires_at:%d.%m.%Y %H:%M} UTC"
        )

    async def payment_confirmed(self, order: OrderDTO) -> None:
        await self.send_to_admins(
            f"✅ <b>Payment confirmed for {order.order_id}</b>\n"
            f"{order.crypto_amount} {order.crypto_currency.value} (${order.total_usd:.2f}), status {order.payment_status.value}"
        )

    async def payment_underpaid(self, order: OrderDTO, payment: PaymentDTO) -> None:
        await self.send_to_admins(
            f"⚠️ <b>Underpayment on {order.order_id}</b>\n"
            f"Received {payment.received_amount} of {payment.expected_amount} {payment.cryptocurrency.value}"
        )

    async def order_cancelled(self, order: OrderDTO, reason: str) -> None:
        await self.send_to_admins(
            f"❌ <b>Order {order.order_id} cancelled</b>\n"
            f"Reason: {safe_html(reason)}"
        )

    async def order_shipped(self, order: OrderDTO) -> None:
        message = (
            f"📦 <b>Order {order.order_id} shipped</b>\n"
            f"{safe_html(order.carrier or 'Carrier unknown')}: {safe_html(order.tracking_number or '-')}"
        )
        tracking_url = safe_url(order.tracking_url)
        if tracking_url:
            message += f"\n<a href=\"{tracking_url}\">Track package</a>"
        await self.send_to_admins(message)

    async def operator_alert(self, order_id: str, message: str) -> None:
        await self.send_to_admins(f"🚨 <b>Order {order_id} needs attention</b>\n{safe_html(message)}")
