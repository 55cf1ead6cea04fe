from abc import ABC, abstractmethod
from datetime import datetime

from enums.cryptocurrency import Cryptocurrency
from enums.payment_backend import PaymentBackend
from models.payment import PaymentRequestDTO


class PaymentGateway(ABC):
    """A backend that can hand out a place to pay for one order."""

    backend: PaymentBackend

    @abstractmethod
    async def create_payment(self,
                             order_id: str,
                             cryptocurrency: Cryptocurrency,
                             crypto_amount: float,
                             total_usd: float,
                             customer_email: str,
                             expires_at: datetime) -> PaymentRequestDTO:
        ...

    async def close(self) -> None:
        pass
