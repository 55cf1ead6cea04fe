from enum import Enum


class PaymentBackend(str, Enum):
    DCRWALLET = "dcrwallet"   # Polls a dcrwallet JSON-RPC endpoint
    BTCPAY = "btcpay"         # BTCPay Server invoices, webhook driven
    COINBASE = "coinbase"     # Coinbase Commerce charges, webhook driven

    def is_polling(self) -> bool:
        return self == PaymentBackend.DCRWALLET
