from enum import Enum


class Cryptocurrency(str, Enum):
    DCR = "DCR"
    BTC = "BTC"
    XMR = "XMR"
    LTC = "LTC"
    ETH = "ETH"

    def get_divider(self) -> int:
        """
        Returns the number of decimal places for this cryptocurrency.

        Values are read from config.CRYPTO_DECIMAL_PLACES, which can be
        overridden via environment variables (CRYPTO_DECIMALS_DCR, etc.)
        """
        # Import here to avoid circular dependency
        import config

        return config.CRYPTO_DECIMAL_PLACES.get(self.value, 8)

    def normalize(self, amount: float) -> float:
        """Round an amount to the smallest unit of this currency."""
        return round(float(amount), self.get_divider())

    def get_kraken_pair(self) -> str:
        match self:
            case Cryptocurrency.DCR:
                return "DCRUSD"
            case Cryptocurrency.BTC:
                return "XXBTZUSD"
            case Cryptocurrency.XMR:
                return "XXMRZUSD"
            case Cryptocurrency.ETH:
                return "XETHZUSD"
            case Cryptocurrency.LTC:
                return "XLTCZUSD"

    def get_uri_scheme(self) -> str:
        match self:
            case Cryptocurrency.DCR:
                return "decred"
            case Cryptocurrency.BTC:
                return "bitcoin"
            case Cryptocurrency.XMR:
                return "monero"
            case Cryptocurrency.ETH:
                return "ethereum"
            case Cryptocurrency.LTC:
                return "litecoin"
