import os
import sys

from dotenv import load_dotenv

from enums.runtime_environment import RuntimeEnvironment

# Load .env but don't override existing environment variables
# This allows test runs to set RUNTIME_ENVIRONMENT=TEST before import
load_dotenv(".env", override=False)


def _exit_with_config_error(name: str, reason: Exception, expected: str):
    print(f"\n ERROR: Invalid {name} configuration\n", file=sys.stderr)
    print(f"Reason: {reason}", file=sys.stderr)
    print(f"Expected: {expected}", file=sys.stderr)
    print(f"Current value: {os.environ.get(name, '(not set)')}\n", file=sys.stderr)
    sys.exit(1)


def _get_int(name: str, default: int, minimum: int = 0) -> int:
    try:
        value = int(os.environ.get(name, str(default)))
        if value < minimum:
            raise ValueError(f"{name} must be >= {minimum} (got: {value})")
        return value
    except ValueError as e:
        _exit_with_config_error(name, e, f"Integer >= {minimum} (e.g., {default})")


def _get_float(name: str, default: float, minimum: float = 0.0) -> float:
    try:
        value = float(os.environ.get(name, str(default)))
        if value < minimum:
            raise ValueError(f"{name} must be >= {minimum} (got: {value})")
        return value
    except ValueError as e:
        _exit_with_config_error(name, e, f"Number >= {minimum} (e.g., {default})")


# Parse RUNTIME_ENVIRONMENT with clear error message on misconfiguration
try:
    _runtime_env_str = os.environ.get("RUNTIME_ENVIRONMENT")
    if not _runtime_env_str:
        raise ValueError("RUNTIME_ENVIRONMENT environment variable is not set")
    RUNTIME_ENVIRONMENT = RuntimeEnvironment(_runtime_env_str)
except ValueError as e:
    valid_values = [env.value for env in RuntimeEnvironment]
    print(f"\n ERROR: Invalid RUNTIME_ENVIRONMENT configuration\n", file=sys.stderr)
    print(f"Reason: {e}", file=sys.stderr)
    print(f"Valid values: {', '.join(valid_values)}", file=sys.stderr)
    print(f"Current value: {os.environ.get('RUNTIME_ENVIRONMENT', '(not set)')}", file=sys.stderr)
    print(f"\nAdd to .env: RUNTIME_ENVIRONMENT={valid_values[0]}\n", file=sys.stderr)
    sys.exit(1)

# Web server (webhook ingress)
WEBAPP_HOST = os.environ.get("WEBAPP_HOST", "0.0.0.0")
WEBAPP_PORT = _get_int("WEBAPP_PORT", 8000, minimum=1)
WEBHOOK_PATH = os.environ.get("WEBHOOK_PATH", "/api/webhooks")
INTERNAL_WEBHOOK_SECRET = os.environ.get("INTERNAL_WEBHOOK_SECRET", "")

# Database
DB_URL = os.environ.get("DB_URL", "sqlite+aiosqlite:///data/orders.db")

# Operator notifications (Telegram)
TOKEN = os.environ.get("TOKEN")
try:
    _admin_id_list_str = os.environ.get("ADMIN_ID_LIST", "")
    ADMIN_ID_LIST = [int(admin_id.strip()) for admin_id in _admin_id_list_str.split(',') if admin_id.strip()]
except ValueError as e:
    _exit_with_config_error("ADMIN_ID_LIST", e, "comma-separated list of Telegram user IDs (e.g., 123456789,987654321)")

# Order / Payment Configuration
ORDER_ID_PREFIX = os.environ.get("ORDER_ID_PREFIX", "AA")
PAYMENT_EXPIRY_MINUTES = _get_int("PAYMENT_EXPIRY_MINUTES", 60, minimum=1)
PAYMENT_POLL_INTERVAL_SECONDS = _get_int("PAYMENT_POLL_INTERVAL_SECONDS", 30, minimum=1)
PAYMENT_MARKUP_PERCENT = _get_float("PAYMENT_MARKUP_PERCENT", 1.0)

# Payment Validation Configuration
# Underpayment tolerance: received >= expected * (1 - tolerance) still settles the payment
PAYMENT_UNDERPAYMENT_TOLERANCE_PERCENT = _get_float("PAYMENT_UNDERPAYMENT_TOLERANCE_PERCENT", 1.0)
# Overpayment tolerance: received > expected * (1 + tolerance) is classified as overpaid
PAYMENT_OVERPAYMENT_TOLERANCE_PERCENT = _get_float("PAYMENT_OVERPAYMENT_TOLERANCE_PERCENT", 1.0)

# Cryptocurrency Decimal Precision Configuration
# DCR: 8 decimals = atom (1 DCR = 100,000,000 atoms)
# BTC: 8 decimals = satoshi
# LTC: 8 decimals = litoshi
# XMR: 12 decimals = piconero
# ETH: 18 decimals = wei
CRYPTO_DECIMAL_PLACES = {
    "DCR": _get_int("CRYPTO_DECIMALS_DCR", 8),
    "BTC": _get_int("CRYPTO_DECIMALS_BTC", 8),
    "LTC": _get_int("CRYPTO_DECIMALS_LTC", 8),
    "XMR": _get_int("CRYPTO_DECIMALS_XMR", 12),
    "ETH": _get_int("CRYPTO_DECIMALS_ETH", 18),
}

# Decred wallet RPC (polling backend)
DCR_RPC_URL = os.environ.get("DCR_RPC_URL", "http://127.0.0.1:9109")
DCR_RPC_USER = os.environ.get("DCR_RPC_USER", "")
DCR_RPC_PASSWORD = os.environ.get("DCR_RPC_PASSWORD", "")
DCR_MIN_CONFIRMATIONS = _get_int("DCR_MIN_CONFIRMATIONS", 2)

# BTCPay Server (webhook backend)
BTCPAY_URL = os.environ.get("BTCPAY_URL", "")
BTCPAY_API_KEY = os.environ.get("BTCPAY_API_KEY", "")
BTCPAY_STORE_ID = os.environ.get("BTCPAY_STORE_ID", "")
BTCPAY_WEBHOOK_SECRET = os.environ.get("BTCPAY_WEBHOOK_SECRET", "")

# Coinbase Commerce (webhook backend)
COINBASE_COMMERCE_API_URL = os.environ.get("COINBASE_COMMERCE_API_URL", "https://api.commerce.coinbase.com")
COINBASE_COMMERCE_API_KEY = os.environ.get("COINBASE_COMMERCE_API_KEY", "")
COINBASE_COMMERCE_WEBHOOK_SECRET = os.environ.get("COINBASE_COMMERCE_WEBHOOK_SECRET", "")

# Printful (fulfillment)
PRINTFUL_API_URL = os.environ.get("PRINTFUL_API_URL", "https://api.printful.com")
PRINTFUL_API_KEY = os.environ.get("PRINTFUL_API_KEY", "")
PRINTFUL_WEBHOOK_SECRET = os.environ.get("PRINTFUL_WEBHOOK_SECRET", "")

# Exchange rates (Kraken public ticker, cached in Redis)
KRAKEN_API_URL = os.environ.get("KRAKEN_API_URL", "https://api.kraken.com")
CRYPTO_RATE_CACHE_SECONDS = _get_int("CRYPTO_RATE_CACHE_SECONDS", 300, minimum=1)
REDIS_HOST = os.environ.get("REDIS_HOST", "localhost")
REDIS_PORT = _get_int("REDIS_PORT", 6379, minimum=1)
REDIS_PASSWORD = os.environ.get("REDIS_PASSWORD")

# Background jobs
EXPIRY_SWEEP_INTERVAL_SECONDS = _get_int("EXPIRY_SWEEP_INTERVAL_SECONDS", 60, minimum=1)
FULFILLMENT_RETRY_MAX_ATTEMPTS = _get_int("FULFILLMENT_RETRY_MAX_ATTEMPTS", 5, minimum=1)
FULFILLMENT_CLAIM_TIMEOUT_MINUTES = _get_int("FULFILLMENT_CLAIM_TIMEOUT_MINUTES", 10, minimum=1)

# Logging Configuration
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")  # DEBUG, INFO, WARNING, ERROR, CRITICAL
LOG_MASK_SECRETS = os.environ.get("LOG_MASK_SECRETS", "true") == "true"  # Mask sensitive data in logs

# Log Retention: Environment-specific defaults
# Dev: keep a month for debugging
# Prod: Use 5 days default to save disk space
if RUNTIME_ENVIRONMENT == RuntimeEnvironment.DEV:
    LOG_RETENTION_DAYS = _get_int("LOG_RETENTION_DAYS", 30)
else:
    LOG_RETENTION_DAYS = _get_int("LOG_RETENTION_DAYS", 5)
