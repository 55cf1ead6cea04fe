"""
Configuration Validation Module

Validates critical configuration values at startup to fail-fast
with clear error messages instead of runtime failures.
"""

import sys
from typing import Optional


class ConfigValidationError(Exception):
    """Raised when configuration validation fails."""
    pass


def validate_webhook_secret(webhook_secret: Optional[str], name: str) -> None:
    """
    Validate a webhook HMAC secret.

    Args:
        webhook_secret: Secret value from config
        name: Name of the config variable (for the error message)

    Raises:
        ConfigValidationError: If secret is missing, empty, or too weak
    """
    if not webhook_secret or len(webhook_secret.strip()) == 0:
        raise ConfigValidationError(
            f"{name} is required and must not be empty!\n"
            "Webhook signatures cannot be verified without it.\n"
            f"Add to .env: {name}=<secret from the provider dashboard>"
        )

    if len(webhook_secret) < 16:
        raise ConfigValidationError(
            f"{name} is too weak (length: {len(webhook_secret)}, minimum: 16)!\n"
            "Generate a secure secret with: openssl rand -hex 32"
        )


def validate_required_config(value: Optional[str], name: str, example: str = "") -> None:
    """
    Validate that a required config value is set.

    Args:
        value: The config value to check
        name: Name of the config variable
        example: Optional example value to show in error message

    Raises:
        ConfigValidationError: If value is missing
    """
    if not value:
        error_msg = f"{name} is required but not set!"
        if example:
            error_msg += f"\nAdd to .env: {name}={example}"
        raise ConfigValidationError(error_msg)


def validate_tolerance(value: float, name: str) -> None:
    if not 0 <= value < 100:
        raise ConfigValidationError(
            f"{name} must be a percentage between 0 and 100 (currently: {value})"
        )


def validate_startup_config(config_module) -> None:
    """
    Validate all critical configuration at startup.

    Every configured payment backend must come with its webhook secret,
    the fulfillment partner key is always required, and tolerance bands
    must be sane percentages.

    Args:
        config_module: The config module to validate

    Raises:
        ConfigValidationError: If any validation fails
    """
    validate_required_config(config_module.INTERNAL_WEBHOOK_SECRET, 'INTERNAL_WEBHOOK_SECRET', '<openssl rand -hex 32>')
    validate_webhook_secret(config_module.INTERNAL_WEBHOOK_SECRET, 'INTERNAL_WEBHOOK_SECRET')

    if config_module.BTCPAY_URL:
        validate_required_config(config_module.BTCPAY_API_KEY, 'BTCPAY_API_KEY', '<greenfield-api-key>')
        validate_required_config(config_module.BTCPAY_STORE_ID, 'BTCPAY_STORE_ID', '<store-id>')
        validate_webhook_secret(config_module.BTCPAY_WEBHOOK_SECRET, 'BTCPAY_WEBHOOK_SECRET')

    if config_module.COINBASE_COMMERCE_API_KEY:
        validate_webhook_secret(config_module.COINBASE_COMMERCE_WEBHOOK_SECRET, 'COINBASE_COMMERCE_WEBHOOK_SECRET')

    if config_module.DCR_RPC_USER:
        validate_required_config(config_module.DCR_RPC_PASSWORD, 'DCR_RPC_PASSWORD', '<dcrwallet rpcpass>')

    validate_required_config(config_module.PRINTFUL_API_KEY, 'PRINTFUL_API_KEY', '<printful-api-token>')

    validate_tolerance(config_module.PAYMENT_UNDERPAYMENT_TOLERANCE_PERCENT, 'PAYMENT_UNDERPAYMENT_TOLERANCE_PERCENT')
    validate_tolerance(config_module.PAYMENT_OVERPAYMENT_TOLERANCE_PERCENT, 'PAYMENT_OVERPAYMENT_TOLERANCE_PERCENT')


def validate_or_exit(config_module) -> None:
    """
    Validate configuration and exit with error code 1 if validation fails.

    This is the main entry point for startup validation.

    Args:
        config_module: The config module to validate
    """
    try:
        validate_startup_config(config_module)
    except ConfigValidationError as e:
        print(f"\n ERROR: Configuration Validation Failed\n", file=sys.stderr)
        print(str(e), file=sys.stderr)
        print("\nStartup aborted. Please fix configuration and try again.\n", file=sys.stderr)
        sys.exit(1)
