"""
Startup Config Validation Tests

Run with:
    pytest tests/utils/unit/test_config_validator.py -v
"""

from types import SimpleNamespace

import pytest

from utils.config_validator import ConfigValidationError, validate_startup_config, validate_or_exit

SECRET = "0123456789abcdef0123456789abcdef"


def make_config(**overrides) -> SimpleNamespace:
    values = dict(
        INTERNAL_WEBHOOK_SECRET=SECRET,
        BTCPAY_URL="",
        BTCPAY_API_KEY="",
        BTCPAY_STORE_ID="",
        BTCPAY_WEBHOOK_SECRET="",
        COINBASE_COMMERCE_API_KEY="",
        COINBASE_COMMERCE_WEBHOOK_SECRET="",
        DCR_RPC_USER="",
        DCR_RPC_PASSWORD="",
        PRINTFUL_API_KEY="pf_test_key",
        PAYMENT_UNDERPAYMENT_TOLERANCE_PERCENT=1.0,
        PAYMENT_OVERPAYMENT_TOLERANCE_PERCENT=5.0,
    )
    values.update(overrides)
    return SimpleNamespace(**values)


class TestValidateStartupConfig:

    def test_minimal_valid_config(self):
        validate_startup_config(make_config())

    def test_missing_internal_secret(self):
        with pytest.raises(ConfigValidationError, match="INTERNAL_WEBHOOK_SECRET"):
            validate_startup_config(make_config(INTERNAL_WEBHOOK_SECRET=""))

    def test_weak_internal_secret(self):
        with pytest.raises(ConfigValidationError, match="too weak"):
            validate_startup_config(make_config(INTERNAL_WEBHOOK_SECRET="short"))

    def test_btcpay_requires_its_webhook_secret(self):
        config = make_config(BTCPAY_URL="https://btcpay.test", BTCPAY_API_KEY="key", BTCPAY_STORE_ID="store")

        with pytest.raises(ConfigValidationError, match="BTCPAY_WEBHOOK_SECRET"):
            validate_startup_config(config)

    def test_coinbase_requires_its_webhook_secret(self):
        with pytest.raises(ConfigValidationError, match="COINBASE_COMMERCE_WEBHOOK_SECRET"):
            validate_startup_config(make_config(COINBASE_COMMERCE_API_KEY="cb_key"))

    def test_wallet_user_requires_password(self):
        with pytest.raises(ConfigValidationError, match="DCR_RPC_PASSWORD"):
            validate_startup_config(make_config(DCR_RPC_USER="dcr"))

    def test_tolerance_out_of_range(self):
        with pytest.raises(ConfigValidationError, match="UNDERPAYMENT"):
            validate_startup_config(make_config(PAYMENT_UNDERPAYMENT_TOLERANCE_PERCENT=150.0))

    def test_validate_or_exit(self):
        with pytest.raises(SystemExit) as exc_info:
            validate_or_exit(make_config(PRINTFUL_API_KEY=""))

        assert exc_info.value.code == 1
