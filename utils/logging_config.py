"""
Logging setup for the order backend.

One root logger feeding a console handler and a midnight-rotated file
(logs/orders.log). Both handlers run every record through
SecretMaskingFilter, so credentials, payment addresses and customer PII
never reach disk in clear text.
"""

import logging
import logging.handlers
import re
from pathlib import Path
from typing import Pattern

import config


class SecretMaskingFilter(logging.Filter):
    """
    Rewrites log records in place, replacing secrets with [REDACTED_*] markers.

    Covers API keys, webhook secrets, wallet RPC passwords, Bearer tokens,
    payment addresses, transaction hashes, and customer contact data
    (e-mail, phone, street address).
    """

    PATTERNS: list[tuple[Pattern, str]] = [
        # Key/secret assignments as they appear in config dumps and request reprs
        (re.compile(r'(api[_-]?key["\']?\s*[:=]\s*["\']?)([A-Za-z0-9_\-]{20,})(["\']?)', re.IGNORECASE), r'\1[REDACTED_API_KEY]\3'),
        (re.compile(r'(secret["\']?\s*[:=]\s*["\']?)([A-Za-z0-9_\-]{16,})(["\']?)', re.IGNORECASE), r'\1[REDACTED_SECRET]\3'),
        (re.compile(r'(token["\']?\s*[:=]\s*["\']?)([A-Za-z0-9_\-:]{20,})(["\']?)', re.IGNORECASE), r'\1[REDACTED_TOKEN]\3'),
        (re.compile(r'(Bearer\s+)([A-Za-z0-9_\-\.]+)', re.IGNORECASE), r'\1[REDACTED_BEARER_TOKEN]'),
        (re.compile(r'(password["\']?\s*[:=]\s*["\']?)([^\s"\']+)(["\']?)', re.IGNORECASE), r'\1[REDACTED_PASSWORD]\3'),

        # DCR / BTC / LTC / ETH destinations
        (re.compile(r'\b(bc1|ltc1|0x|D[sc]|[1-9A-HJ-NP-Za-km-z])[a-zA-HJ-NP-Z0-9]{25,}', re.IGNORECASE), '[REDACTED_CRYPTO_ADDRESS]'),
        (re.compile(r'\b([a-fA-F0-9]{64})\b'), '[REDACTED_TX_HASH]'),

        # Customer PII
        (re.compile(r'\b([a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,})\b'), '[REDACTED_EMAIL]'),
        (re.compile(r'\b(\+?\d{1,3}[-.\s]?)?\(?\d{3}\)?[-.\s]?\d{3}[-.\s]?\d{4}\b'), '[REDACTED_PHONE]'),
        (re.compile(r'(address1["\']?\s*[:=]\s*["\']?)([^"\']{6,})(["\']?)', re.IGNORECASE), r'\1[REDACTED_ADDRESS]\3'),
    ]

    def _mask(self, text: str) -> str:
        for pattern, replacement in self.PATTERNS:
            text = pattern.sub(replacement, text)
        return text

    def filter(self, record: logging.LogRecord) -> bool:
        if record.msg:
            record.msg = self._mask(str(record.msg))
        if record.args:
            record.args = tuple(self._mask(arg) if isinstance(arg, str) else arg for arg in record.args)
        # Records are rewritten, never dropped
        return True


def setup_logging():
    """
    Configure the root logger. Called once from run.py before the app is imported.

    Level, retention and masking come from config (LOG_LEVEL,
    LOG_RETENTION_DAYS, LOG_MASK_SECRETS).
    """
    log_dir = Path("logs")
    log_dir.mkdir(exist_ok=True)

    log_level_str = getattr(config, "LOG_LEVEL", "INFO")
    log_level = getattr(logging, log_level_str.upper(), logging.INFO)
    retention_days = getattr(config, "LOG_RETENTION_DAYS", 7)
    mask_secrets = getattr(config, "LOG_MASK_SECRETS", True)

    formatter = logging.Formatter(
        fmt='%(asctime)s | %(name)-25s | %(levelname)-8s | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    file_handler = logging.handlers.TimedRotatingFileHandler(
        filename=log_dir / "orders.log",
        when="midnight",
        interval=1,
        backupCount=retention_days,
        encoding="utf-8"
    )
    console_handler = logging.StreamHandler()

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    # uvicorn installs its own handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    for handler in (file_handler, console_handler):
        handler.setFormatter(formatter)
        handler.setLevel(log_level)
        if mask_secrets:
            handler.addFilter(SecretMaskingFilter())
        root_logger.addHandler(handler)

    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)

    logging.info(f"Logging initialized: level={log_level_str}, retention={retention_days} days, "
                 f"masking={'on' if mask_secrets else 'off'}")
