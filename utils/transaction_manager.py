import logging
import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional
from functools import wraps
from datetime import datetime

from sqlalchemy.exc import OperationalError, IntegrityError

from db import get_db_session, session_commit, session_rollback
from exceptions.order import StaleOrderStateException

logger = logging.getLogger(__name__)


class TransactionManager:
    """
    Utility class for managing database transactions with rollback
    and retry logic for race condition prevention.
    """

    # Transaction timeout in seconds (warning only on sqlite)
    TRANSACTION_TIMEOUT = 30

    # Retry configuration
    MAX_RETRIES = 3
    RETRY_DELAY_BASE = 0.1  # Base delay in seconds

    @staticmethod
    @asynccontextmanager
    async def atomic_transaction(timeout: Optional[int] = None) -> AsyncGenerator[Any, None]:
        """
        Context manager for atomic database transactions.

        Everything done with the yielded session is committed together on
        exit, or rolled back together if the block raises.

        Usage:
            async with TransactionManager.atomic_transaction() as session:
                await OrderRepository.compare_and_set(..., session)
                await PaymentRepository.update(..., session)
        """
        timeout = timeout or TransactionManager.TRANSACTION_TIMEOUT
        session = None

        try:
            async with get_db_session() as session:
                transaction_start = datetime.utcnow()
                logger.debug(f"Transaction started at {transaction_start}")

                yield session

                duration = (datetime.utcnow() - transaction_start).total_seconds()
                if duration > timeout:
                    logger.warning(f"Transaction exceeded timeout: {duration}s > {timeout}s")

                await session_commit(session)
                logger.debug(f"Transaction committed successfully in {duration:.2f}s")

        except Exception as e:
            if session:
                try:
                    await session_rollback(session)
                    logger.info(f"Transaction rolled back due to error: {str(e)}")
                except Exception as rollback_error:
                    logger.critical(f"Failed to rollback transaction: {str(rollback_error)}")
            raise

    @staticmethod
    def with_retry(max_retries: Optional[int] = None, delay_base: Optional[float] = None):
        """
        Decorator for automatic retry of database operations with exponential backoff.

        Retries lost compare-and-set writes (StaleOrderStateException), sqlite
        "database is locked" errors and unique-key collisions. Anything else
        propagates immediately.

        Args:
            max_retries: Maximum number of retry attempts
            delay_base: Base delay for exponential backoff
        """
        max_retries = max_retries or TransactionManager.MAX_RETRIES
        delay_base = delay_base or TransactionManager.RETRY_DELAY_BASE

        def decorator(func):
            @wraps(func)
            async def wrapper(*args, **kwargs):
                last_exception = None

                for attempt in range(max_retries + 1):
                    try:
                        return await func(*args, **kwargs)
                    except (StaleOrderStateException, OperationalError, IntegrityError) as e:
                        last_exception = e

                        if attempt == max_retries:
                            logger.error(f"Function {func.__name__} failed after {max_retries} retries: {str(e)}")
                            break

                        # Exponential backoff with jitter
                        delay = delay_base * (2 ** attempt) + (delay_base * 0.1 * attempt)
                        logger.warning(f"Attempt {attempt + 1} failed for {func.__name__}, retrying in {delay:.2f}s: {str(e)}")
                        await asyncio.sleep(delay)

                raise last_exception

            return wrapper
        return decorator
