import logging

import uvicorn

import config
from utils.logging_config import setup_logging

# Initialize centralized logging configuration
setup_logging()

# Validate critical configuration before any client is constructed
from utils.config_validator import validate_or_exit
validate_or_exit(config)

from app import app


def main() -> None:
    logging.info(f"Starting order backend ({config.RUNTIME_ENVIRONMENT.value}) on "
                 f"{config.WEBAPP_HOST}:{config.WEBAPP_PORT}")
    uvicorn.run(app, host=config.WEBAPP_HOST, port=config.WEBAPP_PORT, log_config=None)


if __name__ == '__main__':
    main()
