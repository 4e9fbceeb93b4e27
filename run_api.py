import logging
import sys

import uvicorn

from scanhub.core.config import get_config
from scanhub.core.logging_config import setup_logging

config = get_config()

setup_logging(
    level=config.logging.level,
    log_format=config.logging.format,
    output=config.logging.output,
    file_path=config.logging.file_path,
    max_file_size=config.logging.max_file_size,
    backup_count=config.logging.backup_count,
)
logger = logging.getLogger("ScanHub_Runner")


def main():
    issues = config.validate()
    for issue in issues:
        logger.warning(f"Configuration issue: {issue}")
    if issues and config.environment == "production":
        logger.error("Refusing to start with an invalid production configuration")
        sys.exit(1)

    logger.info("Starting ScanHub API...")
    uvicorn.run(
        "scanhub.api.main:app",
        host=config.api.host,
        port=config.api.port,
        workers=config.api.workers if not config.api.debug else 1,
        reload=config.api.debug,
        log_config=None,
    )


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        sys.exit(0)
