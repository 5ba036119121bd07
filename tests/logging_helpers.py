from __future__ import annotations

import logging

from concurrent_log_handler import ConcurrentRotatingFileHandler

from auctionhouse import logging_setup


def reset_concurrent_log_handlers() -> None:
    logging_setup.reset_service_logging()
    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        if isinstance(handler, ConcurrentRotatingFileHandler):
            root_logger.removeHandler(handler)
            handler.close()
