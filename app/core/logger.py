import logging
import sys

def setup_logging(level: int = logging.INFO) -> logging.Logger:
    """
    Configure the application logger. Service modules log through children
    of this logger (``queuedesk.admission``, ``queuedesk.lifecycle``...).
    """
    logger = logging.getLogger("queuedesk")
    logger.setLevel(level)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    ))

    if not logger.handlers:
        logger.addHandler(handler)

    return logger

def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"queuedesk.{name}")

logger = setup_logging()
