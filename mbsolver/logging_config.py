"""Console/file handlers for the `mbsolver` logger namespace.

Library modules only create `logging.getLogger(__name__)`; nothing is printed
until an application calls `setup_logging`.
"""
import logging
import sys
from typing import Optional

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logging(level: int = logging.INFO, log_file: Optional[str] = None) -> logging.Logger:
    """Attach a stdout handler (and a file handler if `log_file` is given).

    Calling it again replaces the handlers installed by the previous call.
    """
    logger = logging.getLogger("mbsolver")
    logger.setLevel(level)

    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)

    formatter = logging.Formatter(LOG_FORMAT, datefmt='%H:%M:%S')

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(level)
    console.setFormatter(formatter)
    logger.addHandler(console)

    if log_file:
        to_file = logging.FileHandler(log_file, mode='w', encoding='utf-8')
        to_file.setLevel(level)
        to_file.setFormatter(formatter)
        logger.addHandler(to_file)

    logger.debug("mbsolver logging to %s", log_file or "stdout")
    return logger
