# ielts_backend/core/logger.py
import logging
import os

from ielts_backend.core.config import LOG_DIR


def get_file_logger(name: str, filename: str) -> logging.Logger:
    """Named logger that also writes to LOG_DIR/<filename>.

    Records still propagate to the root handlers configured by the server.
    """
    logger = logging.getLogger(name)
    if not logger.handlers:
        os.makedirs(LOG_DIR, exist_ok=True)
        handler = logging.FileHandler(os.path.join(LOG_DIR, filename))
        formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(message)s")
        handler.setFormatter(formatter)
        logger.setLevel(logging.INFO)
        logger.addHandler(handler)
    return logger
