import logging
import sys

from utils.env import env_str


def configure_logging() -> None:
    """
    Configure logging for the whole service.
    Call this once before starting the API server or a CLI session.
    """
    level = (env_str("LOG_LEVEL", "INFO") or "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )
