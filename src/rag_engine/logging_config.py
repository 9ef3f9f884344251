"""Centralized logging configuration for rag-engine."""

import logging
import sys

NOISY_LOGGERS = (
    "urllib3",
    "httpx",
    "httpcore",
    "chromadb",
    "sentence_transformers",
    "openai",
    "anthropic",
    "apscheduler",
)


def configure_logging(level: int | str = logging.INFO) -> None:
    """Configure app-wide logging. Call once at startup."""
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())

    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-7s | %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stdout,
        force=True,
    )

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
