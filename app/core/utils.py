"""Shared utility functions for the Spend Parser project."""

import hashlib
import logging
import re
from datetime import UTC, datetime

import colorlog

_WHITESPACE = re.compile(r"\s+")


def get_logger(name: str) -> logging.Logger:
    """Get a logger with a colorized format for the project."""
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler()
        formatter = colorlog.ColoredFormatter(
            "%(log_color)s%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
            log_colors={
                "DEBUG": "cyan",
                "INFO": "green",
                "WARNING": "yellow",
                "ERROR": "red",
                "CRITICAL": "bold_red",
            },
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    logger.propagate = False
    return logger


def normalize_text(text: str) -> str:
    """Lower-case the text and collapse runs of whitespace."""
    return _WHITESPACE.sub(" ", text.lower()).strip()


def fingerprint(text: str) -> str:
    """Return the SHA-256 hex digest of the normalized text."""
    return hashlib.sha256(normalize_text(text).encode("utf-8")).hexdigest()


def utcnow() -> datetime:
    """Get the current UTC time as a naive datetime, the form stored in the database."""
    return datetime.now(UTC).replace(tzinfo=None)


def to_utc_naive(value: datetime) -> datetime:
    """Convert an aware datetime to naive UTC; naive values are assumed to be UTC already."""
    if value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


def utc_from_timestamp(timestamp: float) -> datetime:
    """Naive UTC datetime for a POSIX timestamp."""
    return datetime.fromtimestamp(timestamp, UTC).replace(tzinfo=None)


def isoformat_utc(value: datetime) -> str:
    """Render a naive UTC datetime as an ISO-8601 string with a Z suffix."""
    return to_utc_naive(value).isoformat(timespec="milliseconds") + "Z"
