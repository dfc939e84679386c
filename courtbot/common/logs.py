"""
Logging helpers: adds a SUCCESS level between INFO and WARNING.
"""
import logging

SUCCESS = 25

logging.addLevelName(SUCCESS, "SUCCESS")


def success(logger: logging.Logger, message: str):
    """Log a milestone the run reached (unlock observed, form ready, submitted)"""
    logger.log(SUCCESS, message)


def format_ms(ms: float) -> str:
    """Milliseconds as seconds with two decimals"""
    return f"{ms / 1000:.2f}"
