"""Logging setup for the speech gateway."""

import logging
import sys
from typing import Optional

_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
_configured = False


def configure_logging(level: str = "INFO") -> None:
    """Attach a stdout handler to the root logger. Safe to call more than once."""
    global _configured
    root = logging.getLogger()
    root.setLevel(level.upper())
    if _configured:
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    root.addHandler(handler)
    _configured = True


def redact(secret: Optional[str], keep: int = 6) -> str:
    """Shorten a key or token for log output."""
    if not secret:
        return "<none>"
    if len(secret) <= keep:
        return "***"
    return f"{secret[:keep]}..."
