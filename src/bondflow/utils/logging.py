from __future__ import annotations

import logging
from typing import Optional

_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


def configure_logging(level: str = "INFO", *, fmt: Optional[str] = None) -> None:
    """Configure the root logger once for CLI runs."""
    logging.basicConfig(
        level=getattr(logging, (level or "INFO").upper(), logging.INFO),
        format=fmt or _FORMAT,
    )
    # web3 request logging is noisy at DEBUG
    logging.getLogger("web3").setLevel(max(logging.INFO, logging.getLogger().level))
