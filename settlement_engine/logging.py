from __future__ import annotations

import logging

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str) -> None:
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
    # aiogram logs every handled update at INFO.
    logging.getLogger("aiogram.event").setLevel(logging.WARNING)
