from __future__ import annotations

import logging
import sys
from typing import Union

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

_HANDLER_NAME = "securityai-stderr"


def configure_logging(level: Union[str, int] = "INFO", fmt: str = DEFAULT_FORMAT) -> logging.Logger:
    """
    Attach one stderr handler to the "securityai" logger. Calling it again
    only updates the level and format.
    """
    root = logging.getLogger("securityai")
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            raise ValueError(f"unknown log level: {level!r}")
    root.setLevel(level)

    handler = next((h for h in root.handlers if h.get_name() == _HANDLER_NAME), None)
    if handler is None:
        handler = logging.StreamHandler(sys.stderr)
        handler.set_name(_HANDLER_NAME)
        root.addHandler(handler)
    handler.setFormatter(logging.Formatter(fmt))
    return root
