from __future__ import annotations

import logging
import sys

from pythonjsonlogger import json as jsonlogger

_CONSOLE_FORMAT = "%(asctime)s [%(levelname)8s] %(name)s - %(message)s"
_JSON_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"

_HANDLER_NAME = "candy-stderr"


def setup_logging(level: str = "INFO", *, json_format: bool = False) -> logging.Logger:
    """
    Configure the `candy` logger hierarchy with a single stderr handler.

    Calling it again replaces the handler rather than stacking duplicates.
    """
    root = logging.getLogger("candy")
    root.setLevel(level.upper())
    root.handlers = [h for h in root.handlers if h.get_name() != _HANDLER_NAME]

    handler = logging.StreamHandler(sys.stderr)
    handler.set_name(_HANDLER_NAME)
    if json_format:
        handler.setFormatter(
            jsonlogger.JsonFormatter(_JSON_FORMAT, rename_fields={"levelname": "lvl", "asctime": "ts"})
        )
    else:
        handler.setFormatter(logging.Formatter(_CONSOLE_FORMAT, datefmt="%H:%M:%S"))
    root.addHandler(handler)
    root.propagate = False
    return root
