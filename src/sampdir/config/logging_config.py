"""Root logger setup for the sampdir service.

Every handler shares one line layout, ``<UTC time>Z [level] logger: message``,
so refresh-cycle summaries read the same on stderr, in a file, or in syslog
(where the daemon supplies its own timestamp).
"""

from __future__ import annotations

import logging
import logging.handlers
import os
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple, Union

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "crit": logging.CRITICAL,
    "critical": logging.CRITICAL,
}

_TAGS = {
    logging.DEBUG: "[debug]",
    logging.INFO: "[info]",
    logging.WARNING: "[warn]",
    logging.ERROR: "[error]",
    logging.CRITICAL: "[crit]",
}

LINE_FORMAT = "%(asctime)s %(level_tag)s %(name)s: %(message)s"
DEFAULT_SYSLOG_TAG = "sampdir"


def _level_tag(levelno: int) -> str:
    return _TAGS.get(levelno, f"[lvl{levelno}]")


class SyslogFormatter(logging.Formatter):
    """'<tag>: [level] logger: message' with no timestamp."""

    def __init__(self, tag: str = DEFAULT_SYSLOG_TAG) -> None:
        super().__init__()
        self.tag = tag

    def format(self, record):
        record.level_tag = _level_tag(record.levelno)
        return f"{self.tag}: {record.level_tag} {record.name}: {record.getMessage()}"


class BracketLevelFormatter(logging.Formatter):
    """LINE_FORMAT with second-resolution UTC timestamps."""

    def formatTime(self, record, datefmt=None):
        stamp = datetime.fromtimestamp(record.created, timezone.utc)
        return stamp.strftime("%Y-%m-%dT%H:%M:%SZ")

    def format(self, record):
        record.level_tag = _level_tag(record.levelno)
        return super().format(record)


def _syslog_handler(
    syslog_cfg: Union[bool, Dict[str, Any]]
) -> logging.handlers.SysLogHandler:
    """Brief: Build a SysLogHandler from `logging.syslog`.

    Inputs:
      - syslog_cfg: True for /dev/log with facility USER, or a mapping with
        optional address (socket path or [host, port]), facility and tag.

    Outputs:
      - Configured SysLogHandler.

    Raises:
      - OSError: when the syslog socket cannot be reached.
    """

    opts: Dict[str, Any] = syslog_cfg if isinstance(syslog_cfg, dict) else {}
    address: Union[str, Tuple[str, int]] = opts.get("address", "/dev/log")
    if isinstance(address, list):
        address = (str(address[0]), int(address[1]))
    facility_name = f"LOG_{str(opts.get('facility', 'USER')).upper()}"
    facility = getattr(
        logging.handlers.SysLogHandler,
        facility_name,
        logging.handlers.SysLogHandler.LOG_USER,
    )
    handler = logging.handlers.SysLogHandler(address=address, facility=facility)
    handler.setFormatter(SyslogFormatter(tag=str(opts.get("tag", DEFAULT_SYSLOG_TAG))))
    return handler


def init_logging(cfg: Optional[Dict[str, Any]]) -> None:
    """Brief: Configure the root logger from the `logging` config section.

    Inputs:
      - cfg: mapping with optional keys
        - level: debug, info, warn, error or crit (default info; unknown
          names fall back to info)
        - stderr: log to stderr (default True)
        - file: append to this path, creating parent directories
        - syslog: True or a mapping, see _syslog_handler

    Outputs:
      - None. Existing root handlers are replaced, so calling this again
        reconfigures instead of duplicating output.

    Example:
      >>> init_logging({"level": "debug", "file": "./config/var/sampdir.log"})  # doctest: +SKIP
    """

    cfg = cfg or {}
    root = logging.getLogger()
    root.setLevel(_LEVELS.get(str(cfg.get("level", "info")).lower(), logging.INFO))
    for h in list(root.handlers):
        root.removeHandler(h)

    formatter = BracketLevelFormatter(fmt=LINE_FORMAT)
    if cfg.get("stderr", True):
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(formatter)
        root.addHandler(stderr_handler)

    file_path = cfg.get("file")
    if isinstance(file_path, str) and file_path.strip():
        path = os.path.abspath(os.path.expanduser(file_path.strip()))
        os.makedirs(os.path.dirname(path), exist_ok=True)
        file_handler = logging.FileHandler(path, mode="a", encoding="utf-8")
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    syslog_cfg = cfg.get("syslog")
    if syslog_cfg:
        try:
            root.addHandler(_syslog_handler(syslog_cfg))
        except OSError as e:  # pragma: no cover - depends on a local syslog daemon
            root.warning("Failed to configure syslog: %s", e)

    logging.captureWarnings(True)
