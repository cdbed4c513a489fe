"""
Logging configuration for snapsync.

Library modules log through `logging.getLogger(__name__)`; this module decides
where that output goes.
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

NOISY_LOGGERS = ("urllib3", "google", "google_auth_oauthlib", "PIL")


def configure_logging(verbose: bool = False):
    """
    Send snapsync logs to stderr. Quiet (warnings only) unless verbose.
    Third-party libraries stay at WARNING either way.
    """
    level = logging.DEBUG if verbose else logging.WARNING

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    if not any(isinstance(h, logging.StreamHandler) and getattr(h, "stream", None) is sys.stderr
               for h in root_logger.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setLevel(level)
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s: %(message)s",
            datefmt="%H:%M:%S"
        ))
        root_logger.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    logging.getLogger("snapsync").setLevel(level)


def configure_ops_log(data_dir: Path):
    """Configure a persistent operations log in {data_dir}/snapsync-ops.log.

    Rotating file handler (1MB max, 3 backups), INFO and up regardless of
    --verbose. Returns the handler so it can be removed again.
    """
    data_dir = Path(data_dir)
    data_dir.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        str(data_dir / "snapsync-ops.log"),
        maxBytes=1_000_000,
        backupCount=3,
    )
    handler.setLevel(logging.INFO)
    handler.setFormatter(logging.Formatter(
        "%(asctime)s %(levelname)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))

    snapsync_logger = logging.getLogger("snapsync")
    snapsync_logger.addHandler(handler)
    if snapsync_logger.level == logging.NOTSET or snapsync_logger.level > logging.INFO:
        snapsync_logger.setLevel(logging.INFO)

    return handler
