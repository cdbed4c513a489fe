import json
import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)

# === PATH CONFIGURATION ===
DATA_DIR = Path(os.environ.get("SNAPSYNC_DATA_DIR", "data"))
DB_FILE = "snapsync.db"  # inside the data dir

CONFIG_FILE = Path("sync_config.json")

# === SCOPES ===
SCOPES = [
    "https://www.googleapis.com/auth/drive",
]

# === SYNC ===
DRIVE_FOLDER = "Snapshot"
SYNC_FREQUENCY = 60  # seconds between reconciliation passes
THUMBNAIL_HEIGHT = 300
HTTP_TIMEOUT = 60

DEFAULT_CONFIG = {
    "interval": SYNC_FREQUENCY,
    "folder": DRIVE_FOLDER,
    "thumbnail_height": THUMBNAIL_HEIGHT,
    "background": False,
}


def load_user_config(path: Path = None) -> dict:
    """
    Load the user's sync_config.json (interval, folder, thumbnail height,
    background draining). Fallback to defaults for anything not set.
    """
    path = path or CONFIG_FILE
    config = dict(DEFAULT_CONFIG)
    if not path.exists():
        logger.info("Config file '%s' not found. Using defaults.", path)
        return config

    with open(path, "r") as f:
        data = json.load(f)

    for key in DEFAULT_CONFIG:
        if key in data:
            config[key] = data[key]
    return config
