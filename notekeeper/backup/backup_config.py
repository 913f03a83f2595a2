"""Backup layout constants and retention policy."""

import os

# Default locations (hidden directory in the user's home)
DEFAULT_HOME = os.path.join(os.path.expanduser("~"), ".notekeeper")
DEFAULT_DATA_ROOT = os.path.join(DEFAULT_HOME, "data")
DEFAULT_BACKUP_ROOT = os.path.join(DEFAULT_HOME, "backup")

# Retention: archives kept per collection
RETENTION_LIMIT = 50

# Archive names start with this; fixed width so names sort chronologically
TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"

ARCHIVE_EXTENSIONS = {
    "tar.gz": ".tar.gz",
    "zip": ".zip",
}

# Default archive format per storage layout
LAYOUT_FORMATS = {
    "global": "tar.gz",
    "scoped": "zip",
}

NOTE_EXTENSION = ".txt"
