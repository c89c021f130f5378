"""
campaign_engine/paths.py -- Default locations for engine data.

Uses platformdirs for the user data directory so the reference SQLite
database survives reinstalls.
"""

from __future__ import annotations

import os

from platformdirs import user_data_dir

_APP_NAME = "CampaignConsistencyEngine"
_APP_AUTHOR = "CampaignEngine"
_DB_FILENAME = "campaign.db"


def get_user_data_dir() -> str:
    """Return the platform-appropriate user data directory."""
    path = user_data_dir(_APP_NAME, _APP_AUTHOR)
    os.makedirs(path, exist_ok=True)
    return path


def get_default_db_path() -> str:
    """Return the default path of the reference SQLite database."""
    return os.path.join(get_user_data_dir(), _DB_FILENAME)
