from __future__ import annotations

import os
from typing import Optional

from dotenv import load_dotenv

# Load env before anything else
load_dotenv()


def _bool_env(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _optional_int_env(name: str) -> Optional[int]:
    value = os.getenv(name)
    if not value:
        return None
    return int(value)


# Storage
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./corpsync.db")

# ESI / EVE SSO
ESI_BASE_URL = os.getenv("ESI_BASE_URL", "https://esi.evetech.net/latest")
ESI_TOKEN_URL = os.getenv("ESI_TOKEN_URL", "https://login.eveonline.com/v2/oauth/token")
ESI_CLIENT_ID = os.getenv("ESI_CLIENT_ID", "")
ESI_CLIENT_SECRET = os.getenv("ESI_CLIENT_SECRET", "")
ESI_USER_AGENT = os.getenv("ESI_USER_AGENT", "corpsync/0.1")

# Scheduler
SYNC_TICK_SECONDS = float(os.getenv("SYNC_TICK_SECONDS", "60"))
SYNC_AUTOSTART = _bool_env("SYNC_AUTOSTART", True)
SYNC_CORPORATION_ID = _optional_int_env("SYNC_CORPORATION_ID")

# Read path
DATA_CACHE_TTL_SECONDS = float(os.getenv("DATA_CACHE_TTL_SECONDS", "300"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
FRONTEND_ORIGIN = os.getenv("FRONTEND_ORIGIN", "http://localhost:3000")

# Tokens closer than this to expiry are treated as expired by the API client
# and refreshed by the token store.
TOKEN_EXPIRY_MARGIN_SECONDS = 5 * 60
