from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# SQLite file in the project root unless DATABASE_URL is set
DEFAULT_DB_PATH = Path(__file__).resolve().parents[1] / "smile_design.sqlite"


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{DEFAULT_DB_PATH}")
DB_ECHO = _env_bool("DB_ECHO", False)

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FORMAT = os.getenv("LOG_FORMAT", "console").lower()

# "auto": create placeholders for missing references, "strict": reject the write
REFERENCE_POLICY = os.getenv("REFERENCE_POLICY", "auto").lower()
