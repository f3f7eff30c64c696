"""
config.py
Runtime settings (database path, ledger policy, logging), overridable via environment / .env.
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

DB_FILE = Path(os.getenv("GYM_DB_FILE", str(Path(__file__).with_name("gym.db"))))

# What to do when a charge would push used_sessions above total_sessions:
#   "reject" -> raise OverconsumptionError and abort the status change
#   "clamp"  -> keep used_sessions at total_sessions and log a warning
OVERCONSUMPTION_POLICY = os.getenv("GYM_OVERCONSUMPTION_POLICY", "reject").strip().lower()

LOG_LEVEL = os.getenv("GYM_LOG_LEVEL", "INFO").upper()
LOG_FILE = os.getenv("GYM_LOG_FILE") or None

DEFAULT_ADMIN_USERNAME = "admin"
DEFAULT_ADMIN_PASSWORD = os.getenv("GYM_DEFAULT_ADMIN_PASSWORD", "admin123")

# Optimistic-lock retries for monthly submission writes
SUBMIT_MAX_RETRIES = 3
