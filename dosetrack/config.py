"""
Dosetrack Configuration.
All settings via environment variables with sensible defaults.
"""

import os
from pathlib import Path

# --- Paths ---
BASE_DIR = Path(os.getenv("DOSETRACK_DATA_DIR", "/data"))
DB_PATH = Path(os.getenv("DOSETRACK_DB_PATH", str(BASE_DIR / "dosetrack.db")))

# --- Auth ---
API_KEY = os.getenv("DOSETRACK_API_KEY", "")

# --- Dashboard ---
API_URL = os.getenv("DOSETRACK_API_URL", "http://localhost:8000")

# --- Logging ---
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# --- Timezone ---
# Calendar-day quota boundaries are evaluated in this zone.
TIMEZONE = os.getenv("TZ", "Europe/Oslo")

# --- Phase display ---
PHASE_TICK_INTERVAL_SEC: float = float(os.getenv("PHASE_TICK_INTERVAL_SEC", "60"))

# --- Dosing defaults (used when a record or catalog entry gives none) ---
DEFAULT_MIN_HOURS: float = float(os.getenv("DEFAULT_MIN_HOURS", "4"))
DEFAULT_DOSAGE_UNIT = os.getenv("DEFAULT_DOSAGE_UNIT", "mg")

# --- Supply ---
LOW_SUPPLY_THRESHOLD: int = int(os.getenv("LOW_SUPPLY_THRESHOLD", "5"))
MEDIUM_SUPPLY_THRESHOLD: int = int(os.getenv("MEDIUM_SUPPLY_THRESHOLD", "10"))

# --- Stats ---
ADHERENCE_WINDOW_DAYS: int = int(os.getenv("ADHERENCE_WINDOW_DAYS", "30"))
# A dose counts as missed once the gap exceeds this multiple of the interval.
MISSED_DOSE_FACTOR: float = float(os.getenv("MISSED_DOSE_FACTOR", "2"))
